"""Routes instruments to providers and provider updates into the cache."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping

from .alerts import AlertEvaluator
from .alpaca import AlpacaFetcher
from .cache import PriceCache
from .models import (
    ConnectionState,
    ConnectionStatus,
    FetchError,
    Instrument,
    PriceObservation,
    Provider,
    RawUpdate,
    product_key,
)
from .polling import PollingFetcher
from .settings import FeedSettings
from .streaming import StreamingClient

logger = logging.getLogger(__name__)


class FeedCoordinator:
    """Owns the streaming client and the polling fetchers.

    The only place that knows which provider serves which instrument. Each
    provider channel is drained by its own pump task, so updates from one
    provider are applied in the order they were received and a failure while
    handling one never stops another provider.

    Lifecycle:
        coordinator = create_feed_coordinator(settings, sink)
        await coordinator.start()
        await coordinator.set_instruments(instruments)
        # ... app runs ...
        await coordinator.apply_settings(new_settings)
        await coordinator.stop()
    """

    def __init__(
        self,
        cache: PriceCache,
        evaluator: AlertEvaluator,
        streaming: StreamingClient,
        fetchers: Mapping[Provider, PollingFetcher],
        settings: FeedSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._evaluator = evaluator
        self._streaming = streaming
        self._fetchers = dict(fetchers)
        self._settings = settings or FeedSettings()
        self._clock = clock

        self._instruments: list[Instrument] = []
        self._by_key: dict[str, Instrument] = {}
        self._connection_state = streaming.state
        self._last_errors: dict[Provider, FetchError] = {}
        self._skipped: set[Provider] = set()  # Providers already logged as lacking credentials
        self._pumps: list[asyncio.Task] = []
        self._reconfigure = asyncio.Lock()

    # --- Outputs ---

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def settings(self) -> FeedSettings:
        return self._settings

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def instruments(self) -> list[Instrument]:
        return list(self._instruments)

    @property
    def last_errors(self) -> dict[Provider, FetchError]:
        """Most recent fetch failure per polling provider."""
        return dict(self._last_errors)

    def prices(self) -> dict[str, PriceObservation]:
        return self._cache.get_all()

    def key_for(self, instrument: Instrument) -> str:
        return product_key(instrument, self._settings.display_currency)

    def price_for(self, instrument: Instrument) -> PriceObservation | None:
        return self._cache.get(self.key_for(instrument))

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start draining provider channels. Idempotent."""
        if self._pumps:
            return
        self._evaluator.set_cooldown(self._settings.alert_cooldown)
        self._pumps.append(
            asyncio.create_task(self._pump_states(), name="coinbase-states")
        )
        self._pumps.append(
            asyncio.create_task(
                self._pump_updates(Provider.COINBASE, self._streaming.updates),
                name="coinbase-updates",
            )
        )
        for provider, fetcher in self._fetchers.items():
            self._pumps.append(
                asyncio.create_task(
                    self._pump_updates(provider, fetcher.updates),
                    name=f"{provider.value}-updates",
                )
            )
            self._pumps.append(
                asyncio.create_task(
                    self._pump_errors(fetcher.errors), name=f"{provider.value}-errors"
                )
            )
        logger.info("Feed coordinator started with %d polling providers", len(self._fetchers))

    async def stop(self) -> None:
        """Disconnect the stream, stop every fetcher, stop draining. Idempotent."""
        await self._streaming.close()
        for fetcher in self._fetchers.values():
            await fetcher.stop()

        pumps, self._pumps = self._pumps, []
        for task in pumps:
            task.cancel()
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)
            logger.info("Feed coordinator stopped")

    # --- Inputs ---

    async def set_instruments(self, instruments: Iterable[Instrument]) -> None:
        """Replace the tracked instrument set and re-route it to the providers."""
        async with self._reconfigure:
            self._instruments = list(instruments)
            self._rebuild_index()
            await self._sync_all()

    async def apply_settings(self, settings: FeedSettings) -> None:
        """Push new settings: streaming toggle, currency, interval, credentials, cooldown."""
        async with self._reconfigure:
            previous, self._settings = self._settings, settings

            if settings.alert_cooldown != previous.alert_cooldown:
                self._evaluator.set_cooldown(settings.alert_cooldown)

            for provider, fetcher in self._fetchers.items():
                if isinstance(fetcher, AlpacaFetcher) and fetcher.update_credentials(
                    settings.alpaca_api_key, settings.alpaca_api_secret
                ):
                    logger.info("%s: credentials changed", provider.value)
                    self._skipped.discard(provider)
                    await fetcher.stop()
                elif settings.poll_interval != previous.poll_interval and fetcher.is_running:
                    await fetcher.start(fetcher.get_tickers(), settings.poll_interval)

            self._rebuild_index()
            await self._sync_all()

    def handle_update(self, update: RawUpdate) -> PriceObservation:
        """Normalize a provider update, cache it and run the owner's alert rule."""
        observation = PriceObservation.from_raw(update, observed_at=self._clock())
        self._cache.put(update.product_key, observation)

        instrument = self._by_key.get(update.product_key)
        if instrument is not None and self._settings.alerts_enabled:
            self._evaluator.check(instrument, instrument.alert, observation)
        return observation

    # --- Internal ---

    def _rebuild_index(self) -> None:
        self._by_key = {self.key_for(i): i for i in self._instruments}

    def _keys_for(self, provider: Provider) -> list[str]:
        return [self.key_for(i) for i in self._instruments if i.provider is provider]

    async def _sync_all(self) -> None:
        await self._sync_streaming()
        for provider, fetcher in self._fetchers.items():
            await self._sync_fetcher(provider, fetcher)

        routed = {Provider.COINBASE, *self._fetchers}
        for instrument in self._instruments:
            if instrument.provider not in routed:
                logger.warning("No feed for %s via %s", instrument.ticker, instrument.provider)

    async def _sync_streaming(self) -> None:
        keys = self._keys_for(Provider.COINBASE)
        if not self._settings.streaming_enabled:
            if self._streaming.state.status is not ConnectionStatus.DISCONNECTED:
                await self._streaming.disconnect()
            return

        if self._streaming.is_active:
            await self._streaming.update_subscriptions(keys)
        else:
            await self._streaming.connect(keys)

    async def _sync_fetcher(self, provider: Provider, fetcher: PollingFetcher) -> None:
        tickers = self._keys_for(provider)
        if fetcher.is_running:
            if tickers:
                fetcher.update_tickers(tickers)
            else:
                await fetcher.stop()
            return

        if not tickers:
            return
        if not fetcher.has_credentials:
            if provider not in self._skipped:
                logger.info(
                    "%s: no credentials, %d tickers will not update", provider.value, len(tickers)
                )
                self._skipped.add(provider)
            return
        await fetcher.start(tickers, self._settings.poll_interval)

    async def _pump_updates(self, provider: Provider, queue: asyncio.Queue[RawUpdate]) -> None:
        while True:
            update = await queue.get()
            try:
                self.handle_update(update)
            except Exception:
                logger.exception(
                    "Failed to apply %s update for %s", provider.value, update.product_key
                )

    async def _pump_states(self) -> None:
        while True:
            self._connection_state = await self._streaming.states.get()

    async def _pump_errors(self, queue: asyncio.Queue[FetchError]) -> None:
        while True:
            error = await queue.get()
            self._last_errors[error.provider] = error
