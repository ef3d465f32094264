"""Interval-driven REST quote polling shared by the pull-based providers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .errors import (
    DecodeError,
    HTTPStatusError,
    InvalidResponseError,
    QuoteError,
    TransportError,
)
from .models import FetchError, Provider, RawUpdate

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_TIMEOUT = 30.0


def normalize_tickers(tickers: list[str]) -> list[str]:
    """Upper-case, strip and de-duplicate, keeping order."""
    seen: list[str] = []
    for ticker in tickers:
        ticker = ticker.upper().strip()
        if ticker and ticker not in seen:
            seen.append(ticker)
    return seen


class PollingFetcher(ABC):
    """Fetches one quote per tracked ticker every ``interval`` seconds.

    Results are published on two channels that the FeedCoordinator drains:
    ``updates`` (RawUpdate) and ``errors`` (FetchError). A failure for one
    ticker is reported and the cycle moves on to the next ticker.

    Lifecycle:
        fetcher = YahooFetcher()
        await fetcher.start(["AAPL", "MSFT"], interval=60)
        fetcher.update_tickers(["AAPL", "MSFT", "TSLA"])
        # ... app runs ...
        await fetcher.stop()

    Every start() and stop() bumps a generation counter. A request that was in
    flight when the fetcher was stopped or restarted sees a different
    generation when it returns and its result is dropped.
    """

    provider: Provider
    base_url: str

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.updates: asyncio.Queue[RawUpdate] = asyncio.Queue()
        self.errors: asyncio.Queue[FetchError] = asyncio.Queue()
        self._timeout = timeout
        self._transport = transport
        self._tickers: list[str] = []
        self._interval = DEFAULT_POLL_INTERVAL
        self._task: asyncio.Task | None = None
        self._client: httpx.AsyncClient | None = None
        self._generation = 0

    @property
    def has_credentials(self) -> bool:
        """Providers that need an API key override this."""
        return True

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        return self._interval

    def get_tickers(self) -> list[str]:
        return list(self._tickers)

    async def start(self, tickers: list[str], interval: float | None = None) -> None:
        """Poll ``tickers`` now and then every ``interval`` seconds.

        Restarts the schedule if already running. An empty ticker list or
        missing credentials leaves the fetcher untouched. A non-positive
        interval raises ValueError.
        """
        if interval is not None and interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval!r}")
        tickers = normalize_tickers(tickers)
        if not tickers:
            return
        if not self.has_credentials:
            logger.info("%s: no credentials, not polling", self.provider.value)
            return

        await self.stop()

        self._tickers = tickers
        if interval is not None:
            self._interval = float(interval)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        self._task = asyncio.create_task(
            self._poll_loop(self._generation), name=f"{self.provider.value}-poller"
        )
        logger.info(
            "%s poller started: %d tickers, %.1fs interval",
            self.provider.value,
            len(tickers),
            self._interval,
        )

    async def stop(self) -> None:
        """Cancel the schedule. Safe to call in any state, any number of times."""
        self._generation += 1
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("%s poller stopped", self.provider.value)

        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

        # Nothing produced before the stop is delivered after it
        for queue in (self.updates, self.errors):
            while not queue.empty():
                queue.get_nowait()

    def update_tickers(self, tickers: list[str]) -> None:
        """Replace the tracked set. The next cycle uses it; the phase is kept."""
        self._tickers = normalize_tickers(tickers)
        logger.debug("%s: tracking %s", self.provider.value, self._tickers)

    # --- Provider hooks ---

    @abstractmethod
    def quote_path(self, ticker: str) -> str:
        """Path relative to ``base_url`` for one ticker's quote."""

    def quote_params(self, ticker: str) -> dict[str, str] | None:
        return None

    def request_headers(self) -> dict[str, str]:
        return {}

    def check_status(self, response: httpx.Response) -> None:
        if response.status_code != 200:
            raise HTTPStatusError(response.status_code)

    @abstractmethod
    def parse_quote(self, ticker: str, payload: Any) -> RawUpdate:
        """Extract price and reference close. Raise QuoteError if absent."""

    # --- Internal ---

    async def fetch_quote(self, client: httpx.AsyncClient, ticker: str) -> RawUpdate:
        """One request for one ticker. Every failure surfaces as a QuoteError."""
        try:
            response = await client.get(
                self.quote_path(ticker),
                params=self.quote_params(ticker),
                headers=self.request_headers(),
            )
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        self.check_status(response)

        try:
            payload = response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidResponseError(f"Expected a JSON object, got {type(payload).__name__}")

        try:
            return self.parse_quote(ticker, payload)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Unexpected payload: {e!r}") from e

    async def _poll_loop(self, generation: int) -> None:
        """First cycle runs immediately; later ones keep a fixed phase."""
        loop = asyncio.get_running_loop()
        next_run = loop.time()
        while generation == self._generation:
            try:
                await self._poll_once(generation)
            except Exception:
                logger.exception("%s poll cycle failed", self.provider.value)

            now = loop.time()
            while next_run <= now:
                next_run += self._interval
            await asyncio.sleep(next_run - now)

    async def _poll_once(self, generation: int) -> None:
        """Execute one poll cycle over a snapshot of the ticker list."""
        client = self._client
        tickers = list(self._tickers)
        if not tickers or client is None:
            return

        processed = 0
        for ticker in tickers:
            try:
                update = await self.fetch_quote(client, ticker)
            except QuoteError as e:
                if generation != self._generation:
                    return
                self._report(ticker, e)
                continue

            if generation != self._generation:
                return
            self.updates.put_nowait(update)
            processed += 1

        logger.debug(
            "%s poll: updated %d/%d tickers", self.provider.value, processed, len(tickers)
        )

    def _report(self, ticker: str, error: QuoteError) -> None:
        logger.warning("%s: fetch failed for %s: %s", self.provider.value, ticker, error)
        self.errors.put_nowait(FetchError(provider=self.provider, ticker=ticker, error=error))
