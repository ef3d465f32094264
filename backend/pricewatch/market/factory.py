"""Factory for wiring the market data feed."""

from __future__ import annotations

import logging

from .alerts import AlertEvaluator, AlertSink
from .alpaca import AlpacaFetcher
from .cache import PriceCache
from .coordinator import FeedCoordinator
from .models import Provider
from .settings import FeedSettings
from .streaming import StreamingClient
from .yahoo import YahooFetcher

logger = logging.getLogger(__name__)


def create_feed_coordinator(
    settings: FeedSettings | None = None,
    sink: AlertSink | None = None,
    price_cache: PriceCache | None = None,
) -> FeedCoordinator:
    """Build the cache, alert evaluator, streaming client and fetchers.

    - settings omitted → FeedSettings.from_env()
    - Alpaca credentials missing → the Alpaca fetcher exists but never starts

    Returns an unstarted coordinator. Caller must await coordinator.start().
    """
    settings = settings or FeedSettings.from_env()
    cache = price_cache if price_cache is not None else PriceCache()
    evaluator = AlertEvaluator(sink=sink, cooldown=settings.alert_cooldown)

    fetchers = {
        Provider.ALPACA: AlpacaFetcher(
            api_key=settings.alpaca_api_key, api_secret=settings.alpaca_api_secret
        ),
        Provider.YAHOO: YahooFetcher(),
    }
    if settings.has_alpaca_credentials:
        logger.info("Equity data: Alpaca and Yahoo Finance")
    else:
        logger.info("Equity data: Yahoo Finance (no Alpaca credentials)")

    return FeedCoordinator(
        cache=cache,
        evaluator=evaluator,
        streaming=StreamingClient(),
        fetchers=fetchers,
        settings=settings,
    )
