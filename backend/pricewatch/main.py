"""FastAPI application exposing the live price feed."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .market import FeedSettings, create_feed_coordinator, create_stream_router
from .market.models import AlertEvent

logger = logging.getLogger(__name__)


def log_alert(event: AlertEvent) -> None:
    """Default notification sink. Delivery to the desktop is someone else's job."""
    logger.warning("ALERT %s: %s", event.ticker, event.message)


def create_app(settings: FeedSettings | None = None) -> FastAPI:
    settings = settings or FeedSettings.from_env()
    coordinator = create_feed_coordinator(settings, sink=log_alert)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await coordinator.start()
        try:
            await coordinator.set_instruments(settings.seed_instruments())
            yield
        finally:
            await coordinator.stop()

    app = FastAPI(title="pricewatch", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.include_router(create_stream_router(coordinator))
    return app
