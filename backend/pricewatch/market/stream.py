"""SSE streaming endpoint for live price updates."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .coordinator import FeedCoordinator

logger = logging.getLogger(__name__)


def build_snapshot(coordinator: FeedCoordinator, now: float | None = None) -> dict:
    """Prices keyed by product key plus the streaming connection state."""
    now = time.time() if now is None else now
    return {
        "connection": coordinator.connection_state.to_dict(),
        "prices": {key: obs.to_dict(now) for key, obs in coordinator.prices().items()},
    }


def create_stream_router(coordinator: FeedCoordinator) -> APIRouter:
    """Create the streaming router with a reference to the feed coordinator.

    This factory pattern lets us inject the coordinator without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/prices")
    async def stream_prices(request: Request) -> StreamingResponse:
        """SSE endpoint for live price updates.

        Sends the full price map whenever the cache or the connection state
        changes. Events look like:

            data: {"connection": {"status": "connected", ...},
                   "prices": {"BTC-USD": {"price": 50000.0, "stale": false, ...}}}

        Includes a retry directive so the browser auto-reconnects on
        disconnection (EventSource built-in behavior).
        """
        return StreamingResponse(
            _generate_events(coordinator, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.get("/status")
    async def status() -> dict:
        """Connection badge, price count and the latest error per provider."""
        return {
            "connection": coordinator.connection_state.to_dict(),
            "prices": len(coordinator.cache),
            "errors": {
                provider.value: {"ticker": error.ticker, "message": str(error.error)}
                for provider, error in coordinator.last_errors.items()
            },
        }

    return router


async def _generate_events(
    coordinator: FeedCoordinator,
    request: Request,
    interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted price events.

    Checks for changes every ``interval`` seconds. Stops when the client
    disconnects (detected via request.is_disconnected()).
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    last_seen = None
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s", client_ip)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            current = (coordinator.cache.version, coordinator.connection_state)
            if current != last_seen:
                last_seen = current
                payload = json.dumps(build_snapshot(coordinator))
                yield f"data: {payload}\n\n"

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
