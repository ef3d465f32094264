"""Tests for the FastAPI app wiring."""

import logging

import pytest
from fastapi.testclient import TestClient

from pricewatch.main import create_app, log_alert
from pricewatch.market.models import AlertCondition, AlertEvent
from pricewatch.market.settings import FeedSettings


def test_app_lifespan_starts_and_stops_coordinator():
    """No configured tickers means no network; the app still serves status."""
    app = create_app(FeedSettings())
    coordinator = app.state.coordinator

    with TestClient(app) as client:
        assert coordinator._pumps
        response = client.get("/api/stream/status")

    assert response.status_code == 200
    assert response.json()["connection"]["status"] == "disconnected"
    assert coordinator._pumps == []


@pytest.mark.asyncio
async def test_seeding_failure_still_stops_coordinator():
    """If seeding instruments fails at startup the started tasks are torn down."""
    app = create_app(FeedSettings())
    coordinator = app.state.coordinator

    async def broken_seed(instruments):
        raise RuntimeError("seed failed")

    coordinator.set_instruments = broken_seed

    with pytest.raises(RuntimeError, match="seed failed"):
        async with app.router.lifespan_context(app):
            pass

    assert coordinator._pumps == []


def test_log_alert(caplog):
    event = AlertEvent(
        instrument_id="1",
        ticker="BTC",
        condition=AlertCondition.ABOVE,
        message="BTC above $50,000.00: now $50,100.00",
        value=50100.0,
        fired_at=0.0,
    )
    with caplog.at_level(logging.WARNING, logger="pricewatch.main"):
        log_alert(event)
    assert "BTC above $50,000.00" in caplog.text
