"""Threshold alerts with a per-instrument cooldown."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Lock

from .models import AlertCondition, AlertEvent, AlertRule, Instrument, PriceObservation

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 3600.0

AlertSink = Callable[[AlertEvent], None]


def format_price(value: float) -> str:
    return f"${value:,.2f}"


class AlertEvaluator:
    """Decides whether an observation should fire an alert for an instrument.

    One cooldown window is shared by all conditions of an instrument: once any
    condition fires, nothing else fires for that instrument until the cooldown
    has elapsed. Conditions are checked in a fixed order (above, below,
    percent change) and only the first match is reported.

    Construct once at startup and hand it to the FeedCoordinator.
    """

    def __init__(
        self,
        sink: AlertSink | None = None,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sink = sink
        self._cooldown = cooldown
        self._clock = clock
        self._last_fired: dict[str, float] = {}
        self._lock = Lock()

    @property
    def cooldown(self) -> float:
        return self._cooldown

    def set_cooldown(self, seconds: float) -> None:
        """Applies to every evaluation from now on."""
        self._cooldown = float(seconds)
        logger.info("Alert cooldown set to %.0fs", self._cooldown)

    def last_fired_at(self, instrument_id: str) -> float | None:
        with self._lock:
            return self._last_fired.get(instrument_id)

    def in_cooldown(self, instrument_id: str, now: float | None = None) -> bool:
        last = self.last_fired_at(instrument_id)
        if last is None:
            return False
        now = self._clock() if now is None else now
        return now - last < self._cooldown

    def check(
        self,
        instrument: Instrument,
        rule: AlertRule,
        observation: PriceObservation,
    ) -> AlertEvent | None:
        """Evaluate one observation. Returns the emitted event, if any."""
        if not rule.enabled:
            return None

        now = self._clock()
        if self.in_cooldown(instrument.id, now):
            return None

        match = self._match(instrument.ticker, rule, observation)
        if match is None:
            return None

        condition, message, value = match
        with self._lock:
            previous = self._last_fired.get(instrument.id, now)
            self._last_fired[instrument.id] = max(previous, now)

        event = AlertEvent(
            instrument_id=instrument.id,
            ticker=instrument.ticker,
            condition=condition,
            message=message,
            value=value,
            fired_at=now,
        )
        logger.info("Alert fired: %s", message)
        if self._sink is not None:
            self._sink(event)
        return event

    @staticmethod
    def _match(
        ticker: str, rule: AlertRule, observation: PriceObservation
    ) -> tuple[AlertCondition, str, float] | None:
        price = observation.price
        if rule.above is not None and price >= rule.above:
            return (
                AlertCondition.ABOVE,
                f"{ticker} above {format_price(rule.above)}: now {format_price(price)}",
                price,
            )
        if rule.below is not None and price <= rule.below:
            return (
                AlertCondition.BELOW,
                f"{ticker} below {format_price(rule.below)}: now {format_price(price)}",
                price,
            )
        change = observation.percent_change_24h
        if rule.percent_change is not None and abs(change) >= rule.percent_change:
            direction = "up" if change >= 0 else "down"
            return (
                AlertCondition.PERCENT_CHANGE,
                f"{ticker} {direction} {abs(change):.1f}%",
                change,
            )
        return None
