"""Data models for market data."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Observations older than this are shown as stale
STALE_AFTER_SECONDS = 60.0


class MarketKind(str, Enum):
    CRYPTO = "crypto"
    EQUITY = "equity"


class Provider(str, Enum):
    """Upstream feed an instrument is routed to."""

    COINBASE = "coinbase"
    ALPACA = "alpaca"
    YAHOO = "yahoo"

    @property
    def is_streaming(self) -> bool:
        return self is Provider.COINBASE


DEFAULT_PROVIDERS: dict[MarketKind, Provider] = {
    MarketKind.CRYPTO: Provider.COINBASE,
    MarketKind.EQUITY: Provider.YAHOO,
}


@dataclass(slots=True)
class AlertRule:
    """Per-instrument alert thresholds. Any threshold may be left unset."""

    enabled: bool = False
    above: float | None = None
    below: float | None = None
    percent_change: float | None = None

    @property
    def is_active(self) -> bool:
        return self.enabled and (
            self.above is not None or self.below is not None or self.percent_change is not None
        )


@dataclass(slots=True)
class Instrument:
    """A tracked symbol as supplied by the symbol registry."""

    ticker: str
    market_kind: MarketKind
    provider: Provider | None = None
    display_name: str = ""
    sort_order: int = 0
    alert: AlertRule = field(default_factory=AlertRule)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.ticker = self.ticker.upper().strip()
        self.market_kind = MarketKind(self.market_kind)
        if self.provider is None:
            self.provider = DEFAULT_PROVIDERS[self.market_kind]
        else:
            self.provider = Provider(self.provider)
        if not self.display_name:
            self.display_name = self.ticker


def product_key(instrument: Instrument, currency: str = "USD") -> str:
    """Cache and subscription key for an instrument.

    Streaming products are quoted against the display currency
    (``BTC-USD``); polled equities use the bare ticker.
    """
    if instrument.provider is not None and instrument.provider.is_streaming:
        return f"{instrument.ticker}-{currency.upper()}"
    return instrument.ticker


def finite_float(value: Any) -> float | None:
    """Parse a provider number. Booleans, NaN and infinities count as missing."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def percent_change(price: float, reference: float) -> float:
    """Percentage move from ``reference`` to ``price``. Zero reference gives 0."""
    if reference == 0:
        return 0.0
    return (price - reference) / reference * 100


@dataclass(frozen=True, slots=True)
class RawUpdate:
    """Provider output before normalization.

    ``reference`` is the 24h open for the streaming feed and the previous
    close for polled quotes.
    """

    product_key: str
    price: float
    reference: float
    high_24h: float | None = None
    low_24h: float | None = None
    volume_24h: float | None = None


@dataclass(frozen=True, slots=True)
class PriceObservation:
    """Immutable snapshot of one product's latest price."""

    price: float
    percent_change_24h: float
    high_24h: float | None = None
    low_24h: float | None = None
    volume_24h: float | None = None
    observed_at: float = field(default_factory=time.time)  # Unix seconds

    @classmethod
    def from_raw(cls, update: RawUpdate, observed_at: float | None = None) -> PriceObservation:
        return cls(
            price=update.price,
            percent_change_24h=percent_change(update.price, update.reference),
            high_24h=update.high_24h,
            low_24h=update.low_24h,
            volume_24h=update.volume_24h,
            observed_at=time.time() if observed_at is None else observed_at,
        )

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.observed_at

    def is_stale(self, now: float | None = None) -> bool:
        """True once the observation is more than 60 seconds old."""
        return self.age(now) > STALE_AFTER_SECONDS

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' relative to the 24h reference."""
        if self.percent_change_24h > 0:
            return "up"
        elif self.percent_change_24h < 0:
            return "down"
        return "flat"

    def to_dict(self, now: float | None = None) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "price": self.price,
            "percent_change_24h": round(self.percent_change_24h, 4),
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "volume_24h": self.volume_24h,
            "observed_at": self.observed_at,
            "direction": self.direction,
            "stale": self.is_stale(now),
        }


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Streaming connection state. ``attempt`` and ``reason`` only apply to
    RECONNECTING and FAILED respectively."""

    status: ConnectionStatus
    attempt: int = 0
    reason: str = ""

    @classmethod
    def disconnected(cls) -> ConnectionState:
        return cls(ConnectionStatus.DISCONNECTED)

    @classmethod
    def connecting(cls) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTING)

    @classmethod
    def connected(cls) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTED)

    @classmethod
    def reconnecting(cls, attempt: int) -> ConnectionState:
        return cls(ConnectionStatus.RECONNECTING, attempt=attempt)

    @classmethod
    def failed(cls, reason: str) -> ConnectionState:
        return cls(ConnectionStatus.FAILED, reason=reason)

    def __str__(self) -> str:
        if self.status is ConnectionStatus.RECONNECTING:
            return f"reconnecting (attempt {self.attempt})"
        if self.status is ConnectionStatus.FAILED:
            return f"failed: {self.reason}"
        return self.status.value

    def to_dict(self) -> dict:
        return {"status": self.status.value, "attempt": self.attempt, "reason": self.reason}


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    PERCENT_CHANGE = "percent_change"


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Alert handed to the notification sink."""

    instrument_id: str
    ticker: str
    condition: AlertCondition
    message: str
    value: float
    fired_at: float


@dataclass(frozen=True, slots=True)
class FetchError:
    """A per-ticker polling failure, published on a fetcher's error channel."""

    provider: Provider
    ticker: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.provider.value} {self.ticker}: {self.error}"
