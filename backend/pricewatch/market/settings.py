"""Feed settings pushed in by the settings collaborator, or read from the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from .alerts import DEFAULT_COOLDOWN_SECONDS
from .models import Instrument, MarketKind, Provider
from .polling import DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %.0f", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %.0f", name, raw, default)
        return default
    return value


def _tickers(env: Mapping[str, str], name: str) -> tuple[str, ...]:
    return tuple(t.strip().upper() for t in env.get(name, "").split(",") if t.strip())


@dataclass(frozen=True, slots=True)
class FeedSettings:
    """Everything the feed needs from the settings screen."""

    streaming_enabled: bool = True
    alerts_enabled: bool = False
    alert_cooldown: float = DEFAULT_COOLDOWN_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    display_currency: str = "USD"
    alpaca_api_key: str = ""
    alpaca_api_secret: str = ""
    crypto_tickers: tuple[str, ...] = ()
    equity_tickers: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval!r}")
        if self.alert_cooldown < 0:
            raise ValueError(f"alert_cooldown must not be negative, got {self.alert_cooldown!r}")

    @property
    def has_alpaca_credentials(self) -> bool:
        return bool(self.alpaca_api_key and self.alpaca_api_secret)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> FeedSettings:
        """Build settings from environment variables.

        - PRICEWATCH_STREAMING_ENABLED   (default true)
        - PRICEWATCH_ALERTS_ENABLED      (default false)
        - PRICEWATCH_ALERT_COOLDOWN      seconds (default 3600)
        - PRICEWATCH_POLL_INTERVAL       seconds (default 60)
        - PRICEWATCH_CURRENCY            (default USD)
        - ALPACA_API_KEY / ALPACA_API_SECRET
        - PRICEWATCH_CRYPTO / PRICEWATCH_EQUITIES  comma-separated tickers
        """
        env = os.environ if env is None else env
        return cls(
            streaming_enabled=_flag(env, "PRICEWATCH_STREAMING_ENABLED", True),
            alerts_enabled=_flag(env, "PRICEWATCH_ALERTS_ENABLED", False),
            alert_cooldown=_seconds(env, "PRICEWATCH_ALERT_COOLDOWN", DEFAULT_COOLDOWN_SECONDS),
            poll_interval=_seconds(env, "PRICEWATCH_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            display_currency=(env.get("PRICEWATCH_CURRENCY", "").strip() or "USD").upper(),
            alpaca_api_key=env.get("ALPACA_API_KEY", "").strip(),
            alpaca_api_secret=env.get("ALPACA_API_SECRET", "").strip(),
            crypto_tickers=_tickers(env, "PRICEWATCH_CRYPTO"),
            equity_tickers=_tickers(env, "PRICEWATCH_EQUITIES"),
        )

    def seed_instruments(self) -> list[Instrument]:
        """Instruments for the configured tickers, in order.

        Equities go to Alpaca when its credentials are configured, Yahoo otherwise.
        """
        equity_provider = Provider.ALPACA if self.has_alpaca_credentials else Provider.YAHOO
        instruments = [
            Instrument(ticker=t, market_kind=MarketKind.CRYPTO) for t in self.crypto_tickers
        ]
        instruments += [
            Instrument(ticker=t, market_kind=MarketKind.EQUITY, provider=equity_provider)
            for t in self.equity_tickers
        ]
        for order, instrument in enumerate(instruments):
            instrument.sort_order = order
        return instruments
