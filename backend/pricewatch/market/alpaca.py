"""Alpaca market data snapshot poller for equities."""

from __future__ import annotations

from typing import Any

import httpx

from .errors import NoDataError, NoPriceError, RateLimitedError, UnauthorizedError
from .models import Provider, RawUpdate, finite_float
from .polling import PollingFetcher


class AlpacaFetcher(PollingFetcher):
    """PollingFetcher backed by GET /v2/stocks/{symbol}/snapshot.

    Requires an API key id and secret; without both the fetcher refuses to
    start. The snapshot gives the latest trade price and the previous daily
    bar, whose close is the reference for the 24h change.
    """

    provider = Provider.ALPACA
    base_url = "https://data.alpaca.markets/v2"

    def __init__(self, api_key: str = "", api_secret: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key.strip()
        self._api_secret = api_secret.strip()

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key and self._api_secret)

    def update_credentials(self, api_key: str, api_secret: str) -> bool:
        """Store new credentials. Returns True if they changed."""
        api_key, api_secret = api_key.strip(), api_secret.strip()
        changed = (api_key, api_secret) != (self._api_key, self._api_secret)
        self._api_key = api_key
        self._api_secret = api_secret
        return changed

    def quote_path(self, ticker: str) -> str:
        return f"/stocks/{ticker}/snapshot"

    def request_headers(self) -> dict[str, str]:
        return {
            "APCA-API-KEY-ID": self._api_key,
            "APCA-API-SECRET-KEY": self._api_secret,
        }

    def check_status(self, response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise UnauthorizedError()
        if response.status_code == 429:
            raise RateLimitedError()
        super().check_status(response)

    def parse_quote(self, ticker: str, payload: Any) -> RawUpdate:
        trade = payload.get("latestTrade")
        if not trade:
            raise NoDataError()

        price = finite_float(trade["p"])
        if price is None:
            raise NoPriceError()
        prev_bar = payload.get("prevDailyBar") or {}
        reference = finite_float(prev_bar.get("c"))
        daily_bar = payload.get("dailyBar") or {}

        return RawUpdate(
            product_key=ticker,
            price=price,
            reference=price if reference is None else reference,
            high_24h=finite_float(daily_bar.get("h")),
            low_24h=finite_float(daily_bar.get("l")),
            volume_24h=finite_float(daily_bar.get("v")),
        )
