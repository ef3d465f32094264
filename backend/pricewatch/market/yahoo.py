"""Yahoo Finance chart API poller for equities. No credentials needed."""

from __future__ import annotations

from typing import Any

from .errors import NoDataError, NoPriceError, ProviderAPIError
from .models import Provider, RawUpdate, finite_float
from .polling import PollingFetcher

USER_AGENT = "Mozilla/5.0"


class YahooFetcher(PollingFetcher):
    """PollingFetcher backed by GET /v8/finance/chart/{symbol}.

    Reads ``chart.result[0].meta``: ``regularMarketPrice`` is the price and
    ``previousClose`` the reference (falling back to the price itself).
    """

    provider = Provider.YAHOO
    base_url = "https://query1.finance.yahoo.com/v8/finance/chart"

    def quote_path(self, ticker: str) -> str:
        return f"/{ticker}"

    def quote_params(self, ticker: str) -> dict[str, str]:
        return {"interval": "1d", "range": "2d"}

    def request_headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT}

    def parse_quote(self, ticker: str, payload: Any) -> RawUpdate:
        chart = payload["chart"]

        error = chart.get("error")
        if error:
            raise ProviderAPIError(error.get("description") or error.get("code") or "unknown")

        results = chart.get("result")
        if not results:
            raise NoDataError()

        meta = results[0]["meta"]
        price = finite_float(meta.get("regularMarketPrice"))
        if price is None:
            raise NoPriceError()
        reference = finite_float(meta.get("previousClose"))

        return RawUpdate(
            product_key=ticker,
            price=price,
            reference=price if reference is None else reference,
            high_24h=finite_float(meta.get("regularMarketDayHigh")),
            low_24h=finite_float(meta.get("regularMarketDayLow")),
            volume_24h=finite_float(meta.get("regularMarketVolume")),
        )
