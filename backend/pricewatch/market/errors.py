"""Errors raised while fetching a single quote from a polling provider."""

from __future__ import annotations


class QuoteError(Exception):
    """Base class for per-ticker fetch failures. Never fatal to the poller."""

    default_message = "Quote request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class TransportError(QuoteError):
    default_message = "Network error"


class InvalidResponseError(QuoteError):
    default_message = "Invalid response from provider"


class UnauthorizedError(QuoteError):
    default_message = "Invalid API credentials"


class RateLimitedError(QuoteError):
    default_message = "Rate limit exceeded"


class HTTPStatusError(QuoteError):
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP error: {status_code}")


class DecodeError(QuoteError):
    default_message = "Could not decode provider response"


class NoDataError(QuoteError):
    default_message = "No data available for symbol"


class NoPriceError(QuoteError):
    default_message = "No price data available"


class ProviderAPIError(QuoteError):
    """The provider answered 200 but reported an error in the payload."""

    def __init__(self, message: str) -> None:
        super().__init__(f"API error: {message}")
