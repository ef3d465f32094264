"""Market data subsystem for pricewatch.

Public API:
    PriceObservation    - Immutable price snapshot dataclass
    PriceCache          - Thread-safe in-memory price store
    AlertEvaluator      - Threshold alerts with a per-instrument cooldown
    StreamingClient     - Coinbase websocket client with reconnect and diffing
    PollingFetcher      - Base class for interval-driven REST providers
    FeedCoordinator     - Routes instruments to providers and updates to the cache
    FeedSettings        - Settings pushed in by the settings collaborator
    create_feed_coordinator - Factory that wires all of the above
    create_stream_router - FastAPI router factory for the SSE endpoint
"""

from .alerts import AlertEvaluator
from .cache import PriceCache
from .coordinator import FeedCoordinator
from .factory import create_feed_coordinator
from .models import (
    AlertEvent,
    AlertRule,
    ConnectionState,
    Instrument,
    MarketKind,
    PriceObservation,
    Provider,
)
from .polling import PollingFetcher
from .settings import FeedSettings
from .stream import create_stream_router
from .streaming import StreamingClient

__all__ = [
    "AlertEvaluator",
    "AlertEvent",
    "AlertRule",
    "ConnectionState",
    "FeedCoordinator",
    "FeedSettings",
    "Instrument",
    "MarketKind",
    "PollingFetcher",
    "PriceCache",
    "PriceObservation",
    "Provider",
    "StreamingClient",
    "create_feed_coordinator",
    "create_stream_router",
]
