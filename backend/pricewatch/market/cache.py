"""Thread-safe in-memory price cache."""

from __future__ import annotations

from threading import Lock

from .models import PriceObservation


class PriceCache:
    """Thread-safe in-memory cache of the latest observation for each product key.

    Writers: FeedCoordinator, on behalf of every provider.
    Readers: SSE streaming endpoint, status endpoint, menu rendering.

    Last write wins. There is no eviction; entries live as long as the process.
    """

    def __init__(self) -> None:
        self._prices: dict[str, PriceObservation] = {}
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every put

    def put(self, key: str, observation: PriceObservation) -> None:
        """Store an observation, replacing whatever was there."""
        with self._lock:
            self._prices[key] = observation
            self._version += 1

    def get(self, key: str) -> PriceObservation | None:
        """Latest observation for a key, or None if never seen."""
        with self._lock:
            return self._prices.get(key)

    def is_stale(self, key: str, now: float | None = None) -> bool:
        """True only for a known observation older than 60 seconds.

        A missing key is "unknown", not stale: use get() to tell them apart.
        """
        observation = self.get(key)
        return observation.is_stale(now) if observation else False

    def get_all(self) -> dict[str, PriceObservation]:
        """Snapshot of all current prices. Returns a shallow copy."""
        with self._lock:
            return dict(self._prices)

    def get_price(self, key: str) -> float | None:
        """Convenience: get just the price float, or None."""
        observation = self.get(key)
        return observation.price if observation else None

    @property
    def version(self) -> int:
        """Current version counter. Useful for SSE change detection."""
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._prices
