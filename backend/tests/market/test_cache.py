"""Tests for PriceCache."""

import threading

from pricewatch.market.cache import PriceCache
from pricewatch.market.models import PriceObservation


def _obs(price: float, observed_at: float = 1000.0) -> PriceObservation:
    return PriceObservation(price=price, percent_change_24h=0.0, observed_at=observed_at)


class TestPriceCache:
    """Unit tests for the PriceCache."""

    def test_put_and_get(self):
        """Test storing and getting an observation."""
        cache = PriceCache()
        obs = _obs(190.50)
        cache.put("AAPL", obs)
        assert cache.get("AAPL") == obs

    def test_get_unknown(self):
        """Unknown keys return None."""
        assert PriceCache().get("NOPE") is None

    def test_last_write_wins(self):
        """A later put replaces the earlier one, even with an older timestamp."""
        cache = PriceCache()
        cache.put("AAPL", _obs(190.0, observed_at=2000.0))
        cache.put("AAPL", _obs(191.0, observed_at=1000.0))
        assert cache.get_price("AAPL") == 191.0
        assert len(cache) == 1

    def test_is_stale(self):
        """Staleness is computed at read time from the observation's age."""
        cache = PriceCache()
        cache.put("AAPL", _obs(190.0, observed_at=1000.0))
        assert cache.is_stale("AAPL", now=1059.0) is False
        assert cache.is_stale("AAPL", now=1061.0) is True

    def test_absent_is_not_stale(self):
        """No observation means unknown, not stale."""
        cache = PriceCache()
        assert cache.is_stale("AAPL", now=99999.0) is False
        assert cache.get("AAPL") is None

    def test_get_all(self):
        """Test getting all prices."""
        cache = PriceCache()
        cache.put("AAPL", _obs(190.00))
        cache.put("BTC-USD", _obs(50000.00))
        all_prices = cache.get_all()
        assert set(all_prices.keys()) == {"AAPL", "BTC-USD"}

    def test_get_all_is_a_copy(self):
        """Mutating the snapshot does not touch the cache."""
        cache = PriceCache()
        cache.put("AAPL", _obs(190.00))
        snapshot = cache.get_all()
        snapshot.clear()
        assert "AAPL" in cache

    def test_version_increments(self):
        """Test that version counter increments."""
        cache = PriceCache()
        v0 = cache.version
        cache.put("AAPL", _obs(190.00))
        assert cache.version == v0 + 1
        cache.put("AAPL", _obs(191.00))
        assert cache.version == v0 + 2

    def test_get_price_convenience(self):
        """Test the convenience get_price method."""
        cache = PriceCache()
        cache.put("AAPL", _obs(190.50))
        assert cache.get_price("AAPL") == 190.50
        assert cache.get_price("NOPE") is None

    def test_len_and_contains(self):
        """Test __len__ and __contains__."""
        cache = PriceCache()
        assert len(cache) == 0
        cache.put("AAPL", _obs(190.00))
        assert len(cache) == 1
        assert "AAPL" in cache
        assert "GOOGL" not in cache

    def test_concurrent_writers(self):
        """Writers on several threads never lose the per-key invariant."""
        cache = PriceCache()

        def writer(key: str) -> None:
            for i in range(500):
                cache.put(key, _obs(float(i)))

        threads = [threading.Thread(target=writer, args=(f"K{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 4
        assert cache.version == 2000
        assert all(cache.get_price(f"K{n}") == 499.0 for n in range(4))
