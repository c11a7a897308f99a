"""Unit tests for the momentum cache."""

import threading
import time
from typing import Any, Optional

import pytest

from momentum_rider.data.cache import CacheBackend, InMemoryCache, ReadThroughCache
from momentum_rider.utils.exceptions import CacheUnavailableError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend(CacheBackend):
    """Backend whose store is unreachable."""

    def __init__(self, error: Exception):
        self.error = error

    def get(self, key: str) -> Optional[Any]:
        raise self.error

    def set(self, key: str, value: Any, ttl: float) -> None:
        raise self.error

    def delete(self, key: str) -> None:
        raise self.error


class TestInMemoryCache:
    """Test cases for InMemoryCache."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def cache(self, clock: FakeClock) -> InMemoryCache:
        return InMemoryCache(clock=clock)

    def test_set_and_get(self, cache: InMemoryCache) -> None:
        """Test stored values are returned before expiry."""
        cache.set("momentum:VTI", {"average": 12.5}, ttl=60)
        assert cache.get("momentum:VTI") == {"average": 12.5}
        assert len(cache) == 1

    def test_missing_key(self, cache: InMemoryCache) -> None:
        """Test unknown keys return None."""
        assert cache.get("momentum:NOPE") is None

    def test_expiry(self, cache: InMemoryCache, clock: FakeClock) -> None:
        """Test entries expire after their TTL and are evicted."""
        cache.set("k", "v", ttl=60)

        clock.now += 59
        assert cache.get("k") == "v"

        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_invalid_ttl(self, cache: InMemoryCache) -> None:
        """Test non-positive TTLs are rejected."""
        with pytest.raises(ValueError, match="ttl must be positive"):
            cache.set("k", "v", ttl=0)

    def test_delete_and_clear(self, cache: InMemoryCache) -> None:
        """Test delete removes one key and clear removes all."""
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=10)

        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


class TestReadThroughCache:
    """Test cases for ReadThroughCache."""

    @pytest.fixture
    def cache(self) -> ReadThroughCache:
        return ReadThroughCache(InMemoryCache(), default_ttl=60)

    def test_miss_then_hit(self, cache: ReadThroughCache) -> None:
        """Test the loader runs once and the value is then served from cache."""
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert cache.get_or_compute("k", compute) == "value"
        assert cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1

    def test_should_cache_predicate(self, cache: ReadThroughCache) -> None:
        """Test rejected values are returned but not stored."""
        calls = []

        def compute():
            calls.append(1)
            return {"error": "no data"}

        for _ in range(2):
            cache.get_or_compute("k", compute, should_cache=lambda v: "error" not in v)

        assert len(calls) == 2
        assert cache.backend.get("k") is None

    def test_none_not_cached(self, cache: ReadThroughCache) -> None:
        """Test None results are never stored."""
        assert cache.get_or_compute("k", lambda: None) is None
        assert len(cache.backend) == 0

    def test_loader_error_propagates(self, cache: ReadThroughCache) -> None:
        """Test loader exceptions reach the caller and do not poison the key."""
        def failing():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError, match="upstream down"):
            cache.get_or_compute("k", failing)

        assert cache.get_or_compute("k", lambda: "recovered") == "recovered"

    def test_invalidate(self, cache: ReadThroughCache) -> None:
        """Test invalidated keys are recomputed."""
        cache.get_or_compute("k", lambda: "old")
        cache.invalidate("k")
        assert cache.get_or_compute("k", lambda: "new") == "new"

    @pytest.mark.parametrize(
        "error", [CacheUnavailableError("redis down"), ConnectionRefusedError("refused")]
    )
    def test_backend_unavailable(self, error: Exception) -> None:
        """Test an unreachable backend degrades to direct computation."""
        cache = ReadThroughCache(BrokenBackend(error))

        assert cache.get_or_compute("k", lambda: 42) == 42
        cache.invalidate("k")

    def test_single_flight(self, cache: ReadThroughCache) -> None:
        """Test concurrent misses for one key share a single computation."""
        started = threading.Event()
        release = threading.Event()
        calls = []
        results = []

        def compute():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return "shared"

        def worker():
            results.append(cache.get_or_compute("k", compute))

        first = threading.Thread(target=worker)
        first.start()
        assert started.wait(timeout=5)

        second = threading.Thread(target=worker)
        second.start()
        time.sleep(0.05)
        release.set()

        first.join(timeout=5)
        second.join(timeout=5)

        assert len(calls) == 1
        assert results == ["shared", "shared"]
