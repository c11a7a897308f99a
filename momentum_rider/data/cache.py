"""Key-value caching for momentum and price lookups.

The cache is an injected collaborator rather than module state: callers hold
a ``CacheBackend`` (in-memory here; a distributed store can implement the
same interface) wrapped in a ``ReadThroughCache`` that adds single-flight
loading and falls back to direct computation when the backend is down.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from momentum_rider.utils.exceptions import CacheUnavailableError
from momentum_rider.utils.logging import get_logger

logger = get_logger(__name__)


class CacheBackend(ABC):
    """Get/set/delete-by-key store with per-entry TTL.

    ``get`` returns None for a missing or expired key, so None itself
    cannot be cached. Backends raise CacheUnavailableError (or an OSError)
    when the store cannot be reached.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryCache(CacheBackend):
    """Thread-safe in-memory cache with TTL support.

    Expiry uses a monotonic clock, so wall-clock adjustments never extend
    or cut short an entry's lifetime.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() < expires_at:
                return value
            del self._entries[key]
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None


class ReadThroughCache:
    """Read-through wrapper with single-flight loading per key.

    Concurrent misses for the same key share one computation: the first
    caller loads, the others wait for its result (or its exception). If the
    backend is unreachable, values are computed directly and not cached.

    Example:
        >>> cache = ReadThroughCache(InMemoryCache(), default_ttl=3600)
        >>> record = cache.get_or_compute("momentum:VTI", lambda: scorer.score(...))
    """

    def __init__(self, backend: CacheBackend, default_ttl: float = 3600):
        self.backend = backend
        self.default_ttl = default_ttl
        self._flights: Dict[str, _Flight] = {}
        self._lock = threading.Lock()

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Cache key
            compute: Loader called on a miss
            ttl: Entry lifetime in seconds (defaults to default_ttl)
            should_cache: Predicate deciding whether a computed value is stored
        """
        cached = self._safe_get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        try:
            flight.value = compute()
            if flight.value is not None and (should_cache is None or should_cache(flight.value)):
                self._safe_set(key, flight.value, ttl or self.default_ttl)
            return flight.value
        except Exception as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._flights.pop(key, None)
            flight.done.set()

    def invalidate(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except (CacheUnavailableError, OSError) as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    def _safe_get(self, key: str) -> Optional[Any]:
        try:
            return self.backend.get(key)
        except (CacheUnavailableError, OSError) as e:
            logger.warning("Cache unavailable, computing %s directly: %s", key, e)
            return None

    def _safe_set(self, key: str, value: Any, ttl: float) -> None:
        try:
            self.backend.set(key, value, ttl)
        except (CacheUnavailableError, OSError) as e:
            logger.warning("Cache write skipped for %s: %s", key, e)
