"""
In-memory caching and request de-duplication for raster clients.

Provides:
- CancelToken: abort handle shared by a fetch and everything it waits on
- TimedCache: key -> value store whose entries expire after a fixed TTL
- InFlightTable: at most one outstanding fetch per key, with bulk cancellation

Each raster client owns one TimedCache and one InFlightTable. Fetches run on
pool threads, so both structures guard their state with a lock.
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from src.habitat.errors import FetchCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """
    Abort signal for one logical fetch.

    A token may be linked to a parent: cancelling the parent cancels the
    child, never the other way round.
    """

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent.add_callback(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled()

    def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first, then raise FetchCancelled."""
        if self._event.wait(timeout=max(0.0, seconds)):
            raise FetchCancelled()


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TimedCache(Generic[T]):
    """
    Key/value cache with per-entry expiry.

    Expired entries are evicted lazily on the next ``get`` for their key.

    Attributes:
        ttl: Lifetime of an entry in seconds
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        """
        Initialize cache.

        Args:
            ttl: Seconds an entry stays valid after insertion
            clock: Time source (injectable for tests)
        """
        self.ttl = ttl
        self._clock = clock
        self._store: Dict[str, _CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            hit = self._store.get(key)
            if hit is None:
                return None
            if self._clock() > hit.expires_at:
                del self._store[key]
                logger.debug(f"Cache entry expired: {key}")
                return None
            return hit.value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._store[key] = _CacheEntry(value, self._clock() + self.ttl)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


@dataclass
class InFlightEntry(Generic[T]):
    """A pending fetch and the handle that aborts it."""

    future: "Future[T]"
    cancel: Callable[[], None]


class InFlightTable(Generic[T]):
    """Outstanding fetches keyed by request key."""

    def __init__(self):
        self._store: Dict[str, InFlightEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[InFlightEntry[T]]:
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, entry: InFlightEntry[T]) -> None:
        with self._lock:
            self._store[key] = entry

    def setdefault(self, key: str, factory: Callable[[], InFlightEntry[T]]) -> Tuple[InFlightEntry[T], bool]:
        """
        Return the existing entry for ``key`` or register a new one.

        Returns:
            (entry, created) where created is False when an existing fetch
            was joined
        """
        with self._lock:
            existing = self._store.get(key)
            if existing is not None:
                return existing, False
            entry = factory()
            self._store[key] = entry
            return entry, True

    def delete(self, key: str, entry: Optional[InFlightEntry[T]] = None) -> None:
        """Remove ``key``; when ``entry`` is given only remove that exact entry."""
        with self._lock:
            current = self._store.get(key)
            if current is None:
                return
            if entry is None or current is entry:
                del self._store[key]

    def cancel_all(self) -> int:
        """
        Abort every outstanding fetch and forget them.

        Returns:
            Number of fetches cancelled
        """
        with self._lock:
            entries = list(self._store.values())
            self._store.clear()
        for entry in entries:
            entry.cancel()
        if entries:
            logger.debug(f"Cancelled {len(entries)} in-flight fetches")
        return len(entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
