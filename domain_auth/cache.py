"""
Search Cache - TTL memoization of directory search results

Provides:
- Per-key expiry derived from each domain's cache TTL
- Per-key compute serialization (thread-safety)

A miss for one key only blocks concurrent callers asking for the same key;
lookups for other keys proceed. Per-key locks live only while a compute for
that key is in flight, and expired entries are swept on every write.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class SearchCache:
    """
    Thread-safe store of query key -> directory entries with expiry.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            clock: Monotonic time source in seconds
        """
        self.clock = clock
        self.entries: Dict[str, Tuple[float, Any]] = {}
        self.locks: Dict[str, threading.Lock] = {}  # Per-key locks for compute
        self.lock_users: Dict[str, int] = {}  # Threads holding or waiting on each lock
        self.lock_lock = threading.Lock()  # Guards entries and lock bookkeeping

    def _acquire_lock(self, key: str) -> threading.Lock:
        with self.lock_lock:
            if key not in self.locks:
                self.locks[key] = threading.Lock()
                self.lock_users[key] = 0
            self.lock_users[key] += 1
            return self.locks[key]

    def _release_lock(self, key: str):
        with self.lock_lock:
            self.lock_users[key] -= 1
            if self.lock_users[key] == 0:
                del self.lock_users[key]
                del self.locks[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for key, or default if absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        with self.lock_lock:
            item = self.entries.get(key)
            if item is None:
                return _MISSING
            expires_at, value = item
            if expires_at <= self.clock():
                del self.entries[key]
                return _MISSING
            return value

    def _sweep(self, now: float):
        expired = [key for key, (expires_at, _value) in self.entries.items() if expires_at <= now]
        for key in expired:
            del self.entries[key]
        if expired:
            logger.debug(f"Search cache evicted {len(expired)} expired entr{'y' if len(expired) == 1 else 'ies'}")

    def set(self, key: str, value: Any, ttl: float):
        """
        Store value under key for ttl seconds. A ttl of 0 or less stores nothing.
        """
        if ttl <= 0:
            return
        if isinstance(value, list):
            value = tuple(value)
        with self.lock_lock:
            now = self.clock()
            self._sweep(now)
            self.entries[key] = (now + ttl, value)

    def get_or_compute(self, key: str, ttl: float, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Query key
            ttl: Seconds the computed value stays valid
            compute: Zero-argument callable producing the value

        Returns:
            The cached or freshly computed value
        """
        value = self._lookup(key)
        if value is not _MISSING:
            logger.debug(f"Search cache hit: {key}")
            return value

        lock = self._acquire_lock(key)
        try:
            with lock:
                # Another thread may have filled it while we waited
                value = self._lookup(key)
                if value is not _MISSING:
                    logger.debug(f"Search cache hit after wait: {key}")
                    return value

                logger.debug(f"Search cache miss: {key}")
                value = compute()
                self.set(key, value, ttl)
                return tuple(value) if isinstance(value, list) else value
        finally:
            self._release_lock(key)

    def invalidate(self, key: str):
        """Drop a single key."""
        with self.lock_lock:
            self.entries.pop(key, None)

    def clear(self):
        """Drop every cached entry."""
        with self.lock_lock:
            self.entries.clear()

    def __len__(self) -> int:
        with self.lock_lock:
            return len(self.entries)
