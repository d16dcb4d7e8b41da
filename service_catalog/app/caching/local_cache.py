"""
Process-local cache tier.

Per-key TTL on top of ``cachetools.TLRUCache``: each entry carries its own
expiry, and the least recently used entry is evicted once ``maxsize`` is
reached. Visible only inside this process; no network cost.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from cachetools import TLRUCache

from shared.logging import get_logger
from .key_patterns import KeyPattern


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the (monotonic) time it stops being served."""
    key: str
    value: Any
    expires_at: float


def _entry_expiry(key: str, entry: CacheEntry, now: float) -> float:
    return entry.expires_at


class LocalCache:
    """Thread-safe in-process TTL cache with pattern deletion."""

    tier = "local"

    def __init__(self, maxsize: int = 10000, default_ttl: int = 300, timer: Callable[[], float] = time.monotonic):
        self.maxsize = maxsize
        self.default_ttl = default_ttl
        self._timer = timer
        self._cache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)
        self._lock = threading.RLock()
        self.logger = get_logger("catalog.cache.local")

    def get(self, key: str) -> Optional[Any]:
        """Value for ``key``, or None when absent or expired."""
        with self._lock:
            entry = self._cache.get(key)
        return entry.value if entry is not None else None

    def entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store ``value`` for ``ttl`` seconds. None values are not cached."""
        if value is None:
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False
        with self._lock:
            self._cache[key] = CacheEntry(key, value, self._timer() + ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def keys(self) -> List[str]:
        """Live (unexpired) keys."""
        with self._lock:
            self._cache.expire()
            return list(self._cache.keys())

    def delete_matching(self, pattern: KeyPattern) -> int:
        """Delete every key the pattern covers; the tier has no native scan, so enumerate."""
        with self._lock:
            if pattern.is_exact:
                return 1 if self._cache.pop(pattern.template, None) is not None else 0
            doomed = pattern.scan(self.keys())
            for key in doomed:
                self._cache.pop(key, None)

        if doomed:
            self.logger.debug("Local keys cleared", pattern=pattern.template, count=len(doomed))
        return len(doomed)

    def flush(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
