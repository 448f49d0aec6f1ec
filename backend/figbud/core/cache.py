"""
In-process TTL cache with LRU capacity bound.

Backs the AI response cache. Entries live in an OrderedDict so get/set are
O(1): reads move an entry to the most-recently-used end and inserts evict
from the least-recently-used end once capacity is reached. Expired entries
are dropped lazily on access and in bulk by purge_expired().

State is process-local and is lost on restart.
"""
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from figbud.core.logging import get_logger

logger = get_logger(__name__)

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    created_at: float
    ttl_seconds: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl_seconds


class TTLCache(Generic[V]):
    """
    Capacity-bounded LRU map with per-entry TTL.

    Args:
        max_entries: Capacity before least-recently-used eviction
        default_ttl_seconds: TTL applied when set() is called without one
        clock: Time source in seconds, injectable for tests
    """

    def __init__(
        self,
        max_entries: int = 500,
        default_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[V]:
        """
        Get value from cache.

        Returns:
            Cached value if present and fresh, None on miss or expiry
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("cache_evicted", key=evicted_key[:12])
            self._entries[key] = CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl_seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds,
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("cache_expired_purged", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "default_ttl_seconds": self.default_ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }


def hash_payload(payload: Any) -> str:
    """Stable SHA-256 hex digest of a JSON-serializable payload (for cache keys)."""
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()
