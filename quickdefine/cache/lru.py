"""
Bounded in-memory cache for QuickDefine (tier 1).

Holds recently resolved dictionary entries keyed by normalized word.
Enforces both a fixed capacity (least-recently-used eviction) and a
per-entry TTL.  Expiry is lazy: entries are only checked when touched,
there is no background sweep.
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from pydantic import BaseModel

from quickdefine.exceptions import ConfigurationError
from quickdefine.models import CacheStats

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """A single cached value.

    Attributes:
        value: The cached dictionary entry.
        inserted_at: Clock reading when the entry was stored.
    """

    value: Any = None
    inserted_at: float


class BoundedTTLCache:
    """Fixed-capacity LRU cache with TTL expiration.

    Iteration order of the underlying ``OrderedDict`` is recency order:
    the first key is the least recently used one and is evicted first.
    A successful ``get`` moves the entry to the end.  The insertion time
    is not refreshed on access, so an entry still expires ``ttl_seconds``
    after it was last ``set``.

    Not thread-safe; intended to live on a single event loop.

    Args:
        max_size: Maximum number of entries held.
        ttl_seconds: Maximum entry age in seconds.
        clock: Monotonic time source in seconds (injectable for tests).

    Raises:
        ConfigurationError: If ``max_size`` < 1 or ``ttl_seconds`` <= 0.
    """

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ConfigurationError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ConfigurationError("ttl_seconds must be positive")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._max_size = max_size
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get(self, key: str) -> Optional[Any]:
        """Look up a value, promoting it to most recently used.

        Expired entries are deleted and counted as a miss.

        Args:
            key: Cache key.

        Returns:
            The cached value on a hit, or ``None`` on a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() - entry.inserted_at > self._ttl_seconds:
            del self._entries[key]
            self._misses += 1
            self._expirations += 1
            logger.debug("Cache entry expired", extra={"cache_key": key})
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting the least recently used entry if full.

        Overwriting an existing key never evicts another entry; it
        refreshes the value, the insertion time and the recency.

        Args:
            key: Cache key.
            value: Value to cache.
        """
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Cache entry evicted", extra={"cache_key": evicted})

        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def invalidate(self, key: str) -> bool:
        """Remove a single entry.

        Returns:
            ``True`` if an entry was removed, ``False`` otherwise.
        """
        if self._entries.pop(key, None) is not None:
            logger.debug("Cache entry invalidated", extra={"cache_key": key})
            return True
        return False

    def clear(self) -> int:
        """Remove all entries from the cache.

        Returns:
            Number of entries removed.
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared", extra={"entries_removed": count})
        return count

    def cleanup_expired(self) -> int:
        """Remove every expired entry in one pass.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired_keys = [
            key
            for key, entry in self._entries.items()
            if now - entry.inserted_at > self._ttl_seconds
        ]
        for key in expired_keys:
            del self._entries[key]
        self._expirations += len(expired_keys)

        if expired_keys:
            logger.info(
                "Expired entries cleaned up",
                extra={"count": len(expired_keys)},
            )
        return len(expired_keys)

    def stats(self) -> CacheStats:
        """Return aggregate cache statistics."""
        total = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            max_size=self._max_size,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total > 0 else 0.0,
            evictions=self._evictions,
            expirations=self._expirations,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def size(self) -> int:
        """Current number of entries in the cache."""
        return len(self._entries)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds
