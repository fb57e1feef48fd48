"""
Data models shared across the lookup tiers.

Pydantic models describe the values that cross tier boundaries: the
records kept by the persistent store, the per-call resolution result,
and the statistics/report objects returned to callers.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def normalize_key(key: str) -> str:
    """Trim and lower-case a lookup key.

    Every tier addresses records through this function, so ``"Hello "``
    and ``"hello"`` always resolve to the same entry.
    """
    return key.strip().lower()


class ErrorKind(str, enum.Enum):
    """Why a resolution produced no value."""

    INPUT = "input"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NETWORK = "network"


class Source(str, enum.Enum):
    """Which tier produced a resolved value."""

    CACHE = "cache"
    STORE = "store"
    REMOTE = "remote"


class StoreRecord(BaseModel):
    """A dictionary entry as kept by the persistent store.

    Attributes:
        key: Normalized word or phrase.
        value: The dictionary entry payload (usually the remote JSON array).
        timestamp: UTC time the record was written.
    """

    key: str
    value: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResolutionResult(BaseModel):
    """Outcome of a single ``resolve`` call.

    Attributes:
        key: The normalized key that was looked up.
        value: Resolved dictionary entry, or ``None`` on failure.
        source: Tier that produced the value.
        error: Failure kind when no value was produced.
        message: Human-readable error detail.
        latency_ms: Wall time spent resolving.
    """

    key: str = ""
    value: Any = None
    source: Optional[Source] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class CacheStats(BaseModel):
    """Aggregate in-memory cache statistics.

    Attributes:
        size: Current number of entries.
        max_size: Configured capacity.
        hits: Total cache hit count.
        misses: Total cache miss count (including expired entries).
        hit_rate: Ratio of hits to total lookups (0.0 if no lookups).
        evictions: Entries removed to make room for new keys.
        expirations: Entries removed because they outlived the TTL.
    """

    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    evictions: int = 0
    expirations: int = 0


class StoreStats(BaseModel):
    """Persistent store availability and size."""

    available: bool = False
    count: Optional[int] = None
    error: Optional[str] = None


class CoordinatorStats(BaseModel):
    """Snapshot returned by ``ResolutionCoordinator.stats``."""

    cache: CacheStats
    store: StoreStats


class PreloadReport(BaseModel):
    """Summary of a bulk preload run.

    Attributes:
        processed: Input records handled (including skipped malformed ones).
        total: Input records offered.
        batches: Batches committed.
        skipped: ``True`` when the store already held enough entries.
        cancelled: ``True`` when the run stopped early on a cancel signal.
    """

    processed: int = 0
    total: int = 0
    batches: int = 0
    skipped: bool = False
    cancelled: bool = False
