"""In-memory lookup cache (tier 1)."""

from quickdefine.cache.lru import BoundedTTLCache, CacheEntry
from quickdefine.models import CacheStats

__all__ = ["BoundedTTLCache", "CacheEntry", "CacheStats"]
