"""QuickDefine: three-tier dictionary lookup (memory cache, local store, remote API)."""

from quickdefine.cache import BoundedTTLCache
from quickdefine.config import Settings, get_settings
from quickdefine.coordinator import ResolutionCoordinator, create_coordinator
from quickdefine.db import PersistentStore
from quickdefine.models import ErrorKind, ResolutionResult, Source, StoreRecord
from quickdefine.preload import BatchLoader
from quickdefine.remote import RemoteFetcher

__version__ = "0.1.0"

__all__ = [
    "BatchLoader",
    "BoundedTTLCache",
    "ErrorKind",
    "PersistentStore",
    "RemoteFetcher",
    "ResolutionCoordinator",
    "ResolutionResult",
    "Settings",
    "Source",
    "StoreRecord",
    "create_coordinator",
    "get_settings",
]
