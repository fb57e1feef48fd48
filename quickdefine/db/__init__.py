"""Persistent dictionary store (tier 2).

Provides the async engine, the entry model and the store used by the
resolution coordinator.
"""

from quickdefine.db.engine import Base, get_engine, get_session_factory, init_db
from quickdefine.db.models import DictionaryEntryModel
from quickdefine.db.store import PersistentStore, coerce_record

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "init_db",
    "DictionaryEntryModel",
    "PersistentStore",
    "coerce_record",
]
