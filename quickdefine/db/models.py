"""
SQLAlchemy model for persisted dictionary entries.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from quickdefine.db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DictionaryEntryModel(Base):
    """One dictionary entry keyed by normalized word.

    Attributes:
        word: Trimmed, lower-cased word or phrase (primary key).
        data: Entry payload as JSON.
        timestamp: Time the row was last written.
    """

    __tablename__ = "dictionary_entries"

    word: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[Any] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
