"""
Async database engine and session factory for the persistent store.

Defaults to a local SQLite file through aiosqlite; any SQLAlchemy async
URL works.  In-memory SQLite URLs use a ``StaticPool`` so every session
shares the same database.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


def _is_memory_sqlite(database: Optional[str]) -> bool:
    return database in (None, "", ":memory:")


def get_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database URL.

    For file-backed SQLite the parent directory is created if missing.

    Args:
        database_url: Async connection URL (e.g. ``sqlite+aiosqlite:///data/qd.db``).
        echo: Log emitted SQL.

    Returns:
        AsyncEngine instance.
    """
    url = make_url(database_url)
    kwargs: Dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        if _is_memory_sqlite(url.database):
            # StaticPool ensures all connections share the same in-memory database
            kwargs.update(
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs.update(pool_pre_ping=True)

    return create_async_engine(url, **kwargs)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine.

    Args:
        engine: Async SQLAlchemy engine.

    Returns:
        Session factory (call to get a new AsyncSession).
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables if they do not exist.

    Idempotent: safe to call on every startup.

    Args:
        engine: Async SQLAlchemy engine.
    """
    from quickdefine.db.models import DictionaryEntryModel  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", extra={"url": engine.url.render_as_string()})
