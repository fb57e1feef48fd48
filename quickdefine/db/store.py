"""
Persistent dictionary store (tier 2).

Durable key-value storage of dictionary entries keyed by normalized
word.  Every key is trimmed and lower-cased before any read or write,
so the store never holds two records that differ only by case or
surrounding whitespace.

Schema creation is lazy and memoized: the first call to :meth:`init`
(directly, or through any other operation) starts the setup and every
concurrent caller awaits that same setup.
"""

import asyncio
import logging
from collections.abc import Mapping
from datetime import timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from quickdefine.db.engine import get_engine, get_session_factory, init_db
from quickdefine.db.models import DictionaryEntryModel
from quickdefine.exceptions import (
    InputError,
    StoreError,
    StoreUnavailableError,
    StoreWriteError,
)
from quickdefine.models import StoreRecord, normalize_key

logger = logging.getLogger(__name__)

RecordLike = Union[StoreRecord, Mapping]


def coerce_record(raw: Any) -> Optional[StoreRecord]:
    """Turn a record or mapping into a normalized :class:`StoreRecord`.

    Mappings may use ``key``/``value`` or the bundled file's
    ``word``/``data`` names.  When neither ``value`` nor ``data`` is
    present the whole mapping is kept as the value.

    Returns:
        The normalized record, or ``None`` if *raw* has no usable key.
    """
    if isinstance(raw, StoreRecord):
        word = normalize_key(raw.key)
        return raw.model_copy(update={"key": word}) if word else None

    if not isinstance(raw, Mapping):
        return None

    key = raw.get("key", raw.get("word"))
    if not isinstance(key, str) or not key.strip():
        return None

    if "value" in raw:
        value = raw["value"]
    elif "data" in raw:
        value = raw["data"]
    else:
        value = dict(raw)
    return StoreRecord(key=normalize_key(key), value=value)


def _row_to_record(row: DictionaryEntryModel) -> StoreRecord:
    """Map a DictionaryEntryModel row to StoreRecord."""
    timestamp = row.timestamp
    if timestamp.tzinfo is None:
        # SQLite drops the offset; rows are always written in UTC
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return StoreRecord(key=row.word, value=row.data, timestamp=timestamp)


def _record_to_row(record: StoreRecord) -> DictionaryEntryModel:
    return DictionaryEntryModel(
        word=record.key,
        data=record.value,
        timestamp=record.timestamp,
    )


class PersistentStore:
    """SQLAlchemy-backed store of dictionary entries.

    Args:
        database_url: Async SQLAlchemy URL.  Ignored when *engine* is given.
        engine: Pre-built async engine (the store will not dispose it).
        echo: Log emitted SQL when the store builds its own engine.
    """

    def __init__(
        self,
        database_url: str = "sqlite+aiosqlite:///data/quickdefine.db",
        engine: Optional[AsyncEngine] = None,
        echo: bool = False,
    ) -> None:
        self._database_url = database_url
        self._engine = engine
        self._owns_engine = engine is None
        self._echo = echo
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._init_task: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Ensure the schema exists.

        Idempotent.  Concurrent callers share one in-flight setup; a
        failed setup is remembered and re-raised to every caller.

        Raises:
            StoreUnavailableError: If the database cannot be opened.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._setup())
        await asyncio.shield(self._init_task)

    async def _setup(self) -> None:
        try:
            if self._engine is None:
                self._engine = get_engine(self._database_url, echo=self._echo)
            await init_db(self._engine)
        except (SQLAlchemyError, OSError, ImportError) as exc:
            logger.error(
                "Persistent store initialisation failed",
                extra={"error": str(exc)},
                exc_info=True,
            )
            raise StoreUnavailableError(f"Cannot open persistent store: {exc}") from exc
        self._session_factory = get_session_factory(self._engine)
        logger.info("Persistent store ready")

    @property
    def is_ready(self) -> bool:
        """``True`` once initialisation has completed successfully."""
        task = self._init_task
        return (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
        )

    async def close(self) -> None:
        """Dispose the engine (if owned) and forget the initialisation state."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None
        self._session_factory = None
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        logger.info("Persistent store closed")

    async def _sessions(self) -> async_sessionmaker[AsyncSession]:
        await self.init()
        assert self._session_factory is not None
        return self._session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[StoreRecord]:
        """Fetch a record by key.

        Args:
            key: Word to look up (normalized before the query).

        Returns:
            StoreRecord if found, ``None`` otherwise.

        Raises:
            StoreError: If the read fails.
        """
        sessions = await self._sessions()
        word = normalize_key(key)
        if not word:
            return None
        try:
            async with sessions() as session:
                row = await session.get(DictionaryEntryModel, word)
                return _row_to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("Store get failed", extra={"word": word, "error": str(exc)})
            raise StoreError(f"Store read failed for {word!r}: {exc}") from exc

    async def has(self, key: str) -> bool:
        """Return ``True`` if a record exists for *key*."""
        return await self.get(key) is not None

    async def count(self) -> int:
        """Number of stored records.

        Raises:
            StoreError: If the query fails.
        """
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                stmt = select(func.count()).select_from(DictionaryEntryModel)
                return int(await session.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            logger.error("Store count failed", extra={"error": str(exc)})
            raise StoreError(f"Store count failed: {exc}") from exc

    async def get_all(self, limit: int = 1000) -> List[StoreRecord]:
        """Return up to *limit* records ordered by word (debugging aid)."""
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                stmt = (
                    select(DictionaryEntryModel)
                    .order_by(DictionaryEntryModel.word)
                    .limit(limit)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [_row_to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Store get_all failed", extra={"error": str(exc)})
            raise StoreError(f"Store listing failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, record: RecordLike) -> StoreRecord:
        """Insert or replace a single record.

        Args:
            record: StoreRecord or ``{key, value}`` / ``{word, data}`` mapping.

        Returns:
            The normalized record as written.

        Raises:
            InputError: If the record has no usable key.
            StoreWriteError: If the write fails.
        """
        normalized = coerce_record(record)
        if normalized is None:
            raise InputError("Dictionary entry must have a non-empty key")

        sessions = await self._sessions()
        try:
            async with sessions() as session:
                async with session.begin():
                    await session.merge(_record_to_row(normalized))
        except (SQLAlchemyError, TypeError) as exc:
            logger.error(
                "Store set failed",
                extra={"word": normalized.key, "error": str(exc)},
            )
            raise StoreWriteError(f"Store write failed for {normalized.key!r}: {exc}") from exc

        logger.debug("Store set", extra={"word": normalized.key})
        return normalized

    async def set_batch(self, records: Iterable[Any]) -> int:
        """Insert or replace many records in one transaction.

        Malformed records (no usable key) are skipped with a warning.
        Any storage fault rolls back the whole batch.  When the batch
        repeats a key, the last occurrence wins.

        Args:
            records: StoreRecords or mappings.

        Returns:
            Number of records written.

        Raises:
            StoreWriteError: If the transaction fails.
        """
        by_word: Dict[str, StoreRecord] = {}
        skipped = 0
        for raw in records:
            normalized = coerce_record(raw)
            if normalized is None:
                skipped += 1
                continue
            by_word[normalized.key] = normalized

        if skipped:
            logger.warning(
                "Skipping entries without a key",
                extra={"skipped": skipped},
            )
        if not by_word:
            return 0

        sessions = await self._sessions()
        try:
            async with sessions() as session:
                async with session.begin():
                    for normalized in by_word.values():
                        await session.merge(_record_to_row(normalized))
        except (SQLAlchemyError, TypeError) as exc:
            logger.error(
                "Store batch set failed",
                extra={"batch_size": len(by_word), "error": str(exc)},
            )
            raise StoreWriteError(f"Store batch write failed: {exc}") from exc

        logger.debug("Store batch set", extra={"written": len(by_word)})
        return len(by_word)

    async def delete(self, key: str) -> bool:
        """Delete a record.

        Returns:
            ``True`` if a row was removed, ``False`` if it did not exist.

        Raises:
            StoreWriteError: If the delete fails.
        """
        sessions = await self._sessions()
        word = normalize_key(key)
        try:
            async with sessions() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(DictionaryEntryModel).where(DictionaryEntryModel.word == word)
                    )
        except SQLAlchemyError as exc:
            logger.error("Store delete failed", extra={"word": word, "error": str(exc)})
            raise StoreWriteError(f"Store delete failed for {word!r}: {exc}") from exc
        return bool(result.rowcount)

    async def clear(self) -> int:
        """Remove every record.

        Returns:
            Number of rows removed.

        Raises:
            StoreWriteError: If the delete fails.
        """
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                async with session.begin():
                    result = await session.execute(delete(DictionaryEntryModel))
        except SQLAlchemyError as exc:
            logger.error("Store clear failed", extra={"error": str(exc)})
            raise StoreWriteError(f"Store clear failed: {exc}") from exc
        removed = result.rowcount or 0
        logger.info("Store cleared", extra={"entries_removed": removed})
        return removed
