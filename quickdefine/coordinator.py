"""
Three-tier resolution coordinator for QuickDefine.

Resolves a word by cascading through the in-memory cache, the
persistent store and the remote dictionary API, writing every value
found in a slower tier back into the faster ones.

Flow of ``resolve``:
1. Normalize the key (trim + lower-case); reject empty or too-long input
2. Cache probe
3. Store probe (skipped when the store is unavailable)
4. Remote fetch, then populate cache and (best-effort) store
5. Report the remote failure kind if every tier missed
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from quickdefine.cache.lru import BoundedTTLCache
from quickdefine.config import Settings, get_settings
from quickdefine.db.store import PersistentStore
from quickdefine.exceptions import (
    InputError,
    NotFoundError,
    QuickDefineException,
    RemoteError,
    StoreError,
    StoreUnavailableError,
    TransientNetworkError,
)
from quickdefine.models import (
    CoordinatorStats,
    PreloadReport,
    ResolutionResult,
    Source,
    StoreRecord,
    StoreStats,
    normalize_key,
)
from quickdefine.preload import BatchLoader, ProgressCallback, load_dictionary_file
from quickdefine.remote.fetcher import RemoteFetcher

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class ResolutionCoordinator:
    """Resolve words through cache, persistent store and remote API.

    Construct one per process and pass it to whoever needs lookups.
    Components not supplied explicitly are built from *settings*; the
    store and the fetcher are omitted when disabled in configuration.

    Args:
        settings: Immutable configuration (defaults to :func:`get_settings`).
        cache: In-memory cache override.
        store: Persistent store override.
        fetcher: Remote fetcher override.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        cache: Optional[BoundedTTLCache] = None,
        store: Optional[PersistentStore] = None,
        fetcher: Optional[RemoteFetcher] = None,
    ) -> None:
        self._settings = settings or get_settings()
        cfg = self._settings

        if cache is None:
            cache = BoundedTTLCache(
                max_size=cfg.cache.max_size,
                ttl_seconds=cfg.cache.ttl_seconds,
            )
        self._cache = cache

        if store is None and cfg.store.enabled:
            store = PersistentStore(cfg.store.resolved_database_url, echo=cfg.store.echo)
        self._store = store
        self._store_error: Optional[str] = None if store is not None else "disabled"

        if fetcher is None and cfg.remote.enabled:
            fetcher = RemoteFetcher(
                base_url=cfg.remote.base_url,
                timeout_seconds=cfg.remote.timeout_seconds,
                retry_attempts=cfg.remote.retry_attempts,
                retry_delay_seconds=cfg.remote.retry_delay_seconds,
            )
        self._fetcher = fetcher

        self._inflight: Dict[str, "asyncio.Task[ResolutionResult]"] = {}

        logger.info(
            "ResolutionCoordinator initialised",
            extra={
                "cache_max_size": self._cache.max_size,
                "store_enabled": self._store is not None,
                "remote_enabled": self._fetcher is not None,
                "dedupe_inflight": cfg.lookup.dedupe_inflight,
            },
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> BoundedTTLCache:
        return self._cache

    # ------------------------------------------------------------------
    # Store availability
    # ------------------------------------------------------------------

    async def _available_store(self) -> Optional[PersistentStore]:
        """Return the initialised store, or ``None`` if it cannot be used.

        The first failure is remembered: afterwards the coordinator runs
        on cache and remote only, and :meth:`stats` reports the reason.
        """
        if self._store is None or self._store_error is not None:
            return None
        try:
            await self._store.init()
        except StoreUnavailableError as exc:
            if self._store_error is None:
                logger.warning(
                    "Persistent store unavailable, continuing with cache and remote only",
                    extra={"error": str(exc)},
                )
                self._store_error = str(exc)
            return None
        return self._store

    async def _require_store(self) -> PersistentStore:
        store = await self._available_store()
        if store is None:
            raise StoreUnavailableError(
                f"Persistent store not available: {self._store_error}"
            )
        return store

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _normalize(self, key: Any) -> str:
        if not isinstance(key, str):
            raise InputError("Lookup key must be a string")
        word = normalize_key(key)
        if not word:
            raise InputError("Lookup key must not be empty")
        max_words = self._settings.lookup.max_words
        if len(word.split()) > max_words:
            raise InputError(f"Lookup key must not exceed {max_words} words")
        return word

    async def resolve(self, key: str) -> ResolutionResult:
        """Resolve *key* to a dictionary entry.

        Never raises for lookup failures: invalid input and remote
        exhaustion are reported through ``ResolutionResult.error``.

        Args:
            key: Word or phrase as typed or selected by the user.

        Returns:
            ResolutionResult with either a value and its source tier, or
            an error kind.
        """
        start = time.perf_counter()
        try:
            word = self._normalize(key)
        except InputError as exc:
            return self._failure(normalize_key(key) if isinstance(key, str) else "", exc, start)

        if not self._settings.lookup.dedupe_inflight:
            return await self._cascade(word, start)

        task = self._inflight.get(word)
        if task is None:
            task = asyncio.ensure_future(self._cascade(word, start))
            self._inflight[word] = task
            task.add_done_callback(lambda _t, w=word: self._inflight.pop(w, None))
        else:
            logger.debug("Joining in-flight lookup", extra={"word": word})
        result = await asyncio.shield(task)
        return result.model_copy(update={"latency_ms": _elapsed_ms(start)})

    async def _cascade(self, word: str, start: float) -> ResolutionResult:
        # Tier 1: in-memory cache
        cached = self._cache.get(word)
        if cached is not None:
            logger.debug("Found in cache", extra={"word": word})
            return self._success(word, cached, Source.CACHE, start)

        # Tier 2: persistent store
        store = await self._available_store()
        if store is not None:
            record: Optional[StoreRecord] = None
            try:
                record = await store.get(word)
            except StoreError as exc:
                logger.warning(
                    "Store lookup failed, falling back to remote",
                    extra={"word": word, "error": str(exc)},
                )
            if record is not None and record.value is not None:
                self._cache.set(word, record.value)
                return self._success(word, record.value, Source.STORE, start)

        # Tier 3: remote API
        if self._fetcher is None:
            return self._failure(
                word, TransientNetworkError("Remote lookup is disabled"), start
            )
        try:
            value = await self._fetcher.fetch(word)
        except RemoteError as exc:
            return self._failure(word, exc, start)

        # get() reports None as a miss, so None values are never cached
        if value is not None:
            self._cache.set(word, value)
        if store is not None and self._settings.remote.persist_responses:
            try:
                await store.set(StoreRecord(key=word, value=value))
            except StoreError as exc:
                logger.error(
                    "Failed to persist remote result",
                    extra={"word": word, "error": str(exc)},
                )
        return self._success(word, value, Source.REMOTE, start)

    def _success(
        self, word: str, value: Any, source: Source, start: float
    ) -> ResolutionResult:
        latency = _elapsed_ms(start)
        logger.info(
            "Resolved %s from %s (%.2fms)",
            word,
            source.value,
            latency,
            extra={"word": word, "source": source.value, "latency_ms": latency},
        )
        return ResolutionResult(key=word, value=value, source=source, latency_ms=latency)

    def _failure(
        self, word: str, exc: QuickDefineException, start: float
    ) -> ResolutionResult:
        latency = _elapsed_ms(start)
        level = logging.INFO if isinstance(exc, (NotFoundError, InputError)) else logging.WARNING
        logger.log(
            level,
            "All lookup tiers failed (%.2fms)",
            latency,
            extra={"word": word, "error_kind": exc.kind.value, "error": str(exc)},
        )
        return ResolutionResult(
            key=word,
            error=exc.kind,
            message=str(exc),
            latency_ms=latency,
        )

    # ------------------------------------------------------------------
    # Bulk loading
    # ------------------------------------------------------------------

    async def preload(
        self,
        records: Sequence[Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> PreloadReport:
        """Bulk-insert records into the persistent store.

        Args:
            records: Ordered ``{key, value}`` or ``{word, data}`` entries.
            on_progress: Called as ``on_progress(processed, total)`` after
                each batch.
            cancel: Stop before the next batch once set.

        Returns:
            PreloadReport for the run.

        Raises:
            StoreUnavailableError: If the store is disabled or broken.
            StoreWriteError: If a batch transaction fails.
        """
        store = await self._require_store()
        loader = BatchLoader(store, batch_size=self._settings.preload.batch_size)
        return await loader.run(records, on_progress=on_progress, cancel=cancel)

    async def preload_from_file(
        self,
        path: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        force: bool = False,
    ) -> PreloadReport:
        """Preload the bundled dictionary file.

        Skipped when ``preload.enabled`` is off or the store already
        holds ``preload.target_count`` entries, unless *force* is set.
        At most ``target_count`` entries are read from the file.

        Raises:
            StoreUnavailableError: If the store is disabled or broken.
            PreloadError: If the file cannot be read.
        """
        cfg = self._settings.preload
        store = await self._require_store()

        if not force:
            if not cfg.enabled:
                logger.info("Dictionary preload disabled in configuration")
                return PreloadReport(skipped=True)
            current = await store.count()
            if current >= cfg.target_count:
                logger.info(
                    "Dictionary already preloaded",
                    extra={"count": current, "target": cfg.target_count},
                )
                return PreloadReport(skipped=True)

        data_path = Path(path) if path else cfg.resolved_data_path
        entries = await asyncio.to_thread(
            load_dictionary_file, data_path, cfg.target_count
        )
        return await self.preload(entries, on_progress=on_progress, cancel=cancel)

    async def is_preloaded(self) -> bool:
        """``True`` when the store holds at least ``preload.target_count`` entries."""
        store = await self._available_store()
        if store is None:
            return False
        try:
            return await store.count() >= self._settings.preload.target_count
        except StoreError:
            return False

    # ------------------------------------------------------------------
    # Stats / maintenance
    # ------------------------------------------------------------------

    async def stats(self) -> CoordinatorStats:
        """Report cache occupancy and store size.

        The store section is best-effort: ``available`` is ``False`` and
        ``count`` is ``None`` when the store is disabled, failed to
        initialise, or the count query fails.
        """
        store = await self._available_store()
        if store is not None:
            try:
                store_stats = StoreStats(available=True, count=await store.count())
            except StoreError as exc:
                logger.error("Failed to get store stats", extra={"error": str(exc)})
                store_stats = StoreStats(available=False, error=str(exc))
        else:
            store_stats = StoreStats(available=False, error=self._store_error)

        return CoordinatorStats(cache=self._cache.stats(), store=store_stats)

    async def clear_all(self) -> None:
        """Empty the cache and, when available, the persistent store.

        Raises:
            StoreWriteError: If clearing the store fails (the cache is
                already empty by then).
        """
        self._cache.clear()
        store = await self._available_store()
        if store is not None:
            await store.clear()

    async def close(self) -> None:
        """Release the HTTP client and database engine."""
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._fetcher is not None:
            await self._fetcher.aclose()
        if self._store is not None:
            await self._store.close()

    async def __aenter__(self) -> "ResolutionCoordinator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create_coordinator(settings: Optional[Settings] = None) -> ResolutionCoordinator:
    """Build a coordinator from *settings* (or the loaded configuration)."""
    return ResolutionCoordinator(settings or get_settings())
