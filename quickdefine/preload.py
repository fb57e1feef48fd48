"""
Bulk preloading of dictionary entries into the persistent store.

Records are written in fixed-size batches, one transaction per batch.
Control returns to the event loop between batches so interactive
lookups are never starved by a long preload, and a cancel signal is
honoured at every batch boundary.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence

from quickdefine.db.store import PersistentStore
from quickdefine.exceptions import ConfigurationError, PreloadError
from quickdefine.models import PreloadReport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def iter_batches(records: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most *size* records."""
    for start in range(0, len(records), size):
        yield records[start:start + size]


def load_dictionary_file(path: Path, limit: Optional[int] = None) -> List[Any]:
    """Read a bundled dictionary file.

    The file must contain a JSON array of ``{word, data}`` or
    ``{key, value}`` objects.

    Args:
        path: Location of the JSON file.
        limit: Keep only the first *limit* entries.

    Returns:
        The (possibly truncated) list of raw entries.

    Raises:
        PreloadError: If the file is missing, unreadable or not a JSON array.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            entries = json.load(fh)
    except json.JSONDecodeError as exc:
        raise PreloadError(f"Invalid JSON in dictionary file {path}: {exc}") from exc
    except OSError as exc:
        raise PreloadError(f"Cannot read dictionary file {path}: {exc}") from exc

    if not isinstance(entries, list):
        raise PreloadError(f"Dictionary file {path} must contain a JSON array")

    if limit is not None:
        entries = entries[:limit]
    logger.info(
        "Dictionary file loaded",
        extra={"path": str(path), "entries": len(entries)},
    )
    return entries


class BatchLoader:
    """Chunked writer that feeds records into a :class:`PersistentStore`.

    Args:
        store: Destination store.
        batch_size: Records per transaction.
    """

    def __init__(self, store: PersistentStore, batch_size: int = 100) -> None:
        if batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        self._store = store
        self._batch_size = batch_size

    async def run(
        self,
        records: Sequence[Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> PreloadReport:
        """Write *records* batch by batch.

        ``on_progress(processed, total)`` is called after every committed
        batch.  Malformed records count as processed even though the
        store skips them.

        Args:
            records: Ordered ``{key, value}`` / ``{word, data}`` entries.
            on_progress: Optional progress callback.
            cancel: When set, the run stops before the next batch.

        Returns:
            PreloadReport describing what was written.

        Raises:
            StoreWriteError: If a batch transaction fails; earlier
                batches stay committed.
        """
        records = list(records)
        total = len(records)
        processed = 0
        batches = 0

        for batch in iter_batches(records, self._batch_size):
            if cancel is not None and cancel.is_set():
                logger.info(
                    "Preload cancelled",
                    extra={"processed": processed, "total": total},
                )
                return PreloadReport(
                    processed=processed,
                    total=total,
                    batches=batches,
                    cancelled=True,
                )

            await self._store.set_batch(batch)
            processed += len(batch)
            batches += 1
            logger.debug("Preloaded %d/%d entries", processed, total)

            if on_progress is not None:
                on_progress(processed, total)

            # Yield so concurrent lookups can run between batches
            await asyncio.sleep(0)

        logger.info(
            "Preload complete",
            extra={"processed": processed, "batches": batches},
        )
        return PreloadReport(processed=processed, total=total, batches=batches)
