"""
Background cleanup of expired artifacts.

Runs once at startup and then every CLEANUP_INTERVAL_SECONDS. For each
expired record the object is deleted first and the cache row only after
that succeeds: a leftover blob with no row is preferable to a row that
points at a deleted object. Per-record failures are logged and skipped.

Shutdown is checked between ticks; a sweep that has started always finishes.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.errors import StorageError
from app.services.cache_store import CacheStore
from app.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600


@dataclass
class CleanupReport:
    """Outcome of one cleanup tick."""
    expired: int = 0
    deleted: int = 0
    failed: int = 0


class CleanupWorker:
    """Periodically removes expired media from the object store and the cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        object_store: ObjectStore,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.session_factory = session_factory
        self.object_store = object_store
        self.interval = interval
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> CleanupReport:
        """Sweep every expired record once."""
        report = CleanupReport()

        async with self.session_factory() as session:
            store = CacheStore(session)
            try:
                expired = await store.find_expired()
            except StorageError as e:
                logger.error(f"Failed to query expired media: {e}")
                return report

            if not expired:
                logger.debug("No expired media to clean up")
                return report

            report.expired = len(expired)
            logger.info(f"Cleaning up {len(expired)} expired media records")

            # Plain values: a failed delete rolls back and expires loaded rows
            targets = [(record.id, record.s3_key) for record in expired]
            for record_id, s3_key in targets:
                try:
                    await self.object_store.delete(s3_key)
                except StorageError as e:
                    logger.error(f"Failed to delete object {s3_key}: {e}")
                    report.failed += 1
                    continue

                try:
                    await store.delete_by_id(record_id)
                except StorageError as e:
                    logger.error(f"Failed to delete media record {record_id}: {e}")
                    report.failed += 1
                    continue

                report.deleted += 1
                logger.info(f"Cleaned up expired media: {s3_key} ({record_id})")

        return report

    async def run(self) -> None:
        """Tick until shutdown is requested."""
        logger.info(f"Cleanup worker started (runs every {self.interval:g}s)")
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Cleanup tick failed")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Cleanup worker shutting down")

    def start(self) -> asyncio.Task:
        """Launch the worker as a background task."""
        if self._task is None or self._task.done():
            self._shutdown.clear()
            self._task = asyncio.create_task(self.run(), name="media-cleanup")
        return self._task

    async def stop(self) -> None:
        """Signal shutdown and wait for the current tick to finish."""
        self._shutdown.set()
        if self._task is not None:
            await self._task
            self._task = None
