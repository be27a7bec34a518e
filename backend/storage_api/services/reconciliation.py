"""Metadata/blob reconciliation.

Repairs divergence left behind by partial failures elsewhere:

1. Orphaned records: a files row whose blob is not on disk is deleted.
2. Orphaned blobs: a regular file in a user directory with no matching
   files row is deleted.
3. Abandoned uploads: staging files older than the staging age limit
   (the request died between staging and commit) are deleted.

Passes run in that order. Each pass is a best-effort sweep: an entry that
fails is logged and skipped, and only the totals are reported. Re-running
with no activity in between removes nothing.

Runs on demand (admin cleanup route) and, when configured, from a
background loop started in the app lifespan.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_api.errors import ReconciliationInProgress
from storage_api.models.file_record import FileRecord
from storage_api.services.blob_store import STAGING_DIR_NAME, BlobEntry, BlobStore, sanitize_user_id

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    removed_records: int = 0
    removed_blobs: int = 0
    removed_staged: int = 0


class ReconciliationService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        min_blob_age_seconds: float = 0,
        staging_max_age_seconds: float = 3600,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.min_blob_age_seconds = min_blob_age_seconds
        self.staging_max_age_seconds = staging_max_age_seconds
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> ReconciliationReport:
        """Run all passes. Refuses to start while another run is active."""
        if self._lock.locked():
            raise ReconciliationInProgress()
        async with self._lock:
            report = ReconciliationReport()
            report.removed_records = await self.remove_orphaned_records()
            report.removed_blobs = await self.remove_orphaned_blobs()
            report.removed_staged = await self.remove_stale_staged()
        logger.info(
            f"Cleanup finished: {report.removed_records} orphaned record(s), "
            f"{report.removed_blobs} orphaned blob(s), "
            f"{report.removed_staged} abandoned upload(s) removed"
        )
        return report

    # ── Pass 1 ───────────────────────────────────────────────────

    async def remove_orphaned_records(self) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord.id, FileRecord.owner_id, FileRecord.logical_name)
            )
            rows = result.all()

        removed = 0
        for record_id, owner_id, logical_name in rows:
            try:
                if await self.blob_store.exists(owner_id, logical_name):
                    continue
                async with self.session_factory() as db:
                    await db.execute(delete(FileRecord).where(FileRecord.id == record_id))
                    await db.commit()
                removed += 1
                logger.warning(f"Removed orphaned DB entry: {record_id} ({owner_id}/{logical_name})")
            except Exception as e:
                logger.error(f"Skipping record {record_id} during cleanup: {e}")
        return removed

    # ── Pass 2 ───────────────────────────────────────────────────

    async def remove_orphaned_blobs(self) -> int:
        owners_by_dir = await self._owner_ids_by_dir()
        removed = 0
        for dir_name in await asyncio.to_thread(self.blob_store.user_dirs):
            try:
                entries = await asyncio.to_thread(self.blob_store.blob_entries, dir_name)
            except OSError as e:
                logger.error(f"Skipping directory {dir_name} during cleanup: {e}")
                continue
            candidates = owners_by_dir.get(dir_name, set()) | {dir_name}
            for entry in entries:
                try:
                    if await self._remove_if_orphaned(dir_name, candidates, entry):
                        removed += 1
                except Exception as e:
                    logger.error(f"Skipping blob {dir_name}/{entry.name} during cleanup: {e}")
        return removed

    async def _remove_if_orphaned(self, dir_name: str, owner_ids: set[str], entry: BlobEntry) -> bool:
        if self.min_blob_age_seconds and self.blob_store.age_seconds(entry) < self.min_blob_age_seconds:
            return False
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord.id).where(
                    FileRecord.owner_id.in_(owner_ids),
                    FileRecord.logical_name == entry.name,
                ).limit(1)
            )
            if result.scalar_one_or_none() is not None:
                return False
        if not await self.blob_store.remove_entry(dir_name, entry.name):
            return False
        logger.warning(f"Removed orphaned file: {dir_name}/{entry.name}")
        return True

    # ── Pass 3 ───────────────────────────────────────────────────

    async def remove_stale_staged(self) -> int:
        """Delete staging files older than ``staging_max_age_seconds``."""
        entries = await asyncio.to_thread(self.blob_store.blob_entries, STAGING_DIR_NAME)
        removed = 0
        for entry in entries:
            if self.blob_store.age_seconds(entry) < self.staging_max_age_seconds:
                continue
            try:
                if await self.blob_store.remove_entry(STAGING_DIR_NAME, entry.name):
                    removed += 1
                    logger.warning(f"Removed abandoned upload: {entry.name} ({entry.size_bytes} bytes)")
            except OSError as e:
                logger.error(f"Skipping staged file {entry.name} during cleanup: {e}")
        return removed

    async def _owner_ids_by_dir(self) -> dict[str, set[str]]:
        """Directory name -> owner ids that sanitize to it."""
        async with self.session_factory() as db:
            result = await db.execute(select(FileRecord.owner_id).distinct())
            owner_ids = result.scalars().all()
        by_dir: dict[str, set[str]] = defaultdict(set)
        for owner_id in owner_ids:
            by_dir[sanitize_user_id(owner_id)].add(owner_id)
        return by_dir


async def reconcile_loop(service: ReconciliationService, interval_seconds: float):
    """Run cleanup every ``interval_seconds`` until cancelled."""
    logger.info(f"Cleanup loop started (every {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await service.run()
        except ReconciliationInProgress:
            logger.info("Skipping scheduled cleanup: a run is already in progress")
        except Exception as e:
            logger.error(f"Scheduled cleanup failed: {e}")
