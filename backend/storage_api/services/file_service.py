"""File operations over the blob store and the files table.

Every upload and delete is a two-step write without a shared transaction:

- upload: blob rename, then metadata upsert. A crash in between leaves an
  orphaned blob (reconciliation pass 2).
- delete: blob removal, then metadata delete. A crash in between leaves an
  orphaned record (reconciliation pass 1).

Both steps for one (owner, name) pair run under an in-process lock so the
record always describes the blob that won.
"""
import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_api.errors import BlobMissing, InvalidFileName, NotFound, QuotaExceeded
from storage_api.models.base import utc_now
from storage_api.models.file_record import FileRecord
from storage_api.services.blob_store import BlobStore, StagedBlob, check_logical_name
from storage_api.services.quota import QuotaService

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    record: FileRecord
    created: bool


@dataclass
class BlobHandle:
    record: FileRecord
    path: Path


def _parse_file_id(file_id) -> uuid.UUID:
    if isinstance(file_id, uuid.UUID):
        return file_id
    try:
        return uuid.UUID(str(file_id))
    except ValueError:
        raise NotFound()


class FileService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        quota: QuotaService,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.quota = quota
        self._locks: "weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _name_lock(self, owner_id: str, logical_name: str) -> asyncio.Lock:
        key = (owner_id, logical_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def upload(
        self,
        owner_id: str,
        logical_name: str,
        staged: StagedBlob,
    ) -> UploadResult:
        """Store a staged blob under ``logical_name``, overwriting any previous one.

        Rejected uploads leave no trace: the staged bytes are discarded and
        no record is created or changed.
        """
        try:
            check_logical_name(logical_name)
        except InvalidFileName:
            await self.blob_store.discard(staged)
            raise

        async with self._name_lock(owner_id, logical_name):
            replacing = await self._existing_blob_size(owner_id, logical_name)
            check = await self.quota.check_quota(
                owner_id, staged.size_bytes, replacing_bytes=replacing
            )
            if not check.admitted:
                await self.blob_store.discard(staged)
                logger.info(
                    f"Rejected upload of {logical_name} ({staged.size_bytes} bytes) "
                    f"for {owner_id}: {check.used_bytes}/{check.quota_bytes} used"
                )
                raise QuotaExceeded()

            try:
                await self.blob_store.commit(staged, owner_id, logical_name)
            except Exception:
                await self.blob_store.discard(staged)
                raise

            try:
                return await self._write_record(owner_id, logical_name, staged.size_bytes)
            except IntegrityError:
                # Another process inserted the same name first; ours becomes an update.
                logger.info(f"Concurrent insert of {owner_id}/{logical_name}, retrying as update")
                return await self._write_record(owner_id, logical_name, staged.size_bytes)

    async def list_files(self, owner_id: str) -> list[FileRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord)
                .where(FileRecord.owner_id == owner_id)
                .order_by(FileRecord.logical_name)
            )
            return list(result.scalars().all())

    async def get(self, owner_id: str, file_id) -> FileRecord:
        """Owner-scoped lookup. Another owner's file is reported as missing."""
        record_id = _parse_file_id(file_id)
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(
                    FileRecord.id == record_id,
                    FileRecord.owner_id == owner_id,
                )
            )
            record = result.scalar_one_or_none()
        if not record:
            raise NotFound("File not found in database")
        return record

    async def download(self, owner_id: str, file_id) -> BlobHandle:
        record = await self.get(owner_id, file_id)
        if not await self.blob_store.exists(owner_id, record.logical_name):
            logger.warning(f"Record {record.id} has no blob on disk ({owner_id}/{record.logical_name})")
            raise BlobMissing()
        return BlobHandle(record=record, path=self.blob_store.blob_path(owner_id, record.logical_name))

    async def delete(self, owner_id: str, file_id) -> None:
        """Remove blob then record. A missing blob is logged, not an error."""
        record = await self.get(owner_id, file_id)
        async with self._name_lock(owner_id, record.logical_name):
            if not await self.blob_store.remove(owner_id, record.logical_name):
                logger.warning(
                    f"File not found at {self.blob_store.blob_path(owner_id, record.logical_name)}"
                )
            async with self.session_factory() as db:
                await db.execute(
                    delete(FileRecord).where(
                        FileRecord.id == record.id,
                        FileRecord.owner_id == owner_id,
                    )
                )
                await db.commit()

    async def _existing_blob_size(self, owner_id: str, logical_name: str) -> int:
        try:
            return await self.blob_store.blob_size(owner_id, logical_name) or 0
        except OSError as e:
            logger.error(f"Could not stat existing blob {owner_id}/{logical_name}: {e}")
            return 0

    async def _write_record(self, owner_id: str, logical_name: str, size_bytes: int) -> UploadResult:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(
                    FileRecord.owner_id == owner_id,
                    FileRecord.logical_name == logical_name,
                )
            )
            record = result.scalar_one_or_none()
            now = utc_now()
            if record:
                record.size_bytes = size_bytes
                record.updated_at = now
                created = False
            else:
                record = FileRecord(
                    owner_id=owner_id,
                    logical_name=logical_name,
                    size_bytes=size_bytes,
                    created_at=now,
                    updated_at=now,
                )
                db.add(record)
                created = True
            await db.commit()
            await db.refresh(record)
            return UploadResult(record=record, created=created)
