"""Quota accounting.

Usage is measured on disk, not read from a counter in the database, so it
cannot drift from the bytes actually stored. Accounting faults are never
raised to callers: usage falls back to 0, and admission falls back to the
configured fail-open/fail-closed policy.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_api.models.user_account import UserAccount
from storage_api.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class QuotaCheck:
    quota_bytes: int
    used_bytes: int
    available_bytes: int
    admitted: bool


class QuotaService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        default_quota_bytes: int,
        fail_open: bool = True,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.default_quota_bytes = default_quota_bytes
        self.fail_open = fail_open

    async def used_storage(self, user_id: str) -> int:
        """Bytes currently stored for the user. Never raises."""
        try:
            return await self.blob_store.used_bytes(user_id)
        except Exception as e:
            logger.error(f"Error calculating storage for user {user_id}: {e}")
            return 0

    async def get_quota(self, user_id: str) -> int:
        """Stored quota, or the default when no account exists yet."""
        async with self.session_factory() as db:
            account = await db.get(UserAccount, user_id)
        return account.storage_quota_bytes if account else self.default_quota_bytes

    async def check_quota(
        self,
        user_id: str,
        candidate_bytes: int,
        replacing_bytes: int = 0,
    ) -> QuotaCheck:
        """Decide whether ``candidate_bytes`` more may be stored.

        ``replacing_bytes`` is the size of a blob the upload will overwrite;
        it is released before the candidate is charged. Database and
        filesystem faults both fall under the fail-open/fail-closed policy.
        """
        try:
            quota = await self.get_quota(user_id)
            used = await self.blob_store.used_bytes(user_id)
            return QuotaCheck(
                quota_bytes=quota,
                used_bytes=used,
                available_bytes=quota - used,
                admitted=(used - replacing_bytes + candidate_bytes) <= quota,
            )
        except Exception as e:
            logger.error(f"Error checking quota for user {user_id}: {e}")
            return QuotaCheck(
                quota_bytes=self.default_quota_bytes,
                used_bytes=0,
                available_bytes=self.default_quota_bytes,
                admitted=self.fail_open,
            )
