"""User provisioning, quota administration and account removal."""
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_api.config import GIB, MAX_QUOTA_GB
from storage_api.models.base import utc_now
from storage_api.models.file_record import FileRecord
from storage_api.models.user_account import UserAccount
from storage_api.services.blob_store import BlobStore
from storage_api.services.identity import KeycloakDirectory
from storage_api.services.quota import QuotaService

logger = logging.getLogger(__name__)


@dataclass
class UserView:
    user_id: str
    quota_bytes: int
    used_bytes: int
    available_bytes: int


@dataclass
class AdminUserView:
    id: str
    username: str
    email: str
    roles: list[str]
    storage_quota_bytes: int
    used_bytes: int


@dataclass
class DeletionReport:
    """What each system of record actually removed.

    ``metadata_deleted`` covers both the file records and the account row.
    """
    user_id: str
    blobs_deleted: bool = False
    files_deleted: int = 0
    account_deleted: bool = False
    metadata_deleted: bool = False
    identity_deleted: bool = False
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.metadata_deleted or self.identity_deleted


class UserLifecycleService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        quota: QuotaService,
        identity: KeycloakDirectory,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.quota = quota
        self.identity = identity

    async def ensure_user(self, user_id: str, desired_quota: Optional[int] = None) -> UserAccount:
        """Create the account if missing; apply ``desired_quota`` if given.

        Safe under concurrent first logins: a lost insert race is retried
        against the row the winner created.
        """
        if not user_id:
            raise ValueError("User ID is required")
        if desired_quota is not None and desired_quota <= 0:
            raise ValueError("Quota must be positive")
        try:
            return await self._upsert_account(user_id, desired_quota)
        except IntegrityError:
            logger.info(f"Concurrent provisioning of user {user_id}, re-reading")
            return await self._upsert_account(user_id, desired_quota)

    async def get_user_view(self, user_id: str) -> UserView:
        account = await self.ensure_user(user_id)
        used = await self.quota.used_storage(user_id)
        return UserView(
            user_id=user_id,
            quota_bytes=account.storage_quota_bytes,
            used_bytes=used,
            available_bytes=account.storage_quota_bytes - used,
        )

    async def set_quota_gb(self, user_id: str, quota_gb: float) -> int:
        """Set the quota from a GB figure. Returns the stored byte value."""
        if not math.isfinite(quota_gb) or not 0 < quota_gb <= MAX_QUOTA_GB:
            raise ValueError(f"Quota must be between 0 and {MAX_QUOTA_GB} GB")
        quota_bytes = max(1, round(quota_gb * GIB))
        account = await self.ensure_user(user_id, quota_bytes)
        logger.info(f"Quota for user {user_id} set to {account.storage_quota_bytes} bytes")
        return account.storage_quota_bytes

    async def list_users(self) -> list[AdminUserView]:
        """Identity directory users merged with local quota and disk usage."""
        views = []
        for user in await self.identity.list_users():
            views.append(AdminUserView(
                id=user.id,
                username=user.username,
                email=user.email,
                roles=sorted(user.roles),
                storage_quota_bytes=await self.quota.get_quota(user.id),
                used_bytes=await self.quota.used_storage(user.id),
            ))
        return views

    async def delete_user(self, user_id: str) -> DeletionReport:
        """Remove the user from disk, metadata store and identity directory.

        Each step runs regardless of earlier failures; failures are recorded
        in the report instead of raised.
        """
        report = DeletionReport(user_id=user_id)

        try:
            await self.blob_store.remove_user_dir(user_id)
            report.blobs_deleted = True
        except Exception as e:
            logger.error(f"Error removing user directory for {user_id}: {e}")
            report.errors["blobs"] = str(e)

        files_ok = False
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(FileRecord).where(FileRecord.owner_id == user_id))
                await db.commit()
            report.files_deleted = result.rowcount or 0
            files_ok = True
        except Exception as e:
            logger.error(f"Error deleting file records for {user_id}: {e}")
            report.errors["files"] = str(e)

        account_ok = False
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(UserAccount).where(UserAccount.id == user_id))
                await db.commit()
            report.account_deleted = bool(result.rowcount)
            account_ok = True
        except Exception as e:
            logger.error(f"Error deleting account row for {user_id}: {e}")
            report.errors["account"] = str(e)

        report.metadata_deleted = files_ok and account_ok

        try:
            report.identity_deleted = await self.identity.delete_user(user_id)
        except Exception as e:
            logger.error(f"Error deleting identity for {user_id}: {e}")
            report.errors["identity"] = str(e)

        if report.errors:
            logger.warning(f"Partial deletion of user {user_id}: {report.errors}")
        else:
            logger.info(f"Deleted user {user_id} ({report.files_deleted} file record(s))")
        return report

    async def _upsert_account(self, user_id: str, desired_quota: Optional[int]) -> UserAccount:
        async with self.session_factory() as db:
            account = await db.get(UserAccount, user_id)
            if account is None:
                now = utc_now()
                account = UserAccount(
                    id=user_id,
                    storage_quota_bytes=desired_quota or self.quota.default_quota_bytes,
                    created_at=now,
                    updated_at=now,
                )
                db.add(account)
                logger.info(f"Provisioned user {user_id}")
            elif desired_quota is not None and desired_quota != account.storage_quota_bytes:
                account.storage_quota_bytes = desired_quota
            else:
                return account
            await db.commit()
            await db.refresh(account)
            return account
