"""User, quota and admin schemas."""
from typing import Optional
from pydantic import Field
from storage_api.config import MAX_QUOTA_GB
from storage_api.schemas.base import CamelModel, CamelORMModel


class CurrentUserResponse(CamelModel):
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    roles: list[str] = []
    quota_bytes: int
    used_bytes: int
    available_bytes: int


class QuotaResponse(CamelORMModel):
    user_id: str
    quota_bytes: int
    used_bytes: int
    available_bytes: int


class QuotaUpdate(CamelModel):
    quota: float = Field(
        ..., gt=0, le=MAX_QUOTA_GB, allow_inf_nan=False,
        description="New quota in GB (2^30 bytes)",
    )


class QuotaUpdateResponse(CamelModel):
    user_id: str
    quota_bytes: int


class AdminUserResponse(CamelORMModel):
    id: str
    username: str
    email: str = ""
    roles: list[str] = []
    storage_quota_bytes: int
    used_bytes: int


class DeletionResponse(CamelORMModel):
    user_id: str
    blobs_deleted: bool
    files_deleted: int
    account_deleted: bool
    metadata_deleted: bool
    identity_deleted: bool
    success: bool
    errors: dict[str, str] = {}


class CleanupResponse(CamelORMModel):
    removed_records: int
    removed_blobs: int
    removed_staged: int
