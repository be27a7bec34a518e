"""Admin API - user quotas, user removal and storage cleanup."""
from fastapi import APIRouter, Depends

from storage_api.auth import require_admin
from storage_api.context import StorageContext, get_storage
from storage_api.schemas.user import (
    AdminUserResponse,
    CleanupResponse,
    DeletionResponse,
    QuotaResponse,
    QuotaUpdate,
    QuotaUpdateResponse,
)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/users", response_model=list[AdminUserResponse])
async def list_users(storage: StorageContext = Depends(get_storage)):
    """All identity-directory users with quota and usage."""
    return await storage.users.list_users()


@router.get("/users/{user_id}/quota", response_model=QuotaResponse)
async def get_user_quota(user_id: str, storage: StorageContext = Depends(get_storage)):
    """Quota and usage for one user. Provisions the account if unseen."""
    return await storage.users.get_user_view(user_id)


@router.post("/users/{user_id}/quota", response_model=QuotaUpdateResponse)
async def update_user_quota(
    user_id: str,
    body: QuotaUpdate,
    storage: StorageContext = Depends(get_storage),
):
    """Set a user's quota in GB."""
    quota_bytes = await storage.users.set_quota_gb(user_id, body.quota)
    return QuotaUpdateResponse(user_id=user_id, quota_bytes=quota_bytes)


@router.delete("/users/{user_id}", response_model=DeletionResponse)
async def remove_user(user_id: str, storage: StorageContext = Depends(get_storage)):
    """Remove a user everywhere. Always 200 with a per-system breakdown."""
    report = await storage.users.delete_user(user_id)
    return DeletionResponse.model_validate(report)


@router.post("/system/cleanup", response_model=CleanupResponse)
async def cleanup_system(storage: StorageContext = Depends(get_storage)):
    """Remove orphaned file records and orphaned blobs."""
    return await storage.reconciler.run()
