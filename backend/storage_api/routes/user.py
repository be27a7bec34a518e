"""Current-user API routes."""
from fastapi import APIRouter, Depends

from storage_api.auth import Principal, get_current_user
from storage_api.context import StorageContext, get_storage
from storage_api.schemas.user import CurrentUserResponse, DeletionResponse

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """Identity fields plus quota and usage."""
    view = await storage.users.get_user_view(user.id)
    return CurrentUserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        roles=sorted(user.roles),
        quota_bytes=view.quota_bytes,
        used_bytes=view.used_bytes,
        available_bytes=view.available_bytes,
    )


@router.delete("/me", response_model=DeletionResponse)
async def delete_me(
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
):
    """Delete the caller's account everywhere. Always 200; the body says what was removed."""
    report = await storage.users.delete_user(user.id)
    return DeletionResponse.model_validate(report)
