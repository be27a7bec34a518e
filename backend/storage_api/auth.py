"""Bearer-token authentication and role checks as FastAPI dependencies."""
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Header

from storage_api.context import StorageContext, get_storage
from storage_api.errors import Forbidden, Unauthorized


@dataclass
class Principal:
    """The authenticated caller."""
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    roles: set[str] = field(default_factory=set)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    storage: StorageContext = Depends(get_storage),
) -> Principal:
    """Verify the bearer token and provision the local account on first use."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("No token provided")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized("No token provided")

    claims = await storage.identity.verify_token(token)
    await storage.users.ensure_user(claims.subject_id)
    return Principal(
        id=claims.subject_id,
        username=claims.username,
        email=claims.email,
        roles=set(claims.roles),
    )


def require_roles(*required: str):
    """Dependency factory: the caller must hold at least one of ``required``."""
    async def dependency(user: Principal = Depends(get_current_user)) -> Principal:
        if not user.roles:
            raise Forbidden("Forbidden: User role information missing")
        if not any(role in user.roles for role in required):
            raise Forbidden()
        return user
    return dependency


async def require_admin(
    user: Principal = Depends(get_current_user),
    storage: StorageContext = Depends(get_storage),
) -> Principal:
    return await require_roles(storage.settings.ADMIN_ROLE)(user)
