"""Shared fixtures: temporary blob root, file-backed SQLite, fake identity directory."""
import pytest
from fastapi.testclient import TestClient

from storage_api.config import Settings
from storage_api.context import init_storage
from storage_api.errors import Unauthorized, UpstreamIdentityError
from storage_api.main import create_app
from storage_api.services.identity import IdentityClaims, IdentityRecord


class FakeIdentityDirectory:
    """In-memory stand-in for the Keycloak directory."""

    def __init__(self):
        self.tokens: dict[str, IdentityClaims] = {}
        self.users: dict[str, IdentityRecord] = {}
        self.deleted: list[str] = []
        self.fail_delete = False

    def add_user(self, user_id, token=None, roles=(), username=None, email=""):
        username = username or f"user-{user_id}"
        self.users[user_id] = IdentityRecord(
            id=user_id, username=username, email=email, roles=set(roles)
        )
        if token:
            self.tokens[token] = IdentityClaims(
                subject_id=user_id, username=username, email=email, roles=set(roles)
            )

    async def verify_token(self, token):
        claims = self.tokens.get(token)
        if claims is None:
            raise Unauthorized("Token verification failed: invalid token")
        return claims

    async def list_users(self):
        return list(self.users.values())

    async def get_roles(self, user_id):
        user = self.users.get(user_id)
        return set(user.roles) if user else set()

    async def delete_user(self, user_id):
        if self.fail_delete:
            raise UpstreamIdentityError("Failed to delete user: connection refused")
        self.deleted.append(user_id)
        return self.users.pop(user_id, None) is not None


async def chunks(*parts: bytes):
    for part in parts:
        yield part


async def stage_bytes(blob_store, data: bytes):
    return await blob_store.stage(chunks(data))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'metadata.db'}",
        STORAGE_ROOT=str(tmp_path / "users"),
        KEYCLOAK_URL="http://keycloak.invalid",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def identity():
    return FakeIdentityDirectory()


@pytest.fixture
async def storage(settings, identity):
    context = init_storage(settings, identity=identity)
    await context.database.create_all()
    yield context
    await context.database.dispose()


@pytest.fixture
def client(settings, identity):
    app = create_app(settings, identity=identity)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def alice(identity):
    identity.add_user("alice-id", token="alice-token", roles=["user"], username="alice")
    return {"Authorization": "Bearer alice-token"}


@pytest.fixture
def admin(identity):
    identity.add_user("admin-id", token="admin-token", roles=["admin", "user"], username="root")
    return {"Authorization": "Bearer admin-token"}
