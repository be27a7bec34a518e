"""Process-wide state, built once at startup and injected everywhere else."""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from storage_api.config import Settings
from storage_api.database import Database, init_database
from storage_api.services.blob_store import BlobStore
from storage_api.services.file_service import FileService
from storage_api.services.identity import KeycloakDirectory
from storage_api.services.quota import QuotaService
from storage_api.services.reconciliation import ReconciliationService
from storage_api.services.user_service import UserLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class StorageContext:
    settings: Settings
    database: Database
    blob_store: BlobStore
    identity: KeycloakDirectory
    quota: QuotaService
    files: FileService
    users: UserLifecycleService
    reconciler: ReconciliationService


def init_storage(settings: Settings, identity: Optional[KeycloakDirectory] = None) -> StorageContext:
    """Create the blob root, database handle, identity client and services.

    ``identity`` replaces the Keycloak client (tests pass a fake).
    """
    blob_store = BlobStore(settings.STORAGE_ROOT)
    blob_store.ensure_root()

    database = init_database(settings.DATABASE_URL)
    session_factory = database.session_factory
    identity = identity or KeycloakDirectory(settings)

    quota = QuotaService(
        session_factory,
        blob_store,
        default_quota_bytes=settings.DEFAULT_QUOTA_BYTES,
        fail_open=settings.QUOTA_FAIL_OPEN,
    )
    context = StorageContext(
        settings=settings,
        database=database,
        blob_store=blob_store,
        identity=identity,
        quota=quota,
        files=FileService(session_factory, blob_store, quota),
        users=UserLifecycleService(session_factory, blob_store, quota, identity),
        reconciler=ReconciliationService(
            session_factory,
            blob_store,
            min_blob_age_seconds=settings.RECONCILE_MIN_BLOB_AGE_SECONDS,
            staging_max_age_seconds=settings.RECONCILE_STAGING_MAX_AGE_SECONDS,
        ),
    )
    logger.info(f"Storage initialized at {blob_store.root}")
    return context


def get_storage(request: Request) -> StorageContext:
    """FastAPI dependency returning the context created in the lifespan."""
    return request.app.state.storage
