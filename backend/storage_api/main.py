"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from storage_api.config import Settings, settings as default_settings
from storage_api.context import init_storage
from storage_api.database import get_db
from storage_api.errors import register_exception_handlers
from storage_api.services.identity import KeycloakDirectory
from storage_api.services.reconciliation import reconcile_loop

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[KeycloakDirectory] = None,
) -> FastAPI:
    """Build the app. Nothing touches disk, database or Keycloak until startup."""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Init storage, create tables, start the cleanup loop if configured."""
        storage = init_storage(settings, identity=identity)
        await storage.database.create_all()
        app.state.storage = storage

        cleanup_task = None
        if settings.RECONCILE_INTERVAL_SECONDS > 0:
            cleanup_task = asyncio.create_task(
                reconcile_loop(storage.reconciler, settings.RECONCILE_INTERVAL_SECONDS)
            )
        logger.info("Storage API ready")

        yield

        if cleanup_task:
            cleanup_task.cancel()
        await storage.database.dispose()

    app = FastAPI(
        title="Personal Cloud Storage API",
        version="1.0.0",
        description="Per-user file storage with quotas and storage reconciliation.",
        lifespan=lifespan,
    )

    # CORS
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    register_exception_handlers(app)

    @app.get("/api/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        """Verify API and database connectivity."""
        try:
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            return {"status": "error", "database": str(e)}

    # Register routers
    from storage_api.routes.files import router as files_router
    from storage_api.routes.user import router as user_router
    from storage_api.routes.admin import router as admin_router
    app.include_router(files_router)
    app.include_router(user_router)
    app.include_router(admin_router)

    return app


app = create_app()
