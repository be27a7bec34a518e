"""Async SQLAlchemy engine and session factory.

The handle is created once by ``init_database`` and injected into the
services; nothing here connects at import time.

Usage in routes:
    from storage_api.database import get_db

    @router.get("/items")
    async def list_items(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Item))
        return result.scalars().all()
"""
from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storage_api.models import Base


class Database:
    """Owns the engine and the session factory for one metadata store."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def init_database(url: str) -> Database:
    """Build the engine for ``url``. SQLite gets no pool sizing."""
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False)
    else:
        engine = create_async_engine(
            url,
            echo=False,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
        )
    return Database(engine)


async def get_db(request: Request):
    """FastAPI dependency that yields an async DB session."""
    async with request.app.state.storage.database.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
