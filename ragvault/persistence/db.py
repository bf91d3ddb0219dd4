from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ragvault.core.config import get_settings
from ragvault.domain.models import Base


def create_engine(database_url: str | None = None) -> AsyncEngine:
    url = database_url or get_settings().portal_database_url
    _engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded pools only for server databases; SQLite uses its own pool class.
    if not url.startswith("sqlite"):
        _engine_kwargs["pool_size"] = 5
        _engine_kwargs["max_overflow"] = 10
        _engine_kwargs["pool_timeout"] = 30
        _engine_kwargs["pool_recycle"] = 1800
    return create_async_engine(url, **_engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    # Local/dev bootstrap; deployed databases are migrated with alembic.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
