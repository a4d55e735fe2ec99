from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taletree.config import settings


def make_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(url or settings.database_url, echo=False)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = make_engine()
async_session = make_sessionmaker(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables if they don't exist."""
    from taletree.db.tables import Base

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
