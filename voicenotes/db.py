"""SQLAlchemy 2.x database setup using asyncpg and pgvector.

One engine per process. Request handlers get a session through
``get_session``; background stages get theirs from the scheduler, which is
handed ``AsyncSessionMaker``.
"""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


engine: AsyncEngine = create_async_engine(settings.db.url, echo=settings.db.echo, pool_pre_ping=True)

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI-friendly async session dependency.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """

    async with AsyncSessionMaker() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections; call once background stages have finished."""
    await engine.dispose()
