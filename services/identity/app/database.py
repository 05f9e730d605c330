"""
Process-wide database handle for the identity service.

init_db() is called once from the app lifespan (and from tests); get_db() is
the FastAPI dependency that hands each request its own AsyncSession and
commits on success.
"""
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.postgres import (
    AsyncSessionFactory,
    Base,
    get_async_session_factory,
    get_session,
)

_session_factory: AsyncSessionFactory | None = None


def init_db(database_url: str) -> AsyncSessionFactory:
    global _session_factory
    _session_factory = get_async_session_factory(database_url)
    return _session_factory


def get_session_factory() -> AsyncSessionFactory:
    if _session_factory is None:
        raise RuntimeError("Database not initialised; call init_db() first.")
    return _session_factory


async def create_tables() -> None:
    """Create any missing tables for the models registered on Base."""
    import app.auth.models  # noqa: F401 - register with Base

    engine = get_session_factory().kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    global _session_factory
    if _session_factory is not None:
        await _session_factory.kw["bind"].dispose()
        _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session(get_session_factory()):
        yield session
