"""Async engine and session factory shared by the API and the repositories.

Agent turns run after the HTTP response is sent, so repositories take the
session factory and open their own short sessions. Only request-scoped
endpoints (readiness) use the ``get_session`` dependency.
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from polymind.config import Settings, get_settings


@dataclass
class _Database:
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]


_database: _Database | None = None


def _connect(settings: Settings) -> _Database:
    engine = create_async_engine(
        str(settings.database_url),
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        echo=settings.app_debug,
    )
    sessions = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    return _Database(engine=engine, sessions=sessions)


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory, connecting on first use."""
    global _database
    if _database is None:
        _database = _connect(settings or get_settings())
    return _database.sessions


async def dispose_engine() -> None:
    """Close pooled connections. A later call to get_session_factory reconnects."""
    global _database
    database, _database = _database, None
    if database is not None:
        await database.engine.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
