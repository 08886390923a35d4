"""Async SQLAlchemy engine and sessions.

The engine reads the same database the upstream collectors write to. It is
created lazily so importing task modules never opens a connection.
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Driverless URL prefixes rewritten to their async driver
_ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def _with_async_driver(url: str) -> str:
    for prefix, replacement in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def get_database_url() -> str:
    """Get database URL from environment.

    DATABASE_URL wins (Render provides ``postgres://``); otherwise the URL is
    assembled from DB_HOST, DB_PORT, DB_USER, DB_PASSWORD and DB_NAME.
    """
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return _with_async_driver(database_url)

    host = os.environ.get("DB_HOST", "localhost")
    port = os.environ.get("DB_PORT", "5432")
    user = os.environ.get("DB_USER", "postgres")
    password = os.environ.get("DB_PASSWORD", "postgres")
    database = os.environ.get("DB_NAME", "business_cycle_metrics")

    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{database}"


def get_engine_options(database_url: str) -> dict:
    """Keyword arguments for create_async_engine."""
    options = {"echo": os.environ.get("DB_ECHO", "").lower() == "true"}
    if not database_url.startswith("sqlite"):
        options["pool_size"] = int(os.environ.get("DB_POOL_SIZE", 5))
        options["max_overflow"] = int(os.environ.get("DB_MAX_OVERFLOW", 10))
    return options


_engine = None
_session_factory = None


def _get_engine():
    global _engine
    if _engine is None:
        database_url = get_database_url()
        _engine = create_async_engine(database_url, **get_engine_options(database_url))
    return _engine


def _get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections; the next session creates a fresh engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    The caller commits:
        async with get_async_session() as session:
            summary = await calculate_business_cycle_time(session, options)
            await session.commit()
    """
    session = _get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def get_session_dependency() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_async_session() as session:
        yield session
