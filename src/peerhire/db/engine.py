"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

Store calls are bounded: asyncpg gets connect and command timeouts, the
pool gets a checkout timeout. Expiry surfaces as a 503 (see errors.py).
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from peerhire.config import settings


def _engine_kwargs(database_url: str) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # SQLite (tests, local dev) manages its own pool
        return {"echo": settings.debug}
    timeout = settings.external_call_timeout_seconds
    return {
        "echo": settings.debug,
        "pool_size": 5,
        "max_overflow": 15,
        "pool_timeout": timeout,
        "connect_args": {"timeout": timeout, "command_timeout": timeout},
    }


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# Session factory — each request gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
