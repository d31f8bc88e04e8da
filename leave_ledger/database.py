"""Async SQLAlchemy engine and session management for the ledger.

Ledger writes commit inside ``LedgerRepository.transaction()``; the request
session dependency only hands out the session and cleans it up.
"""

from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leave_ledger.config import settings


def engine_options(url: str) -> dict[str, Any]:
    """Engine keyword arguments for `url`.

    PostgreSQL runs READ COMMITTED with a bounded ``lock_timeout`` so a
    blocked advisory or row lock surfaces as a retryable error instead of
    hanging the request.
    """
    backend = make_url(url).get_backend_name()
    if backend != "postgresql":
        return {}

    options: dict[str, Any] = {
        "isolation_level": "READ COMMITTED",
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
    }
    if make_url(url).get_driver_name() == "asyncpg":
        options["connect_args"] = {
            "server_settings": {"lock_timeout": f"{int(settings.LOCK_TIMEOUT_MS)}ms"},
        }
    return options


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    **engine_options(settings.DATABASE_URL),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request.

    Anything left uncommitted when the request ends (reads, or a ledger
    transaction aborted by an error) is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
