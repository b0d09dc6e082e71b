import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> AsyncEngine:
    """
    Engine for the configured backend.

    SQLite gets a busy timeout instead of a pool, so a writer queued behind a
    payment waits before the retry layer sees "database is locked".
    """
    parsed = make_url(url)
    kwargs: dict[str, Any] = {"echo": settings.db_echo}
    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"timeout": settings.sqlite_busy_timeout}
    else:
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["pool_pre_ping"] = True

    logger.info("Connecting to %s database at %s", parsed.get_backend_name(), parsed.host or parsed.database)
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.database_url)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed when the handler returns, rolled back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
