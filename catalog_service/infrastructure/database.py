"""Database configuration and session management.

Provides async SQLAlchemy engine and session factory.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from catalog_service.infrastructure.config import settings

# Base class for models
Base = declarative_base()


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine.

    Args:
        database_url: Override for the configured database URL.

    Returns:
        AsyncEngine bound to the catalog database.
    """
    url = database_url or settings.database_url
    kwargs = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory for an engine.

    Args:
        engine: Async engine.

    Returns:
        Session factory producing AsyncSession instances.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine.

    The engine is created lazily so importing the application does not
    require a reachable database.

    Returns:
        AsyncEngine instance.
    """
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


async def dispose_engine() -> None:
    """Dispose the process-wide engine if it was created."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
