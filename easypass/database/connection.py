"""Database engine and session management."""
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from easypass.config import Settings
from easypass.database.models import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database URL.

    Pool sizing only applies to server databases; SQLite gets a longer
    busy timeout instead.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    kwargs: Dict[str, Any] = {"echo": settings.database_echo}
    if settings.database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return create_async_engine(settings.database_url, **kwargs)


class Database:
    """
    Owns the engine and session factory for one application instance.

    Constructed once at startup and handed to the stores, instead of living
    in module-level globals.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self.engine = engine or build_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with database.session() as db``."""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create all tables defined in models if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        """Run ``SELECT 1``; raises if the database is unreachable."""
        async with self.session() as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()

    async def dispose(self) -> None:
        """Close database connections and dispose of the engine."""
        await self.engine.dispose()
