"""
Database engine and sessions.

PostgreSQL (asyncpg) in production; a SQLite URL (aiosqlite) works for
local development, where pool sizing does not apply. Ride state changes
rely on conditional UPDATEs, so sessions never autoflush behind the
lifecycle controller's back.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from campus_shuttle.app.core.config import settings


def engine_options(database_url: str) -> dict:
    options = {"echo": settings.db_echo}
    if database_url.startswith("sqlite"):
        # Wait on the file lock instead of failing concurrent writers at once
        options["connect_args"] = {"timeout": 30}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
