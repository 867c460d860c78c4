"""
Database engine configuration and session management.

Runs on SQLite through aiosqlite by default. Pointing DATABASE_URL at
``postgresql+asyncpg://...`` (with asyncpg installed) needs no code change.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config

# On SQLite each session holds its own aiosqlite connection, closed with the session
engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    poolclass=NullPool if config.SQLALCHEMY_DATABASE_URL.startswith("sqlite") else None,
    echo=False,
    future=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Commits when the request handler returns, rolls back when it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Create the tables of every registered model. Existing tables are kept."""
    from app.core.database.base import Base

    # Import all models to ensure they're registered with SQLAlchemy
    from app.features.users.models import User  # noqa: F401
    from app.features.permissions.models import PermissionDocument, AuditLog  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
