"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import func
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG",
    poolclass=NullPool,
    future=True
)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


def dialect_insert(session: AsyncSession, model):
    """
    INSERT construct supporting on_conflict_do_update for the session's dialect.

    PostgreSQL in production, SQLite in tests.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
    return insert(model)


def greatest(session: AsyncSession, *args):
    """Scalar max of column expressions (GREATEST on PostgreSQL, max() on SQLite)"""
    if session.get_bind().dialect.name == "postgresql":
        return func.greatest(*args)
    return func.max(*args)
