"""
Database configuration for the credit ledger and cost report stores.
Uses the SQLAlchemy async engine: asyncpg in production, aiosqlite in tests.
Only loaded when ACCOUNT_STORE=database.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from clipgen.config import settings
from clipgen.models.base import Base


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for database_url.

    Pool sizing only applies to server databases; SQLite keeps its default pool.
    """
    kwargs = {}
    if database_url.startswith("postgresql"):
        kwargs = {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}
    return create_async_engine(database_url, echo=False, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory handed to SqlAlchemyAccountRepository."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create the ledger and cost tables if they do not exist.
    Called on application startup.
    """
    # Register the tables on Base.metadata
    import clipgen.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
