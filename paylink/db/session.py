# paylink/db/session.py
"""
Async engine and session factory
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from paylink.core.logging import logger
from paylink.db.models import Base


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite gets a generous busy timeout"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["timeout"] = 30

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables (development / tests; production uses migrations)"""
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables ready")
