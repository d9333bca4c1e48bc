"""
Database connection setup for the Paygate gateway
Uses SQLAlchemy with async support for PostgreSQL (asyncpg driver)

The engine is created on first use so the gateway can run without a
database when ``DATABASE_URL`` is unset (the in-memory store is used then).
"""

import os
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from dotenv import load_dotenv

from ..models.sqlalchemy_models import Base
from ..utils.logger import log

load_dotenv()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create (once) and return the async engine"""
    global _engine, _session_factory
    if _engine is None:
        url = database_url or os.getenv("DATABASE_URL")
        if not url:
            raise ValueError("DATABASE_URL must be set to use the SQL store")

        log.info(
            "Creating database engine",
            extra={"event_type": "db_engine_created", "database": url.split("@")[-1]},
        )
        _engine = create_async_engine(
            url,
            echo=os.getenv("DEBUG", "false").lower() == "true",
            poolclass=NullPool,
            future=True,
            connect_args={
                "statement_cache_size": 0,  # pgbouncer in transaction mode
            },
        )
        _session_factory = sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine


def get_session_factory(database_url: Optional[str] = None) -> sessionmaker:
    get_engine(database_url)
    return _session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create all tables. Called at startup when the SQL store is active."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database tables ensured", extra={"event_type": "db_init"})


async def close_db():
    """Dispose of the engine at shutdown"""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        log.info("Database connections closed", extra={"event_type": "db_closed"})
