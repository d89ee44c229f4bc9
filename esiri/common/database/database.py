# esiri/common/database/database.py

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from esiri.common.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.DEBUG, "future": True}
    # Connection health checks only matter for server databases
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_pre_ping=True, pool_recycle=1800)
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

async_session = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

async def connect_to_db():
    """Verify the database is reachable at startup."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(f"Connected to {engine.dialect.name} database")
    except Exception as e:
        logger.error(f"Database unreachable at startup: {e}")
        raise

async def close_db_connection():
    await engine.dispose()
    logger.info("Database engine disposed")

# Dependency for using a session in routes
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for use in FastAPI routes."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Standalone unit of work for code that runs outside a request (notifications, audit log)."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

def dialect_insert(session: AsyncSession):
    """INSERT construct with ON CONFLICT support for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"No upsert support for dialect {dialect!r}")
