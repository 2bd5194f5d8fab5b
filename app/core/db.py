import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import DB_URL

# Set logging level for SQLAlchemy engine
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
log = logging.getLogger("db")

Base = declarative_base()

engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _engine_options(db_url: str) -> dict:
    if db_url.startswith("sqlite") and (":memory:" in db_url or db_url.endswith("://")):
        # One shared connection, otherwise every session sees its own empty database
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


async def init_db(db_url: str = DB_URL):
    """Creates the engine and session factory, then generates the schema."""
    global engine, SessionLocal
    # Register every model on Base.metadata before create_all
    import app.models  # noqa: F401

    try:
        engine = create_async_engine(db_url, **_engine_options(db_url))
        SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info("Database connection established and schemas generated.")
    except Exception as e:
        log.critical(f"Could not connect to database at {db_url}. Error: {e}")
        # Re-raise to prevent the application from starting without a database
        raise


def get_sessionmaker() -> async_sessionmaker:
    if SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first.")
    return SessionLocal


async def close_db():
    """Closes all database connections."""
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None
    log.info("Database connections closed.")
