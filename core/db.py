import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, TypeVar

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from core.config import settings
from core.exceptions import StoreTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


# Configure engine based on database type
if settings.DATABASE_URL.startswith("sqlite"):
    # For SQLite, use StaticPool for in-memory databases and enable foreign keys
    engine_kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in settings.DATABASE_URL:
        engine_kwargs["poolclass"] = StaticPool
    engine = create_async_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO, **engine_kwargs)
else:
    # For PostgreSQL and other databases
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        pool_pre_ping=True,
    )


def enable_sqlite_foreign_keys(async_engine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if settings.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the session factory.

    Services open one short session per store call so that concurrent
    per-line checks and deductions never share a session.
    """
    return SessionLocal


@asynccontextmanager
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    db = session_factory()
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()


async def with_deadline(awaitable: Awaitable[T], operation: str) -> T:
    """Await a store call, raising StoreTimeout once the configured deadline passes."""
    seconds = settings.STORE_CALL_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.error("Store call timed out after %ss: %s", seconds, operation)
        raise StoreTimeout(operation, seconds)


async def create_tables(async_engine=None) -> None:
    async with (async_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(async_engine=None) -> None:
    async with (async_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
