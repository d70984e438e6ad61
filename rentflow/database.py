"""Database engine, session factory and unit-of-work helpers."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError

from rentflow.config import settings
from rentflow.core.exceptions import AppException, ConflictError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all models."""


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    SQLite gets ``BEGIN IMMEDIATE`` transactions so a unit of work takes the
    database write lock up front, the same guarantee ``SELECT ... FOR UPDATE``
    gives on PostgreSQL.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except AppException as exc:
            if exc.persist_changes:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work for background tasks and scripts."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except AppException as exc:
            if exc.persist_changes:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise


async def flush_changes(db: AsyncSession) -> None:
    """Flush pending writes, reporting optimistic version clashes as conflicts."""
    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning(f"Optimistic lock failure: {exc}")
        raise ConflictError("The record was modified concurrently; re-fetch and retry") from exc


async def init_db() -> None:
    """Create all tables (development only; production uses alembic)."""
    import rentflow.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine's connection pool."""
    await engine.dispose()
