"""
PostgreSQL Client
=================

Async SQL client using SQLAlchemy 2.0.

PostgreSQL with asyncpg in deployment; any async SQLAlchemy URL
(e.g. ``sqlite+aiosqlite``) can be configured for local runs and tests.

Version: 0.1.0
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ORM models."""

    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    SQLite drops tzinfo on the way back; values are normalised to UTC in
    both directions so comparisons with ``datetime.now(UTC)`` stay valid.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _begin_immediate(engine: AsyncEngine) -> None:
    """
    Make SQLite take its write lock when a transaction starts.

    pysqlite defers BEGIN; two deferred writers can then fail with
    "database is locked" instead of waiting on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class PostgresClient:
    """
    Async SQL client wrapper.

    Manages connection pooling and session lifecycle.
    """

    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def _create_engine(cls, url: str) -> AsyncEngine:
        backend = make_url(url).get_backend_name()
        kwargs: dict[str, Any] = {"echo": False}
        if backend == "postgresql":
            kwargs.update(
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
        elif backend == "sqlite":
            kwargs["connect_args"] = {"timeout": 30}

        engine = create_async_engine(url, **kwargs)
        if backend == "sqlite":
            _begin_immediate(engine)
        return engine

    @classmethod
    def configure(cls, url: str) -> AsyncEngine:
        """
        Point the client at an explicit database URL.

        Replaces any existing engine without disposing it; callers that
        swap engines are expected to ``close()`` the previous one first.
        """
        cls._engine = cls._create_engine(url)
        cls._session_factory = None
        logger.info("database_engine_configured", backend=cls._engine.dialect.name)
        return cls._engine

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        """Get or create the async engine."""
        if cls._engine is None:
            cls._engine = cls._create_engine(settings.postgres.async_url)
            logger.info(
                "postgres_engine_created",
                backend=cls._engine.dialect.name,
                database=cls._engine.url.database,
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                cls.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def create_tables(cls) -> None:
        """Create all tables registered on ``Base`` (idempotent)."""
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created", tables=sorted(Base.metadata.tables))

    @classmethod
    async def close(cls) -> None:
        """Close the engine and release all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("postgres_engine_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        import time

        try:
            start = time.perf_counter()
            async with cls.get_session_factory()() as session:
                result = await session.execute(text("SELECT 1"))
                _ = result.scalar()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "backend": cls.get_engine().dialect.name,
            }
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }


async def get_postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that yields a database session.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_postgres_session)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Usage:
        async with postgres_session() as session:
            result = await session.execute(select(Item))
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
