"""Async SQLAlchemy engines and session factories.

The relational store and the vector index are reached through separate
engines and declarative bases. They may point at the same PostgreSQL server,
but writes to one never share a transaction with the other.
"""

import time
from typing import Any, Dict, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from policy_rag.core.config import settings
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for relational models."""

    pass


class VectorBase(DeclarativeBase):
    """Base class for vector index tables."""

    pass


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    echo=settings.db.echo,
    # Disable prepared statement cache for PgBouncer compatibility
    connect_args={"statement_cache_size": 0},
)

vector_engine = create_async_engine(
    settings.vector_database_url,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    echo=settings.db.echo,
    connect_args={"statement_cache_size": 0},
)

async_session_maker = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

vector_session_maker = async_sessionmaker(
    vector_engine, class_=AsyncSession, expire_on_commit=False
)


class DatabaseClient:
    """Connection checks and table management for one engine and its base.

    ``extensions`` are installed with ``CREATE EXTENSION IF NOT EXISTS`` in
    the same transaction that creates the tables.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        base: type[DeclarativeBase] = Base,
        label: str = "relational",
        extensions: Sequence[str] = (),
    ):
        self.engine = engine
        self.base = base
        self.label = label
        self.extensions = tuple(extensions)
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open one connection and run ``SELECT 1``; errors propagate."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            self._connected = False
            LOGGER.error(f"Cannot reach the {self.label} database", exc_info=True)
            raise

        self._connected = True
        LOGGER.info(f"Connected to the {self.label} database")

    async def disconnect(self) -> None:
        await self.engine.dispose()
        self._connected = False
        LOGGER.info(f"Closed {self.label} database connections")

    async def create_tables(self) -> None:
        """Install extensions and create any missing tables. Existing tables are kept."""
        async with self.engine.begin() as conn:
            for extension in self.extensions:
                await conn.execute(text(f'CREATE EXTENSION IF NOT EXISTS "{extension}"'))
            await conn.run_sync(self.base.metadata.create_all)

        LOGGER.info(
            f"{self.label.capitalize()} tables ready",
            extra={"tables": sorted(self.base.metadata.tables)}
        )

    async def drop_tables(self) -> None:
        """Drop every table on this client's base. All rows are lost."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.base.metadata.drop_all)
        LOGGER.warning(f"Dropped all {self.label} tables")

    async def health_check(self) -> Dict[str, Any]:
        """Round-trip ``SELECT 1`` and report status with latency. Never raises."""
        started = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                value = await conn.scalar(text("SELECT 1"))
        except Exception as e:
            self._connected = False
            LOGGER.error(f"{self.label.capitalize()} database health check failed", extra={"error": str(e)})
            return {"store": self.label, "status": "unhealthy", "connected": False, "error": str(e)}

        self._connected = value == 1
        return {
            "store": self.label,
            "status": "healthy" if self._connected else "unhealthy",
            "connected": self._connected,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }


db_client = DatabaseClient(engine, Base, label="relational")
vector_db_client = DatabaseClient(vector_engine, VectorBase, label="vector", extensions=("vector",))


async def init_database() -> None:
    """Verify both stores are reachable and create missing relational tables."""
    # Registers the relational tables on Base.metadata
    from policy_rag.database import models  # noqa: F401

    await db_client.connect()
    await vector_db_client.connect()
    await db_client.create_tables()


async def close_database() -> None:
    """Dispose of both engines."""
    await db_client.disconnect()
    await vector_db_client.disconnect()
