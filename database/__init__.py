"""Database engine/session bootstrap for PubMarket.

A ``Database`` owns one async engine. It is constructed and connected once at
startup, passed to the services that need it, and disposed explicitly.
"""

import logging
import os
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.models import Base
from processor.errors import InfrastructureError

logger = logging.getLogger("pubmarket.database")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///pubmarket.db",
)

_STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError, ConnectionError)


def _normalize_url(url: str) -> str:
    # Hosted Postgres hands out postgres:// but asyncpg needs postgresql+asyncpg://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, _record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Handle on the document store: engine + session factory."""

    def __init__(self, url: str | None = None, echo: bool = False):
        self.url = _normalize_url(url or DATABASE_URL)
        self.is_sqlite = self.url.startswith("sqlite")
        connect_args = {"timeout": 30} if self.is_sqlite else {}
        self.engine = create_async_engine(self.url, echo=echo, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.sessionmaker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    async def connect(self):
        """Create tables. Raises InfrastructureError when the store is unreachable."""
        try:
            async with self.engine.begin() as conn:
                if self.is_sqlite and ":memory:" not in self.url:
                    await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
                    await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
                await conn.run_sync(Base.metadata.create_all)
        except _STORE_ERRORS as exc:
            logger.error("Database connection failed: %s", exc)
            raise InfrastructureError("Database unavailable") from exc
        logger.info("Database ready (%s)", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self):
        await self.engine.dispose()
        logger.info("Database engine disposed")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *exc_info):
        await self.dispose()

    @asynccontextmanager
    async def session(self):
        """Read session. Driver failures surface as InfrastructureError."""
        try:
            async with self.sessionmaker() as session:
                yield session
        except IntegrityError:
            raise
        except _STORE_ERRORS as exc:
            logger.error("Store error: %s", exc)
            raise InfrastructureError("Database unavailable") from exc

    @asynccontextmanager
    async def transaction(self):
        """Session with an open transaction, committed on clean exit."""
        try:
            async with self.sessionmaker() as session:
                async with session.begin():
                    yield session
        except IntegrityError:
            raise
        except _STORE_ERRORS as exc:
            logger.error("Store error during transaction: %s", exc)
            raise InfrastructureError("Database unavailable") from exc
        except DBAPIError as exc:
            logger.error("Driver error during transaction: %s", exc)
            raise InfrastructureError("Database error") from exc
