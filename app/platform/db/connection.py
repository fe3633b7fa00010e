"""
Database connection management.

The API talks to the report store through ``AsyncDatabaseConnectionManager``
(async sessions, like every other request handler), the Celery worker through
the sync ``DatabaseConnectionManager``. Both create their engine lazily on
first use, verify connectivity with a bounded retry loop, and can be closed
any number of times.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from app.platform.config import settings
from app.platform.db.base import Base
from app.platform.logger import get_logger

logger = get_logger(__name__)


class DatabaseUnavailableError(Exception):
    """Raised when the database cannot be reached after all retries."""


def sync_database_url(db_url: str) -> str:
    """Celery tasks are sync; strip async drivers the API may be configured with."""
    if db_url.startswith("postgresql+asyncpg://"):
        return db_url.replace("postgresql+asyncpg://", "postgresql://", 1)
    if db_url.startswith("sqlite+aiosqlite://"):
        return db_url.replace("sqlite+aiosqlite://", "sqlite://", 1)
    return db_url


def async_database_url(db_url: str) -> str:
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if db_url.startswith("sqlite://"):
        return db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return db_url


def retry_delay(backoff_seconds: float, attempt: int) -> float:
    """Delay before ``attempt`` (0-based); the first attempt is immediate."""
    return backoff_seconds * (1.5 ** (attempt - 1)) if attempt > 0 else 0.0


def _register_models() -> None:
    # Models must be imported before create_all() sees the metadata
    from app.features.scan.models.scan_report import ScanReport  # noqa: F401


class DatabaseConnectionManager:
    def __init__(
        self,
        database_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.database_url = database_url or settings.DATABASE_URL
        self.max_retries = max_retries if max_retries is not None else settings.DB_CONNECT_RETRIES
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.DB_CONNECT_BACKOFF
        )
        self._sleep = sleep
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _build_engine(self) -> Engine:
        db_url = sync_database_url(self.database_url)

        if db_url.startswith("sqlite"):
            return create_engine(db_url, connect_args={"check_same_thread": False})

        return create_engine(
            db_url,
            pool_size=10,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
            pool_recycle=1800,
        )

    def connect(self) -> Engine:
        """Create the engine and verify it, retrying with exponential backoff."""
        with self._lock:
            if self._engine is not None:
                return self._engine

            last_error: Optional[Exception] = None
            for attempt in range(self.max_retries):
                if attempt > 0:
                    delay = retry_delay(self.backoff_seconds, attempt)
                    logger.info(
                        f"Retrying database connection in {delay:.1f}s "
                        f"({self.max_retries - attempt} retries left)"
                    )
                    self._sleep(delay)

                engine = self._build_engine()
                try:
                    with engine.connect() as conn:
                        conn.execute(text("SELECT 1"))
                except OperationalError as e:
                    last_error = e
                    engine.dispose()
                    logger.error(f"Database connection attempt {attempt + 1} failed: {e}")
                    continue

                _register_models()
                Base.metadata.create_all(engine)
                self._engine = engine
                self._session_factory = sessionmaker(
                    bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
                )
                logger.info("Database connection established")
                return engine

            raise DatabaseUnavailableError(
                f"Could not connect to database after {self.max_retries} attempts: {last_error}"
            )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session, committing on success and rolling back on error."""
        if self._session_factory is None:
            self.connect()
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self) -> None:
        with self._lock:
            if self._engine is None:
                return
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed")


class AsyncDatabaseConnectionManager:
    """Async counterpart used by the FastAPI routes."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database_url = database_url or settings.DATABASE_URL
        self.max_retries = max_retries if max_retries is not None else settings.DB_CONNECT_RETRIES
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.DB_CONNECT_BACKOFF
        )
        self._sleep = sleep
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _build_engine(self) -> AsyncEngine:
        db_url = async_database_url(self.database_url)

        if db_url.startswith("sqlite"):
            # aiosqlite connections belong to the loop that opened them
            return create_async_engine(db_url, poolclass=NullPool)

        return create_async_engine(
            db_url,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_size=20,
            max_overflow=30,
            pool_timeout=30,
        )

    async def connect(self) -> AsyncEngine:
        async with self._lock:
            if self._engine is not None:
                return self._engine

            last_error: Optional[Exception] = None
            for attempt in range(self.max_retries):
                if attempt > 0:
                    delay = retry_delay(self.backoff_seconds, attempt)
                    logger.info(
                        f"Retrying database connection in {delay:.1f}s "
                        f"({self.max_retries - attempt} retries left)"
                    )
                    await self._sleep(delay)

                engine = self._build_engine()
                try:
                    async with engine.connect() as conn:
                        await conn.execute(text("SELECT 1"))
                except (OperationalError, OSError) as e:
                    last_error = e
                    await engine.dispose()
                    logger.error(f"Database connection attempt {attempt + 1} failed: {e}")
                    continue

                _register_models()
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
                self._engine = engine
                self._session_factory = async_sessionmaker(
                    engine, expire_on_commit=False, autoflush=False, autocommit=False
                )
                logger.info("Async database connection established")
                return engine

            raise DatabaseUnavailableError(
                f"Could not connect to database after {self.max_retries} attempts: {last_error}"
            )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            await self.connect()
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def close(self) -> None:
        async with self._lock:
            if self._engine is None:
                return
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Async database connection closed")


_default_manager: Optional[DatabaseConnectionManager] = None
_async_manager: Optional[AsyncDatabaseConnectionManager] = None


def get_connection_manager() -> DatabaseConnectionManager:
    """Process-wide sync manager for the Celery worker."""
    global _default_manager
    if _default_manager is None:
        _default_manager = DatabaseConnectionManager()
    return _default_manager


def get_async_connection_manager() -> AsyncDatabaseConnectionManager:
    """Process-wide async manager for the API."""
    global _async_manager
    if _async_manager is None:
        _async_manager = AsyncDatabaseConnectionManager()
    return _async_manager
