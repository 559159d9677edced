"""
Database connection management and session factory.

Provides engine setup, transactional sessions, table creation, and
mapping of driver failures onto the engine's exception hierarchy.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, pool, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import DatabaseError, StoreUnavailableError
from ..core.logging import get_logger
from .models import Base

logger = get_logger(__name__)


class DatabaseManager:
    """
    Database connection manager.

    SQLite runs on a single shared connection (StaticPool), so sessions
    are serialized with a lock; other backends use a QueuePool and run
    sessions concurrently.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ) -> None:
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL
            echo: Echo SQL statements
            pool_size: Connection pool size for server databases
            max_overflow: Pool overflow for server databases
        """
        self._database_url = database_url
        self._echo = echo
        self._pool_size = pool_size
        self._max_overflow = max_overflow

        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._is_initialized = False

        self._is_sqlite = database_url.startswith("sqlite")
        self._session_lock = threading.RLock()

        logger.info(f"Database manager initialized with URL: {self._mask_password(database_url)}")

    @classmethod
    def from_settings(cls, settings: Any) -> "DatabaseManager":
        """Create a manager from the ``database`` settings section."""
        return cls(
            database_url=settings.database.url,
            echo=settings.database.echo,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
        )

    @staticmethod
    def _mask_password(url: str) -> str:
        """Mask password in database URL for logging."""
        if "://" not in url:
            return url

        scheme, rest = url.split("://", 1)
        if "@" not in rest:
            return url

        credentials, host_part = rest.split("@", 1)
        if ":" in credentials:
            username, _ = credentials.split(":", 1)
            return f"{scheme}://{username}:***@{host_part}"

        return url

    def _get_engine_config(self) -> Dict[str, Any]:
        """Get engine configuration based on database type."""
        config: Dict[str, Any] = {"echo": self._echo}

        if self._is_sqlite:
            config.update({
                "poolclass": pool.StaticPool,
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": 30,
                },
            })
        else:
            config.update({
                "poolclass": pool.QueuePool,
                "pool_size": self._pool_size,
                "max_overflow": self._max_overflow,
                "pool_timeout": 30,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            })

        return config

    def _ensure_sqlite_directory(self) -> None:
        database = make_url(self._database_url).database
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        """Initialize the engine and session factory."""
        if self._is_initialized:
            logger.warning("Database manager already initialized")
            return

        try:
            if self._is_sqlite:
                self._ensure_sqlite_directory()

            self._engine = create_engine(self._database_url, **self._get_engine_config())
            self._session_factory = sessionmaker(
                bind=self._engine,
                class_=Session,
                expire_on_commit=False,
                autoflush=True,
            )

            self._test_connection()

            self._is_initialized = True
            logger.info("Database manager successfully initialized")

        except OperationalError as e:
            logger.error(f"Failed to initialize database manager: {e}")
            raise StoreUnavailableError(f"Database unreachable: {e}", cause=e, operation="initialize") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database manager: {e}")
            raise DatabaseError(f"Database initialization failed: {e}", cause=e) from e

    def _test_connection(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.debug("Database connection test successful")

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseError("Database engine not initialized")
        return self._engine

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic transaction management.

        Commits on success and rolls back on any exception. Connection
        failures and pool timeouts surface as StoreUnavailableError so the
        retry policy can act on them; other driver errors become
        DatabaseError. Non-database exceptions propagate unchanged.

        Yields:
            Session: SQLAlchemy session
        """
        if not self._is_initialized:
            raise DatabaseError("Database manager not initialized")

        lock = self._session_lock if self._is_sqlite else None
        if lock is not None:
            lock.acquire()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, SQLAlchemyTimeoutError) as e:
            session.rollback()
            logger.error(f"Database unavailable: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e}", cause=e, operation="session") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise DatabaseError(f"Database session error: {e}", cause=e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            if lock is not None:
                lock.release()

    def create_tables(self) -> None:
        """Create all database tables."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("All database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError(f"Failed to create database tables: {e}", cause=e) from e

    def drop_tables(self) -> None:
        """Drop all database tables."""
        try:
            Base.metadata.drop_all(bind=self.engine)
            logger.warning("All database tables dropped")
        except SQLAlchemyError as e:
            logger.error(f"Failed to drop database tables: {e}")
            raise DatabaseError(f"Failed to drop database tables: {e}", cause=e) from e

    def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with status, response time, and any error
        """
        status: Dict[str, Any] = {"status": "healthy", "errors": []}
        try:
            start_time = time.perf_counter()
            with self.get_session() as session:
                session.execute(text("SELECT 1")).fetchone()
            status["response_time_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        except (DatabaseError, StoreUnavailableError) as e:
            status["status"] = "unhealthy"
            status["errors"].append(str(e))
            logger.error(f"Database health check failed: {e}")
        return status

    def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database connections closed")

        self._engine = None
        self._session_factory = None
        self._is_initialized = False
