"""
Database Connection Module
Handles connection pooling and session management using SQLAlchemy.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from jira_sync.config_manager import ConfigManager
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///./data/jira_sync.db'


class DatabaseConnection:
    """Manages database connections with connection pooling."""

    _instance = None
    _engine: Engine = None
    _session_factory = None

    def __new__(cls):
        """Singleton pattern to ensure single connection pool."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize database connection if not already done."""
        if self._engine is None:
            self._initialize_engine()

    def _initialize_engine(self) -> None:
        """Create SQLAlchemy engine, pooled for server databases."""
        config = ConfigManager()
        db_config = config.get_database_config()

        db_url = make_url(db_config.get('url') or DEFAULT_DATABASE_URL)
        echo = os.getenv('SQL_ECHO', 'false').lower() == 'true'

        logger.info(f"Initializing database connection to {db_url.render_as_string(hide_password=True)}")

        if db_url.get_backend_name() == 'sqlite':
            if db_url.database and db_url.database != ':memory:':
                Path(db_url.database).parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(db_url, echo=echo)
        else:
            self._engine = create_engine(
                db_url,
                pool_size=db_config.get('pool_size', 5),
                max_overflow=db_config.get('max_overflow', 10),
                pool_timeout=db_config.get('pool_timeout', 30),
                pool_pre_ping=True,  # Enable connection health checks
                echo=echo
            )

        # Rows handed out by the storage gateway stay readable after commit
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info("Database engine initialized successfully")

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        return self._engine

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            bool: True if connection is healthy, False otherwise.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Database connection health check passed")
            return True
        except Exception as e:
            logger.error(f"Database connection health check failed: {e}")
            return False


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Commit on success, roll back and re-raise on error, always close."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()


# Convenience function for getting database connection
def get_db() -> DatabaseConnection:
    """Get the singleton database connection instance."""
    return DatabaseConnection()

