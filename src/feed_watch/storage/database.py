"""
Database connection and session management.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from feed_watch.config import get_config
from feed_watch.logger import get_logger
from feed_watch.models import Base

if TYPE_CHECKING:
    from feed_watch.config import DatabaseConfig

logger = get_logger(__name__)


def _enable_sqlite_pragmas(engine: Engine) -> None:
    """Enable WAL so the inbox can be read while poll threads write."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


class DatabaseManager:
    """Database manager for context-managed database operations."""

    def __init__(self, db_path: Optional[str] = None, db_config: Optional["DatabaseConfig"] = None):
        """Initialize database manager.

        Args:
            db_path: Optional SQLite path or SQLAlchemy URL overriding the config.
            db_config: Optional custom database configuration.

        Note:
            If neither db_path nor db_config is provided, uses the global config.
        """
        from feed_watch.config import DatabaseConfig

        if db_path is not None:
            self._db_config = DatabaseConfig(path=db_path)
        else:
            self._db_config = db_config or get_config().database
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        """Get the database engine."""
        if self._engine is None:
            config = self._db_config
            engine_kwargs: dict = {"echo": config.echo}

            if config.is_sqlite:
                if "://" not in config.path:
                    Path(config.path).parent.mkdir(parents=True, exist_ok=True)
                engine_kwargs["connect_args"] = {
                    "check_same_thread": False,
                    "timeout": config.lock_timeout_seconds,
                }

            self._engine = create_engine(config.url, **engine_kwargs)

            if config.is_sqlite:
                _enable_sqlite_pragmas(self._engine)

            logger.debug(f"Database engine created for {config.url}")

        return self._engine

    def init_db(self, drop_all: bool = False) -> None:
        """Initialize database tables.

        Args:
            drop_all: If True, drop existing tables first
        """
        if drop_all:
            logger.warning("Dropping all tables - stored feed state will be lost!")
            Base.metadata.drop_all(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session.

        Yields:
            SQLAlchemy Session instance
        """
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine,
            )
        session = self._session_factory()

        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
