import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Type

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from invex.config.invex_config import InvexConfig

# Configure logging
logger = logging.getLogger(__name__)

Base = declarative_base()

REQUIRED_TABLES = ['invoices', 'invoice_items', 'run_leases']


def get_base() -> Type:
    """
    Get the base class for declarative models

    Returns:
        Base class for declarative models
    """
    return Base


class Database:
    """
    Database connection manager for InvEX

    Owns the SQLAlchemy engine and session factory. Pipeline stages receive a
    ``Database`` instance and open their own narrowly scoped transactions
    through :meth:`transaction`; nothing holds a session across stages.
    """

    def __init__(self, config: Optional[InvexConfig] = None, url: Optional[str] = None):
        """
        Initialize database connection

        Args:
            config: InvexConfig instance. If None, uses the shared default.
            url: Explicit SQLAlchemy URL, overriding the configuration
        """
        self.config = config or InvexConfig.default()
        self.url = url or self._build_url()
        self.engine: Optional[Engine] = None
        self.Session = None
        self._initialize()

    def _build_url(self) -> str:
        db_config = self.config.get('database', {})
        if db_config.get('url'):
            return db_config['url']

        db_path = Path(db_config.get('path', 'invex.db'))
        # Ensure directory exists
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f'sqlite:///{db_path}'

    def _initialize(self) -> None:
        """Initialize database connection and session"""
        max_retries = 3
        retry_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                self.engine = self._create_engine()

                # Test connection
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))

                self.Session = sessionmaker(
                    bind=self.engine,
                    expire_on_commit=False,
                    autocommit=False,
                    autoflush=False
                )
                return

            except SQLAlchemyError as e:
                if attempt < max_retries - 1:
                    logger.warning(
                        f"Database connection attempt {attempt + 1} failed: {str(e)}. "
                        f"Retrying in {retry_delay} seconds..."
                    )
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
                else:
                    raise RuntimeError(f"Failed to connect to database after {max_retries} attempts: {str(e)}")

    def _create_engine(self) -> Engine:
        if not self.url.startswith('sqlite'):
            return create_engine(
                self.url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800
            )

        if self.url in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection, otherwise every session sees an empty database
            engine = create_engine(
                self.url,
                poolclass=StaticPool,
                connect_args={'check_same_thread': False}
            )
        else:
            engine = create_engine(
                self.url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,
                connect_args={
                    'timeout': 30,
                    'check_same_thread': False
                }
            )

        # Enable foreign key support
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def create_tables(self) -> None:
        """Create all tables and verify the required ones exist"""
        # Import models so they register on Base.metadata
        from invex.db import models  # noqa: F401

        Base.metadata.create_all(self.engine)

        tables = inspect(self.engine).get_table_names()
        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        if missing_tables:
            raise RuntimeError(f"Failed to create required tables: {', '.join(missing_tables)}")

        logger.info("Database tables initialized successfully")

    def session(self) -> Session:
        """
        Get a database session

        Returns:
            SQLAlchemy session (usable as a context manager)
        """
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Get a database session with transaction management

        Commits when the block exits normally, rolls back on any exception.

        Yields:
            SQLAlchemy session
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction error: {str(e)}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connection"""
        if self.engine:
            self.engine.dispose()
