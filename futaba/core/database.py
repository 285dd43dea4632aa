"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (QueuePool for servers, SQLite aware)
- Test database support
- Ledger table definitions
"""
import logging
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, BigInteger, Date, DateTime, Text, String, Index, ForeignKey, select
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from futaba.core.config import settings
from futaba.core.errors import ConfigurationError


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine with pooling suited to the backend behind ``url``."""
    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            # One shared connection, otherwise every checkout sees an empty database
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=False,
            )
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ConfigurationError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)

    # Create session factory
    _SessionLocal = sessionmaker(autoflush=False, bind=_engine)

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session(engine: Optional[Engine] = None):
    """
    Context manager for database sessions.

    Commits when the block exits normally, rolls back and re-raises otherwise.
    Pass ``engine`` to bind the session to a specific engine instead of the
    global one.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    if engine is None:
        SessionLocal = get_session_factory()
    else:
        SessionLocal = sessionmaker(autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = engine or get_engine()
        with eng.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logging.getLogger("futaba").warning(f"Database connection check failed: {e}")
        return False


# Participants: one row per actor seen through the membership feed
participants = Table(
    'participants',
    metadata,
    Column('actor_id', BigInteger, primary_key=True, autoincrement=False),
    Column('name', Text, nullable=False),
    Column('count', Integer, nullable=False, server_default='0'),
    Column('current_streak', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('last_date', Date, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Current-streak ranking filters on last_date
    Index('idx_participants_last_date', 'last_date'),
)

# History: one row per accepted check-in, event_id is the only dedupe key.
# (actor_id, date) is intentionally not unique.
history = Table(
    'history',
    metadata,
    Column('event_id', BigInteger, primary_key=True, autoincrement=False),
    Column('actor_id', BigInteger, ForeignKey('participants.actor_id'), nullable=False),
    Column('date', Date, nullable=False),
    # Per-participant yearly scans: (actor_id, event_id range)
    Index('idx_history_actor_event', 'actor_id', 'event_id'),
    Index('idx_history_date', 'date'),
)

# Backfill cursor per monitored stream
ingestion_cursors = Table(
    'ingestion_cursors',
    metadata,
    Column('stream_id', String(100), primary_key=True),
    Column('last_event_id', BigInteger, nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)
