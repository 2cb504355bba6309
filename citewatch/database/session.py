"""
Database Session Management

Handles engine creation, session lifecycle and table creation.
Works with PostgreSQL in production and SQLite for local runs and tests.
"""

import os
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def _normalize_url(url: str) -> str:
    # Hosted PostgreSQL URLs use postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url() -> str:
    """
    Get database URL from the environment.

    Priority:
    1. DATABASE_URL
    2. POSTGRES_URL (alternative)
    3. SQLite fallback for local development
    """
    url = os.getenv("DATABASE_URL")
    if url:
        logger.info("Using database from DATABASE_URL")
        return _normalize_url(url)

    url = os.getenv("POSTGRES_URL")
    if url:
        logger.info("Using PostgreSQL database from POSTGRES_URL")
        return _normalize_url(url)

    sqlite_path = os.getenv("SQLITE_PATH", "citewatch_dev.db")
    logger.warning(f"No DATABASE_URL found, using SQLite: {sqlite_path}")
    return f"sqlite:///{sqlite_path}"


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(url: Optional[str] = None) -> Engine:
    """
    Create database engine with appropriate settings.

    PostgreSQL: Connection pooling
    SQLite: Single shared connection for in-memory databases, foreign keys on
    """
    url = _normalize_url(url or get_database_url())
    echo = os.getenv("SQL_DEBUG", "false").lower() == "true"

    if url.startswith("postgresql"):
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=echo,
        )
        logger.info("Created PostgreSQL engine with connection pooling")
        return engine

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory databases vanish with their connection; share one
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    logger.info("Created SQLite engine")
    return engine


# Global engine (lazy initialization)
_engine = None


def get_engine() -> Engine:
    """Get or create the process-wide database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

_SessionLocal = None


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Rows are read after commit to build dataclasses
    )


def get_session_factory() -> sessionmaker:
    """Get or create the session factory bound to the global engine."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Commits on success, rolls back on any exception, always closes.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================

def init_db(engine: Optional[Engine] = None, drop_all: bool = False) -> None:
    """
    Create all tables.

    Args:
        engine: Engine to use (defaults to the global engine)
        drop_all: If True, drop all tables first (USE WITH CAUTION!)
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

