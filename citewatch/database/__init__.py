"""
Citewatch - Database Package

SQLAlchemy models, session handling and repositories for projects,
keywords, snapshots, the scan queue and the error log.
"""

from .models import (
    Base,
    Project,
    Keyword,
    Snapshot,
    ScanQueueItem,
    ErrorLog,
    QueueStatus,
)
from .session import (
    get_database_url,
    create_db_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope,
    init_db,
)
from .repository import (
    SnapshotStore,
    KeywordRepository,
    QueuedScan,
    StoreError,
    record_error,
)

__all__ = [
    # Models
    "Base",
    "Project",
    "Keyword",
    "Snapshot",
    "ScanQueueItem",
    "ErrorLog",
    "QueueStatus",

    # Session
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
    "init_db",

    # Repositories
    "SnapshotStore",
    "KeywordRepository",
    "QueuedScan",
    "StoreError",
    "record_error",
]
