"""
Repository Layer - Clean Interface for Data Operations

Maps between the ORM rows and the plain dataclasses in citewatch.models.
Every method opens its own short transaction; SQLAlchemy errors surface as
StoreError so callers can tell persistence failures from everything else.

- SnapshotStore: insert, lookups, analysis-only partial update
- KeywordRepository: projects, keywords, scan queue
- record_error: durable error log (best effort)
"""

import logging
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from citewatch.models import (
    AIModeStatus,
    Analysis,
    Keyword,
    Project,
    Snapshot,
    SnapshotStatus,
)
from .models import (
    ErrorLog,
    Keyword as KeywordRow,
    Project as ProjectRow,
    QueueStatus,
    ScanQueueItem,
    Snapshot as SnapshotRow,
)
from .session import get_session_factory, session_scope

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Persistence failed."""


class _Repository:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    @contextmanager
    def _scope(self):
        try:
            with session_scope(self.session_factory) as db:
                yield db
        except SQLAlchemyError as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e


# =============================================================================
# ROW MAPPING
# =============================================================================

def _snapshot_from_row(row: SnapshotRow) -> Snapshot:
    cited = bool(row.gemini_cited)
    if cited:
        ai_mode = AIModeStatus.CITED
    elif row.ai_mode_status == AIModeStatus.NOT_CITED.value:
        ai_mode = AIModeStatus.NOT_CITED
    else:
        ai_mode = AIModeStatus.NOT_FOUND

    return Snapshot(
        id=row.id,
        keyword_id=row.keyword_id,
        domain=row.domain,
        organic_rank=row.organic_rank,
        organic_url=row.organic_url,
        organic_title=row.organic_title,
        ai_overview_cited=bool(row.ai_overview_cited),
        ai_overview_position=row.ai_overview_position,
        ai_overview_snippet=row.ai_overview_snippet,
        ai_mode_cited=cited,
        ai_mode_position=row.gemini_position,
        ai_mode_snippet=row.gemini_snippet,
        ai_mode_status=ai_mode,
        organic_screenshot_url=row.organic_screenshot_url,
        ai_overview_screenshot_url=row.ai_overview_screenshot_url,
        ai_mode_screenshot_url=row.ai_mode_screenshot_url,
        sentiment_score=row.sentiment_score,
        sentiment_label=row.sentiment_label,
        content_gap=row.content_gaps,
        strategy_suggestion=row.strategy_suggestions,
        analysis_sources=row.analysis_sources,
        scan_duration_ms=row.scan_duration_ms or 0,
        status=SnapshotStatus(row.status or SnapshotStatus.SCANNED.value),
        created_at=row.created_at,
    )


def _keyword_from_row(row: KeywordRow) -> Keyword:
    return Keyword(
        id=row.id,
        term=row.term,
        locale=row.location or "United States",
        project_id=row.project_id,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _project_from_row(row: ProjectRow) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        domain=row.domain,
        target_location=row.target_location or "United States",
        user_id=row.user_id,
        created_at=row.created_at,
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================

class SnapshotStore(_Repository):
    """
    Persisted snapshots.

    Usage:
        store = SnapshotStore(session_factory)
        saved = store.insert(snapshot)
        store.update_analysis(saved.id, analysis)
    """

    def insert(self, snapshot: Snapshot) -> Snapshot:
        """
        Persist a scanned snapshot.

        Returns:
            Copy of the snapshot carrying the assigned id and created_at
        """
        if snapshot.is_failed:
            raise ValueError("Failed placeholders are not persisted")

        row = SnapshotRow(
            keyword_id=snapshot.keyword_id,
            domain=snapshot.domain,
            organic_rank=snapshot.organic_rank,
            organic_url=snapshot.organic_url,
            organic_title=snapshot.organic_title,
            ai_overview_cited=snapshot.ai_overview_cited,
            ai_overview_position=snapshot.ai_overview_position,
            ai_overview_snippet=snapshot.ai_overview_snippet,
            gemini_cited=snapshot.ai_mode_cited,
            gemini_position=snapshot.ai_mode_position,
            gemini_snippet=snapshot.ai_mode_snippet,
            ai_mode_status=snapshot.ai_mode_status.value,
            organic_screenshot_url=snapshot.organic_screenshot_url,
            ai_overview_screenshot_url=snapshot.ai_overview_screenshot_url,
            ai_mode_screenshot_url=snapshot.ai_mode_screenshot_url,
            sentiment_score=snapshot.sentiment_score,
            sentiment_label=snapshot.sentiment_label,
            content_gaps=snapshot.content_gap,
            strategy_suggestions=snapshot.strategy_suggestion,
            analysis_sources=snapshot.analysis_sources,
            status=snapshot.status.value,
            scan_duration_ms=snapshot.scan_duration_ms,
            created_at=snapshot.created_at or datetime.utcnow(),
        )

        with self._scope() as db:
            db.add(row)
            db.flush()
            snapshot_id, created_at = row.id, row.created_at

        logger.debug(f"Stored snapshot {snapshot_id} for keyword {snapshot.keyword_id}")
        return snapshot.with_identity(snapshot_id, created_at)

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        with self._scope() as db:
            row = db.get(SnapshotRow, snapshot_id)
            return _snapshot_from_row(row) if row else None

    def latest_for_keyword(
        self,
        keyword_id: str,
        domain: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> Optional[Snapshot]:
        """Newest snapshot for a keyword, optionally limited to a domain and age."""
        stmt = select(SnapshotRow).where(SnapshotRow.keyword_id == keyword_id)
        if domain:
            stmt = stmt.where(SnapshotRow.domain == domain)
        if since:
            stmt = stmt.where(SnapshotRow.created_at >= since)
        stmt = stmt.order_by(SnapshotRow.created_at.desc()).limit(1)

        with self._scope() as db:
            row = db.execute(stmt).scalars().first()
            return _snapshot_from_row(row) if row else None

    def latest_for_keywords(
        self,
        keyword_ids: Iterable[str],
        domain: Optional[str] = None,
    ) -> Dict[str, Snapshot]:
        """Newest snapshot per keyword id; ids without any snapshot are omitted."""
        latest = {}
        for keyword_id in keyword_ids:
            snapshot = self.latest_for_keyword(keyword_id, domain=domain)
            if snapshot is not None:
                latest[keyword_id] = snapshot
        return latest

    def history(self, keyword_id: str, limit: int = 30) -> List[Snapshot]:
        """Most recent snapshots for a keyword, newest first."""
        stmt = (
            select(SnapshotRow)
            .where(SnapshotRow.keyword_id == keyword_id)
            .order_by(SnapshotRow.created_at.desc())
            .limit(limit)
        )
        with self._scope() as db:
            return [_snapshot_from_row(r) for r in db.execute(stmt).scalars()]

    def update_analysis(self, snapshot_id: str, analysis: Analysis) -> Snapshot:
        """
        Patch only the analysis columns of a stored snapshot.

        Raises:
            LookupError: Unknown snapshot id
            StoreError: Database failure
        """
        with self._scope() as db:
            row = db.get(SnapshotRow, snapshot_id)
            if row is None:
                raise LookupError(f"Snapshot {snapshot_id} not found")

            row.sentiment_score = analysis.sentiment_score
            row.sentiment_label = analysis.sentiment_label
            row.content_gaps = analysis.gap
            row.strategy_suggestions = analysis.strategy
            row.analysis_sources = list(analysis.sources)
            db.flush()
            return _snapshot_from_row(row)

    def count_since(self, since: datetime) -> int:
        stmt = select(func.count(SnapshotRow.id)).where(SnapshotRow.created_at >= since)
        with self._scope() as db:
            return db.execute(stmt).scalar() or 0


# =============================================================================
# PROJECTS, KEYWORDS AND SCAN QUEUE
# =============================================================================

@dataclass
class QueuedScan:
    """A pending scan_queue row with what is needed to run it."""
    item_id: str
    keyword: Keyword
    domain: str


class KeywordRepository(_Repository):
    """Projects, their keywords, and the scheduled scan queue."""

    def get_or_create_project(
        self,
        domain: str,
        name: Optional[str] = None,
        user_id: Optional[str] = None,
        target_location: str = "United States",
    ) -> Project:
        with self._scope() as db:
            query = db.query(ProjectRow).filter(ProjectRow.domain == domain)
            if user_id:
                query = query.filter(ProjectRow.user_id == user_id)
            row = query.first()
            if row is None:
                row = ProjectRow(
                    name=name or domain,
                    domain=domain,
                    user_id=user_id,
                    target_location=target_location,
                )
                db.add(row)
                db.flush()
                logger.info(f"Created project {row.id} for {domain}")
            return _project_from_row(row)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._scope() as db:
            row = db.get(ProjectRow, project_id)
            return _project_from_row(row) if row else None

    def add_keyword(self, project_id: str, term: str, location: Optional[str] = None) -> Keyword:
        """
        Track a new keyword for a project.

        Raises:
            ValueError: Empty term, or an active keyword with the same text exists
            LookupError: Unknown project
        """
        term = (term or "").strip()
        if not term:
            raise ValueError("Keyword cannot be empty")

        with self._scope() as db:
            project = db.get(ProjectRow, project_id)
            if project is None:
                raise LookupError(f"Project {project_id} not found")

            duplicate = (
                db.query(KeywordRow)
                .filter(
                    KeywordRow.project_id == project_id,
                    KeywordRow.is_active.is_(True),
                    func.lower(KeywordRow.term) == term.lower(),
                )
                .first()
            )
            if duplicate is not None:
                raise ValueError(f'Keyword "{term}" already exists')

            row = KeywordRow(
                project_id=project_id,
                term=term,
                location=location or project.target_location,
            )
            db.add(row)
            db.flush()
            return _keyword_from_row(row)

    def get_keyword(self, keyword_id: str) -> Optional[Keyword]:
        with self._scope() as db:
            row = db.get(KeywordRow, keyword_id)
            return _keyword_from_row(row) if row else None

    def list_keywords(self, project_id: str, include_inactive: bool = False) -> List[Keyword]:
        with self._scope() as db:
            query = db.query(KeywordRow).filter(KeywordRow.project_id == project_id)
            if not include_inactive:
                query = query.filter(KeywordRow.is_active.is_(True))
            rows = query.order_by(KeywordRow.created_at.asc()).all()
            return [_keyword_from_row(r) for r in rows]

    def deactivate_keyword(self, keyword_id: str) -> bool:
        """Soft delete. Returns False for unknown ids."""
        with self._scope() as db:
            row = db.get(KeywordRow, keyword_id)
            if row is None:
                return False
            row.is_active = False
            return True

    def keywords_due_for_scan(self, limit: int, scanned_before: datetime) -> List[Keyword]:
        """
        Active keywords never scanned or last scanned before the cutoff,
        oldest first, skipping ones already waiting in the queue.
        """
        queued = select(ScanQueueItem.keyword_id).where(ScanQueueItem.status == QueueStatus.PENDING)
        with self._scope() as db:
            rows = (
                db.query(KeywordRow)
                .filter(
                    KeywordRow.is_active.is_(True),
                    (KeywordRow.last_scan_at.is_(None)) | (KeywordRow.last_scan_at < scanned_before),
                    KeywordRow.id.not_in(queued),
                )
                .order_by(KeywordRow.last_scan_at.is_(None).desc(), KeywordRow.last_scan_at.asc())
                .limit(limit)
                .all()
            )
            return [_keyword_from_row(r) for r in rows]

    def mark_scanned(self, keyword_id: str, when: Optional[datetime] = None):
        with self._scope() as db:
            row = db.get(KeywordRow, keyword_id)
            if row is not None:
                row.last_scan_at = when or datetime.utcnow()

    def enqueue_scans(self, keyword_ids: Iterable[str]) -> int:
        count = 0
        with self._scope() as db:
            for keyword_id in keyword_ids:
                db.add(ScanQueueItem(keyword_id=keyword_id))
                count += 1
        logger.info(f"Queued {count} keywords for scanning")
        return count

    def pending_queue(self, limit: int = 10) -> List[QueuedScan]:
        with self._scope() as db:
            rows = (
                db.query(ScanQueueItem, KeywordRow, ProjectRow)
                .join(KeywordRow, ScanQueueItem.keyword_id == KeywordRow.id)
                .join(ProjectRow, KeywordRow.project_id == ProjectRow.id)
                .filter(ScanQueueItem.status == QueueStatus.PENDING)
                .order_by(ScanQueueItem.created_at.asc())
                .limit(limit)
                .all()
            )
            return [
                QueuedScan(item_id=item.id, keyword=_keyword_from_row(kw), domain=project.domain)
                for item, kw, project in rows
            ]

    def complete_queue_item(self, item_id: str, error: Optional[str] = None):
        with self._scope() as db:
            item = db.get(ScanQueueItem, item_id)
            if item is None:
                return
            item.status = QueueStatus.FAILED if error else QueueStatus.DONE
            item.error = error
            item.processed_at = datetime.utcnow()


# =============================================================================
# ERROR LOG
# =============================================================================

def record_error(
    context: str,
    error: Any,
    metadata: Optional[Dict[str, Any]] = None,
    session_factory: Optional[sessionmaker] = None,
) -> bool:
    """
    Write a row to error_logs. Never raises.

    Args:
        context: Where the error happened (e.g. "scan", "analysis")
        error: Exception or message
        metadata: Extra JSON-serializable details

    Returns:
        True if the row was written
    """
    stack = None
    if isinstance(error, BaseException):
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    try:
        with session_scope(session_factory or get_session_factory()) as db:
            db.add(ErrorLog(
                context=context,
                message=str(error),
                stack=stack,
                extra=metadata or {},
            ))
        return True
    except Exception as e:
        logger.error(f"Failed to write error log for {context}: {e}")
        return False
