"""
SQLAlchemy Models for Citewatch

Tables:
- projects: a tracked domain and its default location
- keywords: search terms tracked per project (soft-deleted via is_active)
- snapshots: one row per scan of a keyword
- scan_queue: keywords queued by the scheduled trigger
- error_logs: durable record of failures

Ids are UUID strings so the same schema runs on PostgreSQL and SQLite.
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, CheckConstraint, JSON,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class QueueStatus(enum.Enum):
    """Status of a queued scan"""
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# CORE TABLES
# =============================================================================

class Project(Base):
    """A domain being tracked"""
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    target_location = Column(String(255), default="United States")

    created_at = Column(DateTime, default=datetime.utcnow)

    keywords = relationship("Keyword", back_populates="project", cascade="all, delete-orphan")


class Keyword(Base):
    """A search term tracked for a project"""
    __tablename__ = "keywords"

    id = Column(String(36), primary_key=True, default=_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)

    term = Column(String(500), nullable=False)
    location = Column(String(255), default="United States")
    is_active = Column(Boolean, default=True, nullable=False)
    last_scan_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="keywords")

    __table_args__ = (
        Index("idx_keywords_project_active", "project_id", "is_active"),
    )


class Snapshot(Base):
    """
    One measurement of a keyword's visibility.

    The AI Mode columns keep their historical gemini_* names.
    Only the analysis columns are ever updated after insert.
    """
    __tablename__ = "snapshots"

    id = Column(String(36), primary_key=True, default=_uuid)
    keyword_id = Column(String(36), nullable=False)
    domain = Column(String(255), nullable=False)

    # Organic
    organic_rank = Column(Integer, nullable=True)
    organic_url = Column(Text, nullable=True)
    organic_title = Column(Text, nullable=True)

    # AI Overview
    ai_overview_cited = Column(Boolean, default=False, nullable=False)
    ai_overview_position = Column(Integer, nullable=True)
    ai_overview_snippet = Column(Text, nullable=True)

    # AI Mode
    gemini_cited = Column(Boolean, default=False, nullable=False)
    gemini_position = Column(Integer, nullable=True)
    gemini_snippet = Column(Text, nullable=True)
    ai_mode_status = Column(String(20), default="Not Found", nullable=False)

    # Visual proof
    organic_screenshot_url = Column(Text, nullable=True)
    ai_overview_screenshot_url = Column(Text, nullable=True)
    ai_mode_screenshot_url = Column(Text, nullable=True)

    # Analysis
    sentiment_score = Column(Float, nullable=True)
    sentiment_label = Column(String(20), nullable=True)
    content_gaps = Column(Text, nullable=True)
    strategy_suggestions = Column(Text, nullable=True)
    analysis_sources = Column(JSON, nullable=True)

    # Metadata
    status = Column(String(20), default="scanned", nullable=False)
    scan_duration_ms = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_snapshots_keyword_domain_created", "keyword_id", "domain", "created_at"),
        Index("idx_snapshots_created", "created_at"),
        CheckConstraint("organic_rank IS NULL OR organic_rank >= 1", name="check_organic_rank"),
        CheckConstraint(
            "sentiment_score IS NULL OR (sentiment_score >= -1 AND sentiment_score <= 1)",
            name="check_sentiment_range",
        ),
    )


class ScanQueueItem(Base):
    """A keyword queued for scanning by the scheduled trigger"""
    __tablename__ = "scan_queue"

    id = Column(String(36), primary_key=True, default=_uuid)
    keyword_id = Column(String(36), ForeignKey("keywords.id"), nullable=False)
    status = Column(Enum(QueueStatus), default=QueueStatus.PENDING, nullable=False)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    keyword = relationship("Keyword")

    __table_args__ = (
        Index("idx_scan_queue_status", "status", "created_at"),
    )


class ErrorLog(Base):
    """Durable error record"""
    __tablename__ = "error_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    context = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    stack = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
