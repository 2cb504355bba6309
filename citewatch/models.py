"""
Citewatch - Data Models

Shared data models used across the pipeline. These are plain dataclasses,
independent of the ORM; the repository layer maps them to table rows.
"""

import enum
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


class SnapshotStatus(enum.Enum):
    """Whether a snapshot is a real measurement or a failed placeholder."""
    SCANNED = "scanned"
    FAILED = "failed"


class AIModeStatus(enum.Enum):
    """AI Mode outcome - three states, not a boolean."""
    CITED = "Cited"            # Domain found among AI Mode references
    NOT_CITED = "Not Cited"    # AI Mode answered, domain not among references
    NOT_FOUND = "Not Found"    # AI Mode returned nothing (or the fetch failed)


@dataclass
class Project:
    """A tracked domain."""
    id: str
    name: str
    domain: str
    target_location: str = "United States"
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Keyword:
    """A tracked search term."""
    id: str
    term: str
    locale: str = "United States"
    project_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Analysis:
    """Qualitative assessment of how an AI surface portrays the domain."""
    sentiment_label: str
    sentiment_score: float
    gap: Optional[str] = None
    strategy: Optional[str] = None
    sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment_label,
            "sentiment_score": self.sentiment_score,
            "gap": self.gap,
            "strategy": self.strategy,
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class Snapshot:
    """
    One point-in-time measurement of a keyword's visibility.

    Created once by the scan executor. The only later change is the analysis
    patch, which goes through with_analysis() and touches nothing else.
    """
    keyword_id: str
    domain: str

    # Organic
    organic_rank: Optional[int] = None
    organic_url: Optional[str] = None
    organic_title: Optional[str] = None

    # AI Overview
    ai_overview_cited: bool = False
    ai_overview_position: Optional[int] = None
    ai_overview_snippet: Optional[str] = None

    # AI Mode
    ai_mode_cited: bool = False
    ai_mode_position: Optional[int] = None
    ai_mode_snippet: Optional[str] = None
    ai_mode_status: AIModeStatus = AIModeStatus.NOT_FOUND

    # Visual proof (optional)
    organic_screenshot_url: Optional[str] = None
    ai_overview_screenshot_url: Optional[str] = None
    ai_mode_screenshot_url: Optional[str] = None

    # Analysis - filled only by the enricher
    sentiment_score: Optional[float] = None
    sentiment_label: Optional[str] = None
    content_gap: Optional[str] = None
    strategy_suggestion: Optional[str] = None
    analysis_sources: Optional[List[str]] = None

    # Metadata
    scan_duration_ms: int = 0
    status: SnapshotStatus = SnapshotStatus.SCANNED
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        for surface in ("ai_overview", "ai_mode"):
            cited = getattr(self, f"{surface}_cited")
            position = getattr(self, f"{surface}_position")
            if cited != (position is not None):
                raise ValueError(
                    f"{surface}_position must be set if and only if {surface}_cited is true"
                )
            if position is not None and position < 1:
                raise ValueError(f"{surface}_position must be positive, got {position}")

        if self.ai_mode_cited != (self.ai_mode_status is AIModeStatus.CITED):
            raise ValueError("ai_mode_status must be CITED exactly when ai_mode_cited is true")

        if self.organic_rank is not None and self.organic_rank < 1:
            raise ValueError(f"organic_rank must be positive, got {self.organic_rank}")

        if self.sentiment_score is not None and not -1.0 <= self.sentiment_score <= 1.0:
            raise ValueError(f"sentiment_score must be within [-1, 1], got {self.sentiment_score}")

        if self.scan_duration_ms < 0:
            raise ValueError("scan_duration_ms must be non-negative")

    @classmethod
    def failed_placeholder(cls, keyword_id: str, domain: str) -> "Snapshot":
        """Placeholder for a keyword whose scan failed outright."""
        return cls(
            keyword_id=keyword_id,
            domain=domain,
            scan_duration_ms=0,
            status=SnapshotStatus.FAILED,
            created_at=datetime.utcnow(),
        )

    @property
    def is_failed(self) -> bool:
        return self.status is SnapshotStatus.FAILED

    @property
    def is_cited_anywhere(self) -> bool:
        """Cited on at least one AI surface."""
        return self.ai_overview_cited or self.ai_mode_cited

    @property
    def has_analysis(self) -> bool:
        return self.sentiment_score is not None

    @property
    def captured_text(self) -> Optional[str]:
        """Best available AI text for qualitative analysis."""
        parts = [p for p in (self.ai_overview_snippet, self.ai_mode_snippet) if p]
        return "\n\n".join(parts) if parts else None

    def with_analysis(self, analysis: Analysis) -> "Snapshot":
        """Return a copy with only the analysis fields replaced."""
        return replace(
            self,
            sentiment_score=analysis.sentiment_score,
            sentiment_label=analysis.sentiment_label,
            content_gap=analysis.gap,
            strategy_suggestion=analysis.strategy,
            analysis_sources=list(analysis.sources),
        )

    def with_identity(self, snapshot_id: str, created_at: datetime) -> "Snapshot":
        """Return a copy carrying the id and timestamp assigned by the store."""
        return replace(self, id=snapshot_id, created_at=created_at)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-friendly dictionary."""
        data = asdict(self)
        data["ai_mode_status"] = self.ai_mode_status.value
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data
