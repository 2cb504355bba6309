"""
Display Adapter

Pure mapping from stored/live snapshots to flat rows for tables and
dashboards. Nothing here is persisted.

Row priority per keyword: live scan result > stored snapshot > pending.
"""

import enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from citewatch.analyzer.parser import NEGATIVE_THRESHOLD, sentiment_label
from citewatch.models import Keyword, Snapshot

ORGANIC_TOP = 10


class DisplayStatus(enum.Enum):
    """Derived per-keyword status, highest precedence first."""
    CRITICAL = "Critical"
    SAFE = "Safe"
    RISK = "Risk"
    OPPORTUNITY = "Opportunity"
    PENDING = "Pending"


class RowState(enum.Enum):
    PENDING = "pending"
    SCANNED = "scanned"
    FAILED = "failed"


def derive_display_status(snapshot: Optional[Snapshot]) -> DisplayStatus:
    """
    Critical > Safe > Risk > Opportunity > Pending.

    - Critical: analysis sentiment strongly negative
    - Safe: cited on the AI Overview
    - Risk: organic top 10 without an AI Overview citation
    - Opportunity: none of the above
    - Pending: no measurement (missing snapshot or failed placeholder)
    """
    if snapshot is None or snapshot.is_failed:
        return DisplayStatus.PENDING
    if snapshot.sentiment_score is not None and snapshot.sentiment_score <= NEGATIVE_THRESHOLD:
        return DisplayStatus.CRITICAL
    if snapshot.ai_overview_cited:
        return DisplayStatus.SAFE
    if snapshot.organic_rank is not None and snapshot.organic_rank <= ORGANIC_TOP:
        return DisplayStatus.RISK
    return DisplayStatus.OPPORTUNITY


def _analysis_state(snapshot: Snapshot, enrichment_state: Optional[str]) -> str:
    if snapshot.has_analysis:
        return "ready"
    if enrichment_state:
        return enrichment_state
    return "pending" if snapshot.is_cited_anywhere else "not_applicable"


def to_display_row(
    keyword: Keyword,
    snapshot: Optional[Snapshot],
    enrichment_state: Optional[str] = None,
) -> Dict[str, Any]:
    """Flatten one keyword and its snapshot (or lack of one) for display."""
    row = {
        "keyword_id": keyword.id,
        "keyword": keyword.term,
        "location": keyword.locale,
        "display_status": derive_display_status(snapshot).value,
    }

    if snapshot is None or snapshot.is_failed:
        row.update({
            "state": RowState.FAILED.value if snapshot is not None else RowState.PENDING.value,
            "snapshot_id": None,
            "organic_rank": None,
            "ai_overview_cited": False,
            "ai_overview_position": None,
            "ai_mode": "Not Found",
            "ai_mode_position": None,
            "sentiment": sentiment_label(None),
            "analysis": "not_applicable",
            "scanned_at": None,
        })
        return row

    row.update({
        "state": RowState.SCANNED.value,
        "snapshot_id": snapshot.id,
        "organic_rank": snapshot.organic_rank,
        "organic_url": snapshot.organic_url,
        "ai_overview_cited": snapshot.ai_overview_cited,
        "ai_overview_position": snapshot.ai_overview_position,
        "ai_mode": snapshot.ai_mode_status.value,
        "ai_mode_position": snapshot.ai_mode_position,
        "sentiment": snapshot.sentiment_label or sentiment_label(snapshot.sentiment_score),
        "content_gap": snapshot.content_gap,
        "strategy": snapshot.strategy_suggestion,
        "analysis": _analysis_state(snapshot, enrichment_state),
        "screenshot_url": (
            snapshot.ai_overview_screenshot_url
            or snapshot.ai_mode_screenshot_url
            or snapshot.organic_screenshot_url
        ),
        "scanned_at": snapshot.created_at.isoformat() if snapshot.created_at else None,
    })
    return row


def merge_display_rows(
    keywords: Iterable[Keyword],
    live_results: Optional[Mapping[str, Snapshot]] = None,
    stored: Optional[Mapping[str, Snapshot]] = None,
) -> List[Dict[str, Any]]:
    """
    One row per keyword, in keyword order.

    A failed live placeholder does not hide an older stored measurement.
    """
    live_results = live_results or {}
    stored = stored or {}

    rows = []
    for keyword in keywords:
        live = live_results.get(keyword.id)
        previous = stored.get(keyword.id)
        if live is not None and not live.is_failed:
            snapshot = live
        elif previous is not None:
            snapshot = previous
        else:
            snapshot = live
        rows.append(to_display_row(keyword, snapshot))
    return rows


def summarize(rows: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Count rows per display status, plus AI Overview share of voice."""
    counts = {status.value: 0 for status in DisplayStatus}
    scanned = cited = 0
    for row in rows:
        counts[row["display_status"]] += 1
        if row["state"] == RowState.SCANNED.value:
            scanned += 1
            cited += 1 if row["ai_overview_cited"] else 0

    counts["scanned"] = scanned
    counts["share_of_voice_percent"] = round(cited / scanned * 100) if scanned else 0
    return counts
