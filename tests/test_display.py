"""
Tests for the display adapter.

Tests:
- Status precedence (Critical > Safe > Risk > Opportunity > Pending)
- Row flattening for scanned, failed and pending keywords
- Live/stored merge priority
- Summary counts
"""

from datetime import datetime

import pytest

from citewatch.models import AIModeStatus, Keyword, Snapshot
from citewatch.output.display import (
    DisplayStatus,
    derive_display_status,
    merge_display_rows,
    summarize,
    to_display_row,
)

from tests.fakes import DOMAIN

KEYWORD = Keyword(id="kw-1", term="sneaker news")


def _snap(**fields) -> Snapshot:
    return Snapshot(keyword_id=fields.pop("keyword_id", "kw-1"), domain=DOMAIN, **fields)


# ============================================================================
# Status
# ============================================================================

class TestDisplayStatus:
    """Tests for derived status precedence."""

    def test_negative_sentiment_is_critical_even_when_cited(self):
        snapshot = _snap(ai_overview_cited=True, ai_overview_position=1, organic_rank=1, sentiment_score=-1.0)
        assert derive_display_status(snapshot) is DisplayStatus.CRITICAL

    def test_cited_is_safe(self):
        snapshot = _snap(ai_overview_cited=True, ai_overview_position=3, organic_rank=2, sentiment_score=0.0)
        assert derive_display_status(snapshot) is DisplayStatus.SAFE

    @pytest.mark.parametrize("rank", [1, 10])
    def test_organic_top_ten_without_citation_is_risk(self, rank):
        assert derive_display_status(_snap(organic_rank=rank)) is DisplayStatus.RISK

    @pytest.mark.parametrize("rank", [11, None])
    def test_otherwise_opportunity(self, rank):
        assert derive_display_status(_snap(organic_rank=rank)) is DisplayStatus.OPPORTUNITY

    def test_ai_mode_citation_alone_is_not_safe(self):
        snapshot = _snap(ai_mode_cited=True, ai_mode_position=1, ai_mode_status=AIModeStatus.CITED)
        assert derive_display_status(snapshot) is DisplayStatus.OPPORTUNITY

    def test_pending(self):
        assert derive_display_status(None) is DisplayStatus.PENDING
        assert derive_display_status(Snapshot.failed_placeholder("kw-1", DOMAIN)) is DisplayStatus.PENDING


# ============================================================================
# Rows
# ============================================================================

class TestDisplayRow:
    """Tests for row flattening."""

    def test_scanned_row(self):
        snapshot = _snap(
            id="snap-1",
            organic_rank=3,
            ai_overview_cited=True,
            ai_overview_position=2,
            ai_mode_status=AIModeStatus.NOT_CITED,
            ai_overview_screenshot_url="https://shots/ao.png",
            created_at=datetime(2025, 6, 1, 12, 0),
        )
        row = to_display_row(KEYWORD, snapshot)

        assert row["display_status"] == "Safe"
        assert row["state"] == "scanned"
        assert row["snapshot_id"] == "snap-1"
        assert row["organic_rank"] == 3
        assert row["ai_overview_position"] == 2
        assert row["ai_mode"] == "Not Cited"
        assert row["sentiment"] == "Not Mentioned"
        assert row["analysis"] == "pending"
        assert row["screenshot_url"] == "https://shots/ao.png"
        assert row["scanned_at"] == "2025-06-01T12:00:00"

    def test_analysis_ready(self):
        snapshot = _snap(sentiment_score=1.0, sentiment_label="Positive", content_gap="sizing")
        row = to_display_row(KEYWORD, snapshot)
        assert row["analysis"] == "ready"
        assert row["sentiment"] == "Positive"
        assert row["content_gap"] == "sizing"

    def test_uncited_analysis_not_applicable(self):
        assert to_display_row(KEYWORD, _snap())["analysis"] == "not_applicable"

    def test_enrichment_state_shown(self):
        snapshot = _snap(ai_overview_cited=True, ai_overview_position=1)
        assert to_display_row(KEYWORD, snapshot, enrichment_state="failed")["analysis"] == "failed"

    def test_failed_and_pending_rows(self):
        failed = to_display_row(KEYWORD, Snapshot.failed_placeholder("kw-1", DOMAIN))
        pending = to_display_row(KEYWORD, None)

        assert failed["state"] == "failed"
        assert pending["state"] == "pending"
        for row in (failed, pending):
            assert row["display_status"] == "Pending"
            assert row["organic_rank"] is None
            assert row["ai_mode"] == "Not Found"


# ============================================================================
# Merge & Summary
# ============================================================================

class TestMerge:
    """Tests for live/stored merge priority."""

    def test_priority(self):
        keywords = [Keyword(id=f"kw-{i}", term=f"term {i}") for i in range(4)]
        live = {
            "kw-0": _snap(keyword_id="kw-0", organic_rank=1),
            "kw-1": Snapshot.failed_placeholder("kw-1", DOMAIN),
            "kw-3": Snapshot.failed_placeholder("kw-3", DOMAIN),
        }
        stored = {
            "kw-0": _snap(keyword_id="kw-0", organic_rank=50),
            "kw-1": _snap(keyword_id="kw-1", organic_rank=5),
        }

        rows = merge_display_rows(keywords, live_results=live, stored=stored)

        assert [r["keyword_id"] for r in rows] == ["kw-0", "kw-1", "kw-2", "kw-3"]
        # Live result beats stored
        assert rows[0]["organic_rank"] == 1
        # Failed live placeholder does not hide a stored measurement
        assert rows[1]["organic_rank"] == 5
        assert rows[2]["state"] == "pending"
        assert rows[3]["state"] == "failed"

    def test_summary(self):
        keywords = [Keyword(id=f"kw-{i}", term=f"term {i}") for i in range(4)]
        stored = {
            "kw-0": _snap(keyword_id="kw-0", ai_overview_cited=True, ai_overview_position=1),
            "kw-1": _snap(keyword_id="kw-1", organic_rank=4),
            "kw-2": _snap(keyword_id="kw-2", sentiment_score=-1.0),
        }
        summary = summarize(merge_display_rows(keywords, stored=stored))

        assert summary["Safe"] == 1
        assert summary["Risk"] == 1
        assert summary["Critical"] == 1
        assert summary["Pending"] == 1
        assert summary["scanned"] == 3
        assert summary["share_of_voice_percent"] == 33

    def test_summary_empty(self):
        assert summarize([])["share_of_voice_percent"] == 0
