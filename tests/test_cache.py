"""
Tests for the snapshot cache.

Tests:
- Fresh vs expired snapshots (pinned clock)
- Domain scoping
- Disabled cache and read errors
- Statistics
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

from citewatch.models import Snapshot
from citewatch.persistence.cache import SnapshotCache

from tests.fakes import DOMAIN

NOW = datetime(2025, 6, 1, 12, 0, 0)


def _insert(store, hours_ago: float, keyword_id: str = "kw-1", domain: str = DOMAIN) -> Snapshot:
    return store.insert(Snapshot(
        keyword_id=keyword_id,
        domain=domain,
        created_at=NOW - timedelta(hours=hours_ago),
    ))


# ============================================================================
# TTL
# ============================================================================

class TestSnapshotCacheTTL:
    """Tests for freshness rules."""

    def test_hit_within_ttl(self, store):
        saved = _insert(store, hours_ago=2)
        cache = SnapshotCache(store, ttl_hours=24, clock=lambda: NOW)
        assert cache.get("kw-1", DOMAIN).id == saved.id

    def test_miss_after_ttl(self, store):
        _insert(store, hours_ago=25)
        cache = SnapshotCache(store, ttl_hours=24, clock=lambda: NOW)
        assert cache.get("kw-1", DOMAIN) is None

    def test_newest_fresh_snapshot_wins(self, store):
        _insert(store, hours_ago=10)
        newest = _insert(store, hours_ago=1)
        cache = SnapshotCache(store, clock=lambda: NOW)
        assert cache.get("kw-1", DOMAIN).id == newest.id

    def test_scoped_to_domain(self, store):
        _insert(store, hours_ago=1, domain="other.com")
        cache = SnapshotCache(store, clock=lambda: NOW)
        assert cache.get("kw-1", DOMAIN) is None

    def test_clock_moves(self, store):
        _insert(store, hours_ago=0)
        current = {"now": NOW}
        cache = SnapshotCache(store, ttl_hours=1, clock=lambda: current["now"])

        assert cache.get("kw-1", DOMAIN) is not None
        current["now"] = NOW + timedelta(hours=2)
        assert cache.get("kw-1", DOMAIN) is None

    def test_cutoff(self, store):
        cache = SnapshotCache(store, ttl_hours=6, clock=lambda: NOW)
        assert cache.cutoff() == NOW - timedelta(hours=6)


# ============================================================================
# Disabled & Errors
# ============================================================================

class TestSnapshotCacheFallbacks:
    """Tests for disabled cache and store failures."""

    def test_disabled(self, store):
        _insert(store, hours_ago=1)
        cache = SnapshotCache(store, enabled=False, clock=lambda: NOW)
        assert cache.get("kw-1", DOMAIN) is None
        assert cache.get_stats()["misses"] == 0

    def test_missing_keyword_id(self, store):
        assert SnapshotCache(store).get("", DOMAIN) is None

    def test_store_error_is_a_miss(self):
        store = MagicMock()
        store.latest_for_keyword.side_effect = RuntimeError("db down")
        cache = SnapshotCache(store)

        assert cache.get("kw-1", DOMAIN) is None
        assert cache.get_stats()["misses"] == 1


# ============================================================================
# Statistics
# ============================================================================

class TestSnapshotCacheStats:
    """Tests for hit/miss accounting."""

    def test_stats(self, store):
        _insert(store, hours_ago=1)
        cache = SnapshotCache(store, ttl_hours=24, clock=lambda: NOW)

        cache.get("kw-1", DOMAIN)
        cache.get("kw-1", DOMAIN)
        cache.get("kw-2", DOMAIN)

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 66.7
        assert stats["searches_saved"] == 2 * SnapshotCache.SEARCHES_PER_SCAN
        assert stats["ttl_hours"] == 24

    def test_empty_stats(self, store):
        stats = SnapshotCache(store).get_stats()
        assert stats["hit_rate_percent"] == 0
        assert stats["enabled"] is True
