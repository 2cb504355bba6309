"""
Snapshot Cache

Skips a rescan when the same keyword/domain pair was already scanned within
the TTL. The store itself is the cache: a "hit" is the newest stored
snapshot younger than the cutoff.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from citewatch.models import Snapshot

logger = logging.getLogger(__name__)


class SnapshotCache:
    """
    Read-through cache over the snapshot store.

    Usage:
        cache = SnapshotCache(store, ttl_hours=24)
        snapshot = cache.get(keyword.id, "hypefresh.co")
    """

    # Estimated SerpApi searches avoided per hit (organic, AI Overview, AI Mode)
    SEARCHES_PER_SCAN = 3

    def __init__(
        self,
        store,
        ttl_hours: int = 24,
        enabled: bool = True,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Args:
            store: SnapshotStore providing latest_for_keyword()
            ttl_hours: Maximum snapshot age that counts as fresh
            enabled: Whether caching is enabled
            clock: Current UTC time (tests pin it)
        """
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self.enabled = enabled
        self.clock = clock

        self._hits = 0
        self._misses = 0

    def cutoff(self) -> datetime:
        return self.clock() - self.ttl

    def get(self, keyword_id: str, domain: str) -> Optional[Snapshot]:
        """
        Newest snapshot for the pair created within the TTL.

        Returns:
            Cached snapshot or None if not found/expired/disabled
        """
        if not self.enabled or not keyword_id:
            return None

        try:
            snapshot = self.store.latest_for_keyword(keyword_id, domain=domain, since=self.cutoff())
        except Exception as e:
            logger.warning(f"Cache read error: {e}")
            self._misses += 1
            return None

        if snapshot is None:
            self._misses += 1
            return None

        self._hits += 1
        logger.debug(f"Cache HIT for keyword {keyword_id} ({domain})")
        return snapshot

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests else 0

        return {
            "enabled": self.enabled,
            "ttl_hours": self.ttl.total_seconds() / 3600,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(hit_rate, 1),
            "searches_saved": self._hits * self.SEARCHES_PER_SCAN,
        }
