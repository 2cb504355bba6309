"""
Batch Scheduler

Coordinates scanning a list of keywords in fixed-size concurrency windows.

- Windows run sequentially; scans inside a window run in parallel.
- A window is fully settled before the next one starts.
- A failing keyword becomes a "failed" placeholder; siblings are unaffected.
- After each window, results are merged by keyword id (last writer wins)
  and a progress event is published.
"""

import asyncio
import inspect
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from citewatch.models import Keyword, Snapshot

logger = logging.getLogger(__name__)

ScanFn = Callable[[Keyword, str], Awaitable[Snapshot]]
ProgressCallback = Callable[["BatchProgress"], Optional[Awaitable[None]]]


@dataclass
class BatchProgress:
    """Progress event published after each window settles."""
    completed: int
    total: int
    window_index: int
    results: List[Snapshot] = field(default_factory=list)

    @property
    def percent(self) -> int:
        if not self.total:
            return 100
        return round(self.completed / self.total * 100)


class ScanBatch:
    """
    Working state of one orchestrated run. Not persisted.

    Keeps an ordered map keyword_id -> latest Snapshot (or failed placeholder).
    Keywords not yet in the map are pending.
    """

    def __init__(self, total: int = 0):
        self.total = total
        self.completed = 0
        self.results: "OrderedDict[str, Snapshot]" = OrderedDict()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_running(self) -> bool:
        return self.started_at is not None and self.finished_at is None

    def cancel(self):
        """Consumer no longer cares; results of in-flight windows are discarded."""
        self._cancelled = True

    def merge(self, snapshots: Sequence[Snapshot]):
        """Replace the entry for a keyword if present, otherwise append."""
        for snapshot in snapshots:
            self.results[snapshot.keyword_id] = snapshot

    def get(self, keyword_id: str) -> Optional[Snapshot]:
        return self.results.get(keyword_id)

    def snapshots(self) -> List[Snapshot]:
        return list(self.results.values())

    def failed_ids(self) -> List[str]:
        return [kid for kid, snap in self.results.items() if snap.is_failed]

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "results": [s.to_dict() for s in self.results.values()],
        }


class BatchScheduler:
    """
    Runs a scan function over keywords in bounded windows.

    Usage:
        scheduler = BatchScheduler(executor.scan_one, window=3, pause=0.5)
        batch = await scheduler.run(keywords, "hypefresh.co", on_progress=print)
    """

    def __init__(
        self,
        scan_fn: ScanFn,
        window: int = 3,
        pause: float = 0.0,
    ):
        """
        Args:
            scan_fn: Coroutine function (keyword, domain) -> Snapshot
            window: Default concurrency window size
            pause: Delay in seconds between windows (rate-limit courtesy)
        """
        if window < 1:
            raise ValueError("window must be at least 1")
        self.scan_fn = scan_fn
        self.window = window
        self.pause = pause

    async def run(
        self,
        keywords: Sequence[Keyword],
        domain: str,
        window: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        batch: Optional[ScanBatch] = None,
        scan_fn: Optional[ScanFn] = None,
    ) -> ScanBatch:
        """
        Scan all keywords window by window.

        Args:
            keywords: Ordered keywords to scan
            domain: Tracked domain
            window: Override the default window size
            on_progress: Called (sync or async) after each window
            batch: Existing batch to merge into (keeps earlier results)
            scan_fn: Override the scan function for this run

        Returns:
            The ScanBatch holding merged results
        """
        size = window or self.window
        scan = scan_fn or self.scan_fn
        if size < 1:
            raise ValueError("window must be at least 1")

        keywords = list(keywords)
        batch = batch or ScanBatch()
        batch.total = len(keywords)
        batch.completed = 0
        batch.started_at = datetime.utcnow()
        batch.finished_at = None

        windows = [keywords[i:i + size] for i in range(0, len(keywords), size)]
        logger.info(f"Scanning {len(keywords)} keywords for {domain} in {len(windows)} windows of {size}")

        try:
            for index, chunk in enumerate(windows):
                if batch.cancelled:
                    logger.info(f"Batch cancelled before window {index + 1}/{len(windows)}")
                    break

                results = await asyncio.gather(
                    *(self._scan_safe(scan, keyword, domain) for keyword in chunk)
                )

                if batch.cancelled:
                    logger.info(f"Batch cancelled - discarding window {index + 1} results")
                    break

                batch.merge(results)
                batch.completed += len(chunk)

                await self._publish(on_progress, BatchProgress(
                    completed=batch.completed,
                    total=batch.total,
                    window_index=index,
                    results=batch.snapshots(),
                ))

                if self.pause and index < len(windows) - 1:
                    await asyncio.sleep(self.pause)
        finally:
            batch.finished_at = datetime.utcnow()

        failed = len(batch.failed_ids())
        logger.info(f"Batch complete: {batch.completed}/{batch.total} scanned, {failed} failed")
        return batch

    async def _scan_safe(self, scan: ScanFn, keyword: Keyword, domain: str) -> Snapshot:
        """Scan one keyword; any failure becomes a failed placeholder."""
        try:
            return await scan(keyword, domain)
        except Exception as e:
            logger.error(f"Failed to scan '{keyword.term}': {e}")
            return Snapshot.failed_placeholder(keyword.id, domain)

    @staticmethod
    async def _publish(callback: Optional[ProgressCallback], progress: BatchProgress):
        if callback is None:
            return
        try:
            result = callback(progress)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
