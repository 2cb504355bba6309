"""
Analysis Enricher

Adds qualitative analysis (sentiment, content gap, strategy) to snapshots
that are already persisted.

- Runs only for snapshots cited on an AI surface (or, with enrich_on_text,
  whenever AI Overview text was captured).
- Each run is a one-shot task keyed by snapshot id, so callers can observe
  PENDING / SUCCEEDED / FAILED / SKIPPED and await completion.
- Only pending tasks are held live. Finished outcomes move to a bounded
  history (without the patched snapshot) so a long-lived process stays flat.
- Writes only the analysis columns through a partial update.
- Never raises: engine errors, timeouts and unparseable replies are logged
  and leave the analysis fields absent.
"""

import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional

from citewatch.analyzer.parser import parse_analysis
from citewatch.models import Analysis, Snapshot

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Engine call or reply parsing failed."""


class EnrichmentState(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EnrichmentOutcome:
    """Result of one enrichment attempt."""
    snapshot_id: Optional[str]
    state: EnrichmentState
    analysis: Optional[Analysis] = None
    snapshot: Optional[Snapshot] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is EnrichmentState.SUCCEEDED

    def to_dict(self) -> Dict:
        return {
            "snapshot_id": self.snapshot_id,
            "state": self.state.value,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "error": self.error,
        }


class EnrichmentTask:
    """One-shot enrichment run for a snapshot id."""

    def __init__(
        self,
        snapshot_id: str,
        task: Optional[asyncio.Task] = None,
        outcome: Optional[EnrichmentOutcome] = None,
    ):
        self.snapshot_id = snapshot_id
        self.created_at = datetime.utcnow()
        self._task = task
        self._outcome = outcome

    @property
    def done(self) -> bool:
        return self._outcome is not None or self._task is None or self._task.done()

    @property
    def outcome(self) -> Optional[EnrichmentOutcome]:
        if self._outcome is None and self._task is not None and self._task.done():
            self._outcome = self._settle()
        return self._outcome

    @property
    def state(self) -> EnrichmentState:
        outcome = self.outcome
        return outcome.state if outcome else EnrichmentState.PENDING

    async def wait(self) -> EnrichmentOutcome:
        if self._task is not None and not self._task.done():
            await asyncio.wait([self._task])
        return self.outcome

    def _settle(self) -> EnrichmentOutcome:
        if self._task.cancelled():
            return EnrichmentOutcome(self.snapshot_id, EnrichmentState.FAILED, error="cancelled")
        return self._task.result()


# ============================================================================
# PROMPT
# ============================================================================

SYSTEM_PROMPT = (
    "You are an SEO analyst who studies how AI-generated search answers "
    "portray websites. Reply with a single JSON object and nothing else."
)

ANALYSIS_PROMPT = """Context: I am tracking the keyword "{keyword}" for the domain "{domain}".
The AI search answer says:
\"\"\"
{text}
\"\"\"

Task:
1. Determine sentiment towards {domain} (Positive/Neutral/Negative/Not Mentioned).
2. If not mentioned, identify ONE missing topic the domain needs to cover to get cited.
3. Provide a 1-sentence actionable strategy.

Return strictly JSON: {{"sentiment": "...", "gap": "...", "strategy": "...", "sources": []}}"""


def build_prompt(domain: str, keyword: str, text: Optional[str]) -> str:
    return ANALYSIS_PROMPT.format(
        keyword=keyword,
        domain=domain,
        text=(text or "(no answer text was captured)").strip(),
    )


# ============================================================================
# ENRICHER
# ============================================================================

class AnalysisEnricher:
    """
    Fire-and-forget analysis with observable completion.

    Usage:
        enricher = AnalysisEnricher(claude_client, snapshot_store)
        enricher.schedule(snapshot, "best crm software")
        ...
        outcome = await enricher.wait(snapshot.id)
    """

    def __init__(
        self,
        engine,
        store,
        timeout: float = 20.0,
        enrich_on_text: bool = False,
        history_size: int = 500,
    ):
        """
        Args:
            engine: Object with async analyze(prompt, system) -> AnalysisResponse
            store: SnapshotStore (update_analysis is the only write used)
            timeout: Upper bound for one engine call, in seconds
            enrich_on_text: Also enrich uncited snapshots with AI Overview text
            history_size: Finished outcomes kept for status lookups
        """
        self.engine = engine
        self.store = store
        self.timeout = timeout
        self.enrich_on_text = enrich_on_text
        self.history_size = history_size
        self._tasks: Dict[str, EnrichmentTask] = {}
        self._history: "OrderedDict[str, EnrichmentOutcome]" = OrderedDict()

    def should_enrich(self, snapshot: Snapshot) -> bool:
        if snapshot is None or snapshot.id is None or snapshot.is_failed:
            return False
        if snapshot.is_cited_anywhere:
            return True
        return self.enrich_on_text and bool(snapshot.ai_overview_snippet)

    async def enrich(
        self,
        snapshot: Snapshot,
        keyword_term: str,
        text: Optional[str] = None,
        force: bool = False,
    ) -> EnrichmentOutcome:
        """
        Analyze a snapshot and patch its analysis fields.

        Args:
            snapshot: Persisted snapshot
            keyword_term: Keyword text used in the prompt
            text: Answer text to judge (defaults to the snapshot's captured text)
            force: Bypass the citation trigger (manual re-trigger)

        Returns:
            EnrichmentOutcome; never raises
        """
        if snapshot.id is None:
            return EnrichmentOutcome(None, EnrichmentState.SKIPPED, error="snapshot is not persisted")
        if not force and not self.should_enrich(snapshot):
            logger.debug(f"Skipping analysis for snapshot {snapshot.id}: not cited")
            return EnrichmentOutcome(snapshot.id, EnrichmentState.SKIPPED)

        try:
            analysis = await self._analyze(snapshot, keyword_term, text)
            patched = self.store.update_analysis(snapshot.id, analysis)
        except asyncio.TimeoutError:
            logger.warning(f"Analysis timed out for snapshot {snapshot.id} after {self.timeout}s")
            return EnrichmentOutcome(snapshot.id, EnrichmentState.FAILED, error="analysis timed out")
        except Exception as e:
            logger.warning(f"Analysis failed for snapshot {snapshot.id}: {e}")
            return EnrichmentOutcome(snapshot.id, EnrichmentState.FAILED, error=str(e))

        logger.info(
            f"Analysis stored for snapshot {snapshot.id}: "
            f"{analysis.sentiment_label} ({analysis.sentiment_score})"
        )
        return EnrichmentOutcome(
            snapshot.id,
            EnrichmentState.SUCCEEDED,
            analysis=analysis,
            snapshot=patched,
        )

    async def _analyze(self, snapshot: Snapshot, keyword_term: str, text: Optional[str]) -> Analysis:
        prompt = build_prompt(snapshot.domain, keyword_term, text or snapshot.captured_text)
        response = await asyncio.wait_for(
            self.engine.analyze(prompt, system=SYSTEM_PROMPT),
            timeout=self.timeout,
        )
        if not response.success:
            raise AnalysisError(f"engine error: {response.error}")

        analysis = parse_analysis(response.content, response.sources)
        if analysis is None:
            raise AnalysisError("no structured analysis in engine reply")
        return analysis

    def schedule(
        self,
        snapshot: Snapshot,
        keyword_term: str,
        force: bool = False,
    ) -> Optional[EnrichmentTask]:
        """
        Start enrichment in the background.

        A pending task for the same snapshot is returned as-is; a finished one
        is replaced (manual re-trigger). Must be called from a running loop.

        Returns:
            The task, or None for snapshots without an id
        """
        if snapshot.id is None:
            return None

        existing = self._tasks.get(snapshot.id)
        if existing is not None and not existing.done:
            return existing

        if not force and not self.should_enrich(snapshot):
            task = EnrichmentTask(
                snapshot.id,
                outcome=EnrichmentOutcome(snapshot.id, EnrichmentState.SKIPPED),
            )
            self._remember(task)
            return task

        coro = self.enrich(snapshot, keyword_term, force=force)
        job = asyncio.get_running_loop().create_task(coro)
        task = EnrichmentTask(snapshot.id, task=job)
        self._tasks[snapshot.id] = task
        job.add_done_callback(lambda _: self._remember(task))
        return task

    def _remember(self, task: EnrichmentTask):
        """Retire a finished task into the bounded outcome history."""
        if self._tasks.get(task.snapshot_id) is task:
            del self._tasks[task.snapshot_id]

        self._history[task.snapshot_id] = replace(task.outcome, snapshot=None)
        self._history.move_to_end(task.snapshot_id)
        while len(self._history) > self.history_size:
            self._history.popitem(last=False)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def status(self, snapshot_id: str) -> Optional[EnrichmentState]:
        task = self._tasks.get(snapshot_id)
        if task is not None:
            return task.state
        outcome = self._history.get(snapshot_id)
        return outcome.state if outcome else None

    async def wait(self, snapshot_id: str) -> Optional[EnrichmentOutcome]:
        task = self._tasks.get(snapshot_id)
        if task is None:
            return self._history.get(snapshot_id)
        return await task.wait()

    async def drain(self) -> List[EnrichmentOutcome]:
        """Wait for every pending task; returns their outcomes."""
        outcomes = [await task.wait() for task in list(self._tasks.values())]
        # Done callbacks run on the next loop turn
        await asyncio.sleep(0)
        return outcomes
