"""
Tick orchestration for the HackerNews digest pipeline.

One tick runs the stages in a fixed order:
1. Discover top stories and upsert them
2. Extract content for discovered items
3. Summarize items extracted by an earlier tick
4. Assemble a digest and deliver open digests

Every stage reads its work from the item store, runs it through the batch
runner and persists results with compare-and-swap transitions. Nothing is
kept in memory between ticks, so overlapping or restarted ticks only ever
lose CAS races; they never duplicate or drop work.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable

from ..config import AppConfig, StageConfig
from ..core.types import Item, TransitionResult, Work
from ..digest.assembler import DeliveryReport, DigestAssembler
from ..storage.blob_store import CONTENT, SUMMARY, BlobStore
from ..storage.item_store import ItemStore
from ..utils.logging import log_event
from ..utils.tracing import record_report, stage_span, tick_span
from .batch import BatchRunner, ItemOutcome
from .stages import (
    ContentCapability,
    DiscoveryExecutor,
    DiscoverySource,
    ExtractionExecutor,
    StageExecutor,
    SummarizationExecutor,
    SummaryCapability,
)

logger = logging.getLogger("hn_digest.orchestrator")


@dataclass
class StageReport:
    """Counts for one stage batch.

    Attributes:
        selected: Eligible items picked for this batch
        succeeded: Items moved to the success stage
        failed: Items moved to the failed stage (permanent or exhausted)
        exhausted: Subset of ``failed`` that ran out of retry budget
        deferred: Items left in place for a later tick after transient failures
        conflicts: CAS writes lost to a concurrent tick
        skipped: The stage did not run because the tick budget was spent
    """

    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0
    deferred: int = 0
    conflicts: int = 0
    skipped: bool = False


@dataclass
class TickReport:
    started_at: datetime
    duration_seconds: float = 0.0
    discovered: int = 0
    new_items: int = 0
    discovery_error: str | None = None
    stages: dict[str, StageReport] = field(default_factory=dict)
    digest_created: str | None = None
    delivery: DeliveryReport = field(default_factory=DeliveryReport)
    budget_exhausted: bool = False

    @property
    def conflicts(self) -> int:
        return sum(stage.conflicts for stage in self.stages.values()) + self.delivery.conflicts

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


class Orchestrator:
    """Runs pipeline ticks against the durable store.

    Args:
        store: Item store; the only shared mutable state
        blobs: Blob store for content and summaries
        source: Discovery capability
        extractor: Content capability
        summarizer: Summarization capability
        assembler: Digest assembly and delivery
        cfg: Application configuration (stage sizes, retry, budget)
        runner: Batch runner; one is built from ``cfg.retry`` if omitted
        clock: Monotonic clock used for the tick budget
    """

    def __init__(
        self,
        store: ItemStore,
        blobs: BlobStore,
        source: DiscoverySource,
        extractor: ContentCapability,
        summarizer: SummaryCapability,
        assembler: DigestAssembler,
        cfg: AppConfig,
        runner: BatchRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.blobs = blobs
        self.source = source
        self.assembler = assembler
        self.cfg = cfg
        self.runner = runner or BatchRunner(cfg.retry)
        self.clock = clock
        self._executors: dict[Work, StageExecutor] = {
            Work.EXTRACTION: ExtractionExecutor(extractor),
            Work.SUMMARIZATION: SummarizationExecutor(
                summarizer, blobs, cfg.summary.max_tokens
            ),
        }
        self._stage_cfgs: dict[Work, StageConfig] = {
            Work.EXTRACTION: cfg.extraction,
            Work.SUMMARIZATION: cfg.summarization,
        }

    async def run_tick(self) -> TickReport:
        """Run one pass over all stages.

        Raises:
            SystemicError: If the store is unavailable; the tick is abandoned
        """
        started = self.clock()
        # Items that moved after this point are left for the next tick.
        cutoff = self.store.clock()
        report = TickReport(started_at=datetime.now(timezone.utc))
        with tick_span() as span:
            log_event(logger, "Tick start", event="tick_start")

            await self._discover(report)
            for work in (Work.EXTRACTION, Work.SUMMARIZATION):
                if self._over_budget(started):
                    report.budget_exhausted = True
                    report.stages[work.value] = StageReport(skipped=True)
                    continue
                report.stages[work.value] = await self.run_stage(
                    work, updated_before=None if work is Work.EXTRACTION else cutoff
                )

            if self._over_budget(started):
                report.budget_exhausted = True
            else:
                digest = self.assembler.assemble()
                report.digest_created = digest.id if digest else None
                report.delivery = await self.assembler.deliver_open()

            report.duration_seconds = round(self.clock() - started, 3)
            record_report(span, report)
            log_event(
                logger,
                "Tick complete",
                event="tick_complete",
                duration_seconds=report.duration_seconds,
                discovered=report.discovered,
                new_items=report.new_items,
                stages={name: asdict(stage) for name, stage in report.stages.items()},
                digest_created=report.digest_created,
                delivered=report.delivery.delivered,
                conflicts=report.conflicts,
                budget_exhausted=report.budget_exhausted,
            )
        return report

    async def _discover(self, report: TickReport) -> None:
        limit = self.cfg.discovery.max_items_per_fetch
        if limit <= 0:
            return
        executor = DiscoveryExecutor(self.source)
        with stage_span("discovery", limit=limit):
            result = await self.runner.run(
                [limit], concurrency=1, operation=executor.execute, name="discovery"
            )
        outcome = result.outcomes[str(limit)]
        if not outcome.ok:
            report.discovery_error = outcome.outcome.error
            log_event(
                logger,
                "Discovery failed; continuing with stored items",
                level=logging.WARNING,
                event="discovery_failed",
                error=outcome.outcome.error,
            )
            return
        for discovered in outcome.outcome.value:
            report.discovered += 1
            if self.store.upsert_discovered(discovered).created:
                report.new_items += 1
        log_event(
            logger,
            "Discovery complete",
            event="discovery_complete",
            discovered=report.discovered,
            new_items=report.new_items,
        )

    async def run_stage(self, work: Work, updated_before: datetime | None = None) -> StageReport:
        """Select eligible items for ``work``, run them and persist the outcomes.

        Args:
            work: Stage work to run
            updated_before: Skip items updated at or after this time
        """
        stage_cfg = self._stage_cfgs[work]
        report = StageReport()
        items = self.store.list_eligible(
            work.input_stage, stage_cfg.batch_size, updated_before=updated_before
        )
        report.selected = len(items)
        if not items:
            return report

        max_attempts = self.cfg.retry.max_retry_attempts
        local_attempts = self.cfg.retry.local_attempts
        with stage_span(work.value, [item.id for item in items]) as span:
            result = await self.runner.run(
                items,
                concurrency=stage_cfg.concurrency,
                operation=self._executors[work].execute,
                key=lambda item: item.id,
                budget=lambda item: min(local_attempts, max_attempts - item.attempts_for(work)),
                name=work.value,
            )
            for item in items:
                self._persist(work, item, result.outcomes[item.id], report)
            record_report(span, report)

        log_event(
            logger,
            "Stage complete",
            event="stage_complete",
            stage=work.value,
            **asdict(report),
        )
        return report

    def _persist(self, work: Work, item: Item, outcome: ItemOutcome[Item], report: StageReport) -> None:
        if outcome.ok:
            refs = self._store_result(work, item, outcome.outcome.value)
            result = self.store.transition(
                item.id,
                work.input_stage,
                work.success_stage,
                add_attempts=outcome.failures,
                **refs,
            )
            if result is TransitionResult.CONFLICT:
                self._log_conflict(work, item, report)
            else:
                report.succeeded += 1
            return

        error = outcome.outcome.error
        attempts = item.attempts_for(work)
        if outcome.failures:
            recorded = self.store.record_failure(item.id, work.input_stage, error, outcome.failures)
            if recorded is None:
                self._log_conflict(work, item, report)
                return
            attempts = recorded

        exhausted = attempts >= self.cfg.retry.max_retry_attempts
        if not (outcome.permanent or exhausted):
            report.deferred += 1
            log_event(
                logger,
                "Transient failure; will retry next tick",
                event="stage_retry_deferred",
                stage=work.value,
                item_id=item.id,
                attempts=attempts,
                error=error,
            )
            return

        result = self.store.transition(item.id, work.input_stage, work.failed_stage, error=error)
        if result is TransitionResult.CONFLICT:
            self._log_conflict(work, item, report)
            return
        report.failed += 1
        if outcome.permanent:
            log_event(
                logger,
                "Permanent failure",
                level=logging.WARNING,
                event="stage_failed",
                stage=work.value,
                item_id=item.id,
                error=error,
            )
        else:
            report.exhausted += 1
            log_event(
                logger,
                "Retry budget exhausted",
                level=logging.WARNING,
                event="retry_budget_exhausted",
                stage=work.value,
                item_id=item.id,
                attempts=attempts,
                error=error,
            )

    def _store_result(self, work: Work, item: Item, value: Any) -> dict[str, str]:
        if work is Work.EXTRACTION:
            return {"content_ref": self.blobs.put_text(CONTENT, item.id, value)}
        return {"summary_ref": self.blobs.put_json(SUMMARY, item.id, value.to_dict())}

    def _log_conflict(self, work: Work, item: Item, report: StageReport) -> None:
        report.conflicts += 1
        log_event(
            logger,
            "Item already handled by another tick",
            event="transition_conflict",
            stage=work.value,
            item_id=item.id,
        )

    def _over_budget(self, started: float) -> bool:
        budget = self.cfg.scheduler.tick_budget_seconds
        if budget is None:
            return False
        return self.clock() - started >= budget

