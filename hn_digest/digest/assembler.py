"""
Digest assembly and per-channel delivery.

Assembly claims the oldest unattached summarized items once at least
``min_stories`` are waiting, renders them once and stores the body as an
immutable blob. Delivery fans the body out to every channel that is still
pending, one work unit per channel, so an outage on one channel never blocks
another. A digest whose channels have all settled moves its items to
``notified`` (at least one delivery) or ``notification_failed`` (none).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Sequence

from ..config import DigestConfig, RetryConfig, StageConfig
from ..core.types import (
    DeliveryStatus,
    Digest,
    DigestEntry,
    DigestStatus,
    Stage,
    Summary,
    TransitionResult,
)
from ..notify.base import FORMAT_EXTENSIONS
from ..output.renderer import render_digest
from ..pipeline.batch import BatchRunner, ItemOutcome
from ..pipeline.stages import DeliveryCapability, DeliveryExecutor
from ..storage.blob_store import DIGEST, BlobStore
from ..storage.item_store import ItemStore
from ..utils.logging import log_event
from ..utils.tracing import delivery_span, record_report
from .grouping import get_grouping

logger = logging.getLogger("hn_digest.digest")


@dataclass
class DeliveryReport:
    """What happened to open digests during one delivery pass."""

    attempted: int = 0
    delivered: list[str] = field(default_factory=list)
    partially_delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    conflicts: int = 0


class DigestAssembler:
    """Builds digests from summarized items and delivers them to channels.

    Args:
        store: Item store holding items, digests and delivery state
        blobs: Blob store for summaries and rendered bodies
        channels: Enabled notification channels
        cfg: Digest size, grouping and format
        notification: Concurrency for channel fan-out; ``batch_size`` caps
            how many open digests are delivered per pass
        retry: Retry budget shared with the item stages
        runner: Batch runner used for channel fan-out
        lease_seconds: How long a tick holds a channel delivery before another
            tick may retry it
    """

    def __init__(
        self,
        store: ItemStore,
        blobs: BlobStore,
        channels: Sequence[DeliveryCapability],
        cfg: DigestConfig,
        notification: StageConfig,
        retry: RetryConfig,
        runner: BatchRunner,
        lease_seconds: float = 600.0,
    ):
        self.store = store
        self.blobs = blobs
        self.channels = {channel.name: channel for channel in channels}
        self.cfg = cfg
        self.notification = notification
        self.retry = retry
        self.runner = runner
        self.lease_seconds = lease_seconds
        get_grouping(cfg.grouping)

    def assemble(self) -> Digest | None:
        """Claim a new digest if enough summarized items are waiting.

        Returns:
            The new digest with its body rendered, or None
        """
        if not self.channels:
            log_event(
                logger,
                "No notification channels enabled; summarized items stay unclaimed",
                level=logging.WARNING,
                event="digest_no_channels",
            )
            return None
        digest = self.store.claim_digest(
            min_items=self.cfg.min_stories,
            max_items=self.cfg.max_stories,
            grouping=self.cfg.grouping,
            fmt=self.cfg.format,
            channels=sorted(self.channels),
        )
        if digest is None:
            return None
        log_event(
            logger,
            "Digest assembled",
            event="digest_assembled",
            digest_id=digest.id,
            items=len(digest.item_ids),
            grouping=digest.grouping,
            format=digest.format,
        )
        self.ensure_body(digest)
        return self.store.get_digest(digest.id)

    def ensure_body(self, digest: Digest) -> str:
        """Return the digest body, rendering and storing it on first use."""
        if digest.body_ref:
            return self.blobs.get_text(digest.body_ref)
        body = self.render(digest)
        ext = FORMAT_EXTENSIONS.get(digest.format, "txt")
        ref = self.blobs.put_text(DIGEST, digest.id, body, ext=ext)
        if self.store.set_digest_body(digest.id, ref) is TransitionResult.CONFLICT:
            # Another tick stored a body first; that one is authoritative.
            current = self.store.get_digest(digest.id)
            if current is not None and current.body_ref:
                return self.blobs.get_text(current.body_ref)
        return body

    def render(self, digest: Digest) -> str:
        entries = self.load_entries(digest)
        grouping = get_grouping(digest.grouping)
        return render_digest(
            grouping.group(entries),
            digest.format,
            title=self.cfg.title,
            digest_id=digest.id,
            created_at=digest.created_at,
            include_links=self.cfg.include_links,
        )

    def load_entries(self, digest: Digest) -> list[DigestEntry]:
        entries: list[DigestEntry] = []
        for item_id in digest.item_ids:
            item = self.store.get(item_id)
            if item is None or not item.summary_ref:
                log_event(
                    logger,
                    "Digest item missing summary",
                    level=logging.WARNING,
                    event="digest_item_missing",
                    digest_id=digest.id,
                    item_id=item_id,
                )
                continue
            summary = Summary.from_dict(self.blobs.get_json(item.summary_ref))
            entries.append(DigestEntry(item=item, summary=summary))
        return entries

    async def deliver_open(self) -> DeliveryReport:
        """Deliver every open digest to its pending channels and settle it."""
        report = DeliveryReport()
        for digest in self.store.list_open_digests(self.notification.batch_size):
            report.attempted += 1
            await self.deliver(digest, report)
        return report

    async def deliver(self, digest: Digest, report: DeliveryReport) -> None:
        pending = [
            channel
            for channel in digest.open_channels
            if self.store.lease_delivery(digest.id, channel, self.lease_seconds)
        ]
        if pending:
            body = self.ensure_body(digest)
            executor = DeliveryExecutor(self.channels, digest, body)
            with delivery_span(digest.id, pending) as span:
                result = await self.runner.run(
                    pending,
                    concurrency=self.notification.concurrency,
                    operation=executor.execute,
                    key=str,
                    budget=lambda name: min(
                        self.retry.local_attempts,
                        self.retry.max_retry_attempts - digest.deliveries[name].attempts,
                    ),
                    name="notification",
                )
                for channel, outcome in result.outcomes.items():
                    self._persist_delivery(digest, channel, outcome, report)
                record_report(span, report)

        current = self.store.get_digest(digest.id)
        if current is not None:
            self._settle(current, report)

    def _persist_delivery(
        self,
        digest: Digest,
        channel: str,
        outcome: ItemOutcome[str],
        report: DeliveryReport,
    ) -> None:
        if outcome.ok:
            if self.store.mark_delivered(digest.id, channel) is TransitionResult.CONFLICT:
                report.conflicts += 1
                log_event(
                    logger,
                    "Delivery already handled",
                    event="delivery_conflict",
                    digest_id=digest.id,
                    channel=channel,
                )
                return
            log_event(
                logger,
                "Digest delivered",
                event="digest_channel_delivered",
                digest_id=digest.id,
                channel=channel,
            )
            return

        status = self.store.record_delivery_failure(
            digest.id,
            channel,
            outcome.outcome.error,
            count=max(outcome.failures, 1),
            permanent=outcome.permanent,
        )
        if status is None:
            report.conflicts += 1
            return
        if status is DeliveryStatus.FAILED:
            log_event(
                logger,
                "Channel delivery failed permanently",
                level=logging.WARNING,
                event="retry_budget_exhausted" if not outcome.permanent else "delivery_failed",
                digest_id=digest.id,
                channel=channel,
                error=outcome.outcome.error,
            )
        else:
            log_event(
                logger,
                "Channel delivery deferred",
                event="delivery_retry_deferred",
                digest_id=digest.id,
                channel=channel,
                error=outcome.outcome.error,
            )

    def _settle(self, digest: Digest, report: DeliveryReport) -> None:
        status = digest.settled_status()
        if not digest.is_settled:
            if status is not digest.status:
                self.store.set_digest_status(digest.id, status)
            report.pending.append(digest.id)
            return

        target = Stage.NOTIFIED if status is not DigestStatus.FAILED else Stage.NOTIFICATION_FAILED
        error = None
        if target is Stage.NOTIFICATION_FAILED:
            error = "; ".join(
                f"{name}: {d.last_error}" for name, d in digest.deliveries.items() if d.last_error
            ) or "All channels failed"
        for item_id in digest.item_ids:
            result = self.store.transition(item_id, Stage.SUMMARIZED, target, error=error)
            if result is TransitionResult.CONFLICT:
                report.conflicts += 1
        self.store.set_digest_status(digest.id, status)

        if status is DigestStatus.DELIVERED:
            report.delivered.append(digest.id)
        elif status is DigestStatus.PARTIALLY_DELIVERED:
            report.partially_delivered.append(digest.id)
        else:
            report.failed.append(digest.id)
        log_event(
            logger,
            "Digest settled",
            level=logging.INFO if status is not DigestStatus.FAILED else logging.WARNING,
            event="digest_settled",
            digest_id=digest.id,
            status=status.value,
            items=len(digest.item_ids),
        )
