"""
Core data types for the HackerNews digest pipeline.

This module defines the fundamental data structures used throughout the pipeline:
- Stage / Work: the item state machine and the unit of work that leaves each stage
- Item: one discovered article tracked through the pipeline
- DiscoveredItem / Summary: validated payloads produced by external capabilities
- Success / TransientFailure / PermanentFailure: typed stage outcomes
- Digest / ChannelDelivery: one assembled delivery unit and its per-channel state
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class Stage(str, Enum):
    """Pipeline state of an item.

    Stages advance in a fixed order; each non-terminal stage has a sideways
    ``*_FAILED`` variant that is terminal.
    """

    DISCOVERED = "discovered"
    CONTENT_FETCHED = "content_fetched"
    CONTENT_FAILED = "content_failed"
    SUMMARIZED = "summarized"
    SUMMARIZATION_FAILED = "summarization_failed"
    NOTIFIED = "notified"
    NOTIFICATION_FAILED = "notification_failed"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]

    @property
    def is_failed(self) -> bool:
        return self in _FAILED_STAGES

    @property
    def is_terminal(self) -> bool:
        return self.is_failed or self is Stage.NOTIFIED


_STAGE_ORDER = {
    Stage.DISCOVERED: 0,
    Stage.CONTENT_FAILED: 0,
    Stage.CONTENT_FETCHED: 1,
    Stage.SUMMARIZATION_FAILED: 1,
    Stage.SUMMARIZED: 2,
    Stage.NOTIFICATION_FAILED: 2,
    Stage.NOTIFIED: 3,
}

_FAILED_STAGES = {Stage.CONTENT_FAILED, Stage.SUMMARIZATION_FAILED, Stage.NOTIFICATION_FAILED}


class Work(str, Enum):
    """Unit of work that moves an item out of its input stage."""

    EXTRACTION = "extraction"
    SUMMARIZATION = "summarization"
    NOTIFICATION = "notification"

    @property
    def input_stage(self) -> Stage:
        return _WORK_STAGES[self][0]

    @property
    def success_stage(self) -> Stage:
        return _WORK_STAGES[self][1]

    @property
    def failed_stage(self) -> Stage:
        return _WORK_STAGES[self][2]

    @classmethod
    def for_stage(cls, stage: Stage) -> "Work":
        for work, stages in _WORK_STAGES.items():
            if stages[0] is stage:
                return work
        raise ValueError(f"No work leaves stage {stage.value}")


_WORK_STAGES = {
    Work.EXTRACTION: (Stage.DISCOVERED, Stage.CONTENT_FETCHED, Stage.CONTENT_FAILED),
    Work.SUMMARIZATION: (Stage.CONTENT_FETCHED, Stage.SUMMARIZED, Stage.SUMMARIZATION_FAILED),
    Work.NOTIFICATION: (Stage.SUMMARIZED, Stage.NOTIFIED, Stage.NOTIFICATION_FAILED),
}

ALLOWED_TRANSITIONS: frozenset[tuple[Stage, Stage]] = frozenset(
    (stages[0], target) for stages in _WORK_STAGES.values() for target in stages[1:]
)


def is_allowed_transition(from_stage: Stage, to_stage: Stage) -> bool:
    """Return True for a single forward step or a sideways move into failure."""
    return (from_stage, to_stage) in ALLOWED_TRANSITIONS


class TransitionResult(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class UpsertResult:
    id: str
    created: bool


@dataclass
class DiscoveredItem:
    """A ranked story returned by the discovery capability.

    Attributes:
        external_id: HackerNews story id (stringified)
        url: Article URL; None for text posts (Ask HN)
        title: Story title
        rank: Position in the top stories list (0 = top)
        score: HackerNews points at discovery time
        author: HackerNews username of the poster
    """

    external_id: str
    url: str | None
    title: str
    rank: int
    score: int = 0
    author: str | None = None


@dataclass
class Item:
    """Pipeline state record for one discovered article.

    Attributes:
        id: Stable external identifier (unique key)
        title: Story title
        url: Article URL, if any
        rank: Rank at discovery
        score: Score at discovery
        author: Poster username
        stage: Current pipeline stage
        attempts: Failed attempts per unit of work; only ever grows
        content_ref: Blob ref of the extracted text
        summary_ref: Blob ref of the generated summary
        digest_id: Digest the item is attached to
        last_error: Last recorded failure message
        discovered_at: When the item was first discovered
        updated_at: Last state change; drives oldest-first selection
    """

    id: str
    title: str
    url: str | None
    stage: Stage
    discovered_at: datetime
    updated_at: datetime
    rank: int = 0
    score: int = 0
    author: str | None = None
    attempts: dict[Work, int] = field(default_factory=dict)
    content_ref: str | None = None
    summary_ref: str | None = None
    digest_id: str | None = None
    last_error: str | None = None

    def attempts_for(self, work: Work) -> int:
        return self.attempts.get(work, 0)

    @property
    def discussion_url(self) -> str:
        return f"https://news.ycombinator.com/item?id={self.id}"


@dataclass
class Summary:
    """LLM-generated summary of one article.

    Attributes:
        summary: Main summary text
        short_summary: One or two sentence version
        key_points: Key points extracted from the article
        topics: Topics identified in the article (first one drives topic grouping)
        model: Model that produced the summary
        input_tokens: Prompt tokens reported by the provider
        output_tokens: Response tokens reported by the provider
        generated_at: ISO 8601 generation timestamp
        status: "ok", or "parse_error" when the response was not structured
    """

    summary: str
    short_summary: str = ""
    key_points: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    generated_at: str = ""
    status: str = "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "short_summary": self.short_summary,
            "key_points": list(self.key_points),
            "topics": list(self.topics),
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "generated_at": self.generated_at,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        return cls(
            summary=str(data.get("summary", "")),
            short_summary=str(data.get("short_summary", "")),
            key_points=[str(p) for p in data.get("key_points") or []],
            topics=[str(t) for t in data.get("topics") or []],
            model=str(data.get("model", "")),
            input_tokens=int(data.get("input_tokens", 0) or 0),
            output_tokens=int(data.get("output_tokens", 0) or 0),
            generated_at=str(data.get("generated_at", "")),
            status=str(data.get("status", "ok")),
        )


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class TransientFailure:
    error: str


@dataclass(frozen=True)
class PermanentFailure:
    error: str


StageOutcome = Union[Success[Any], TransientFailure, PermanentFailure]


class DigestStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class ChannelDelivery:
    """Delivery state of one digest on one channel."""

    channel: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    delivered_at: datetime | None = None


@dataclass
class Digest:
    """One assembled delivery unit.

    Attributes:
        id: Deterministic id, also used as the channel-side dedup key
        item_ids: Ordered ids of the items in this digest
        grouping: Grouping strategy used for rendering
        format: Output format of the rendered body
        status: Aggregate delivery status
        body_ref: Blob ref of the rendered body; immutable once set
        deliveries: Per-channel delivery state keyed by channel name
    """

    id: str
    item_ids: list[str]
    grouping: str
    format: str
    status: DigestStatus
    created_at: datetime
    updated_at: datetime
    body_ref: str | None = None
    deliveries: dict[str, ChannelDelivery] = field(default_factory=dict)

    @property
    def open_channels(self) -> list[str]:
        return [
            name
            for name, delivery in self.deliveries.items()
            if delivery.status is DeliveryStatus.PENDING
        ]

    def settled_status(self) -> DigestStatus:
        """Aggregate status from the per-channel deliveries."""
        statuses = [d.status for d in self.deliveries.values()]
        delivered = statuses.count(DeliveryStatus.DELIVERED)
        pending = statuses.count(DeliveryStatus.PENDING)
        if statuses and delivered == len(statuses):
            return DigestStatus.DELIVERED
        if delivered:
            return DigestStatus.PARTIALLY_DELIVERED
        if pending:
            return DigestStatus.PENDING
        return DigestStatus.FAILED

    @property
    def is_settled(self) -> bool:
        return not self.open_channels


@dataclass
class DigestEntry:
    """An item paired with its summary, ready for grouping and rendering."""

    item: Item
    summary: Summary


@dataclass
class DigestGroup:
    name: str
    entries: list[DigestEntry] = field(default_factory=list)
