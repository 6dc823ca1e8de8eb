"""
Stage executors: adapters from external capabilities to typed outcomes.

Each executor wraps one capability, runs it for a single subject and turns
its result into ``Success`` or its ``StageError`` into a transient or
permanent failure. Executors never touch the item store; persisting the
result is the orchestrator's job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, Protocol, TypeVar

from ..core.errors import StageError
from ..core.types import (
    Digest,
    DiscoveredItem,
    Item,
    PermanentFailure,
    StageOutcome,
    Success,
    Summary,
    TransientFailure,
)
from ..storage.blob_store import BlobStore

S = TypeVar("S")


class DiscoverySource(Protocol):
    async def fetch_top_items(self, limit: int) -> list[DiscoveredItem]: ...


class ContentCapability(Protocol):
    async def extract(self, url: str) -> str: ...


class SummaryCapability(Protocol):
    async def summarize(
        self, title: str, text: str, max_tokens: int, url: str | None = None
    ) -> Summary: ...


class DeliveryCapability(Protocol):
    name: str

    async def deliver(self, digest: Digest, body: str) -> None: ...


def outcome_from_error(exc: StageError) -> StageOutcome:
    if exc.transient:
        return TransientFailure(str(exc))
    return PermanentFailure(str(exc))


class StageExecutor(ABC, Generic[S]):
    async def execute(self, subject: S) -> StageOutcome:
        try:
            return Success(await self.run(subject))
        except StageError as exc:
            return outcome_from_error(exc)

    @abstractmethod
    async def run(self, subject: S) -> Any:
        raise NotImplementedError


class DiscoveryExecutor(StageExecutor[int]):
    """Subject is the number of top stories to read."""

    def __init__(self, source: DiscoverySource):
        self.source = source

    async def run(self, subject: int) -> list[DiscoveredItem]:
        return await self.source.fetch_top_items(subject)


class ExtractionExecutor(StageExecutor[Item]):
    def __init__(self, extractor: ContentCapability):
        self.extractor = extractor

    async def execute(self, subject: Item) -> StageOutcome:
        if not subject.url:
            return PermanentFailure("Item has no article URL")
        return await super().execute(subject)

    async def run(self, subject: Item) -> str:
        return await self.extractor.extract(subject.url)


class SummarizationExecutor(StageExecutor[Item]):
    def __init__(self, summarizer: SummaryCapability, blobs: BlobStore, max_tokens: int):
        self.summarizer = summarizer
        self.blobs = blobs
        self.max_tokens = max_tokens

    async def execute(self, subject: Item) -> StageOutcome:
        if not subject.content_ref:
            return PermanentFailure("Item has no extracted content")
        if not self.blobs.exists(subject.content_ref):
            return PermanentFailure(f"Content blob missing: {subject.content_ref}")
        return await super().execute(subject)

    async def run(self, subject: Item) -> Summary:
        text = self.blobs.get_text(subject.content_ref)
        return await self.summarizer.summarize(subject.title, text, self.max_tokens, url=subject.url)


class DeliveryExecutor(StageExecutor[str]):
    """Subject is a channel name; delivers one digest body to that channel."""

    def __init__(self, channels: dict[str, DeliveryCapability], digest: Digest, body: str):
        self.channels = channels
        self.digest = digest
        self.body = body

    async def execute(self, subject: str) -> StageOutcome:
        if subject not in self.channels:
            return PermanentFailure(f"Channel {subject} is not configured")
        return await super().execute(subject)

    async def run(self, subject: str) -> None:
        await self.channels[subject].deliver(self.digest, self.body)
