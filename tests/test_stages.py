"""Tests for stage executors turning capability results into outcomes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from hn_digest.core.errors import DeliveryError, ExtractionError
from hn_digest.core.types import (
    Digest,
    DigestStatus,
    Item,
    PermanentFailure,
    Stage,
    Success,
    Summary,
    TransientFailure,
)
from hn_digest.pipeline.stages import DeliveryExecutor, ExtractionExecutor, SummarizationExecutor
from hn_digest.storage.blob_store import CONTENT

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _item(**overrides) -> Item:
    data = {
        "id": "1",
        "title": "T",
        "url": "https://a.com",
        "stage": Stage.DISCOVERED,
        "discovered_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return Item(**data)


class _Extractor:
    def __init__(self, error=None):
        self.error = error

    async def extract(self, url):
        if self.error:
            raise self.error
        return "text"


class _Summarizer:
    def __init__(self):
        self.seen = None

    async def summarize(self, title, text, max_tokens, url=None):
        self.seen = (title, text, max_tokens, url)
        return Summary(summary="s")


def test_extraction_outcomes():
    ok = asyncio.run(ExtractionExecutor(_Extractor()).execute(_item()))
    transient = asyncio.run(
        ExtractionExecutor(_Extractor(ExtractionError("timeout"))).execute(_item())
    )
    permanent = asyncio.run(
        ExtractionExecutor(_Extractor(ExtractionError("404", transient=False))).execute(_item())
    )
    no_url = asyncio.run(ExtractionExecutor(_Extractor()).execute(_item(url=None)))

    assert ok == Success("text")
    assert transient == TransientFailure("timeout")
    assert permanent == PermanentFailure("404")
    assert isinstance(no_url, PermanentFailure)


def test_unexpected_errors_propagate_to_the_runner():
    executor = ExtractionExecutor(_Extractor(RuntimeError("bug")))

    with pytest.raises(RuntimeError, match="bug"):
        asyncio.run(executor.execute(_item()))


def test_summarization_reads_content_blob(blobs):
    ref = blobs.put_text(CONTENT, "1", "article body")
    summarizer = _Summarizer()
    executor = SummarizationExecutor(summarizer, blobs, max_tokens=64)

    outcome = asyncio.run(executor.execute(_item(stage=Stage.CONTENT_FETCHED, content_ref=ref)))

    assert outcome == Success(Summary(summary="s"))
    assert summarizer.seen == ("T", "article body", 64, "https://a.com")


def test_summarization_without_content_is_permanent(blobs):
    executor = SummarizationExecutor(_Summarizer(), blobs, max_tokens=64)

    missing_ref = asyncio.run(executor.execute(_item(content_ref=None)))
    missing_blob = asyncio.run(executor.execute(_item(content_ref="content/1/gone.txt")))

    assert isinstance(missing_ref, PermanentFailure)
    assert isinstance(missing_blob, PermanentFailure)


def test_delivery_executor_handles_unknown_and_failing_channels():
    class _Channel:
        name = "discord"

        async def deliver(self, digest, body):
            raise DeliveryError("429", transient=True)

    digest = Digest(
        id="d", item_ids=[], grouping="topic", format="markdown",
        status=DigestStatus.PENDING, created_at=NOW, updated_at=NOW,
    )
    executor = DeliveryExecutor({"discord": _Channel()}, digest, "body")

    assert asyncio.run(executor.execute("discord")) == TransientFailure("429")
    assert isinstance(asyncio.run(executor.execute("telegram")), PermanentFailure)
