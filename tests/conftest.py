"""Shared fixtures: a deterministic store clock and helpers to seed items."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hn_digest.core.types import DiscoveredItem, Stage, Summary
from hn_digest.storage.blob_store import CONTENT, SUMMARY, BlobStore
from hn_digest.storage.item_store import ItemStore


class StepClock:
    """Returns a strictly increasing UTC time on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(tmp_path, clock):
    item_store = ItemStore(tmp_path / "state.db", max_retry_attempts=5, clock=clock)
    yield item_store
    item_store.close()


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "blobs")


def make_discovered(index: int, **overrides) -> DiscoveredItem:
    data = {
        "external_id": str(1000 + index),
        "url": f"https://example{index}.com/post",
        "title": f"Story {index}",
        "rank": index,
        "score": 100 - index,
        "author": f"user{index}",
    }
    data.update(overrides)
    return DiscoveredItem(**data)


def seed_summarized(store: ItemStore, blobs: BlobStore, count: int, start: int = 0) -> list[str]:
    """Insert ``count`` items and walk them to SUMMARIZED; returns ids in insertion order."""
    ids = []
    for index in range(start, start + count):
        discovered = make_discovered(index)
        store.upsert_discovered(discovered)
        content_ref = blobs.put_text(CONTENT, discovered.external_id, f"Body of story {index}")
        store.transition(
            discovered.external_id,
            Stage.DISCOVERED,
            Stage.CONTENT_FETCHED,
            content_ref=content_ref,
        )
        summary = Summary(
            summary=f"Summary {index}.",
            short_summary=f"Short {index}.",
            key_points=[f"Point {index}"],
            topics=["Databases" if index % 2 else "Security"],
        )
        summary_ref = blobs.put_json(SUMMARY, discovered.external_id, summary.to_dict())
        store.transition(
            discovered.external_id,
            Stage.CONTENT_FETCHED,
            Stage.SUMMARIZED,
            summary_ref=summary_ref,
        )
        ids.append(discovered.external_id)
    return ids
