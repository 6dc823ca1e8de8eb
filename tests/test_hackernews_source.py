"""Tests for HackerNews discovery against a mocked Firebase API."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from hn_digest.config import DiscoveryConfig, RetryConfig
from hn_digest.core.errors import DiscoveryError
from hn_digest.pipeline.batch import BatchRunner
from hn_digest.sources.hackernews import HackerNewsSource, parse_story

STORIES = {
    1: {"id": 1, "type": "story", "title": "Show HN: A tiny database", "url": "https://a.dev", "score": 120, "by": "ann"},
    2: {"id": 2, "type": "job", "title": "Hiring engineers"},
    3: {"id": 3, "type": "story", "title": "Ask HN: How do you test?", "score": 40, "by": "bob"},
    4: {"id": 4, "type": "story", "title": "Removed", "dead": True},
    5: {"id": 5, "type": "story", "title": "Flaky detail", "url": "https://e.dev"},
}


async def _no_sleep(_delay: float) -> None:
    return None


def _source(handler) -> HackerNewsSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = BatchRunner(RetryConfig(local_attempts=2), sleep=_no_sleep)
    return HackerNewsSource(DiscoveryConfig(base_url="https://hn.test/v0"), runner, client=client)


def test_fetch_top_items_keeps_rank_order_and_filters_non_stories():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v0/topstories.json":
            return httpx.Response(200, json=[3, 1, 2, 4, 5, 6])
        story_id = int(path.rsplit("/", 1)[-1].split(".")[0])
        if story_id == 5:
            return httpx.Response(503)
        return httpx.Response(200, json=STORIES.get(story_id))

    items = asyncio.run(_source(handler).fetch_top_items(5))

    assert [item.external_id for item in items] == ["3", "1"]
    assert [item.rank for item in items] == [0, 1]
    ask = items[0]
    assert ask.url is None
    assert ask.author == "bob"
    assert items[1].score == 120


def test_fetch_top_items_raises_when_list_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    with pytest.raises(DiscoveryError) as excinfo:
        asyncio.run(_source(handler).fetch_top_items(10))

    assert excinfo.value.transient is True


def test_fetch_top_items_zero_limit_makes_no_requests():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert asyncio.run(_source(handler).fetch_top_items(0)) == []


@pytest.mark.parametrize(
    "data",
    [None, [], {"type": "comment", "id": 9, "title": "x"}, {"type": "story", "id": 9, "title": " "}],
)
def test_parse_story_rejects_invalid_payloads(data):
    assert parse_story(data, 0) is None
