"""
HackerNews discovery through the public Firebase API.

``fetch_top_items`` reads the ranked ``topstories.json`` list and fans the
per-story detail requests out through the batch runner. Payloads are
validated into ``DiscoveredItem`` here; jobs, polls, dead and deleted
entries never reach the pipeline.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import DiscoveryConfig
from ..core.errors import DiscoveryError, classify_http_error, describe_error
from ..core.types import DiscoveredItem, PermanentFailure, StageOutcome, Success, TransientFailure
from ..pipeline.batch import BatchRunner
from ..utils.logging import log_event

logger = logging.getLogger("hn_digest.sources.hackernews")


class HackerNewsSource:
    """Discovery capability backed by the HackerNews Firebase API.

    Args:
        cfg: Base URL, timeout and detail-request concurrency
        runner: Batch runner used for the per-story fan-out
        client: Optional shared client; one is created lazily otherwise
    """

    def __init__(
        self,
        cfg: DiscoveryConfig,
        runner: BatchRunner,
        client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.runner = runner
        self._client = client
        self._owns_client = client is None

    async def fetch_top_items(self, limit: int) -> list[DiscoveredItem]:
        """Return up to ``limit`` top stories in rank order.

        Raises:
            DiscoveryError: If the ranked id list cannot be read. Individual
                story failures are logged and the story is skipped.
        """
        if limit <= 0:
            return []
        ids = await self.fetch_top_ids(limit)
        ranked = list(enumerate(ids))
        result = await self.runner.run(
            ranked,
            concurrency=self.cfg.concurrency,
            operation=self._fetch_story_outcome,
            key=lambda pair: str(pair[1]),
            name="discovery",
        )
        items: list[DiscoveredItem] = []
        for story_id, outcome in result.outcomes.items():
            if not outcome.ok:
                log_event(
                    logger,
                    "Story detail fetch failed",
                    level=logging.WARNING,
                    event="discovery_item_failed",
                    item_id=story_id,
                    error=outcome.outcome.error,
                )
                continue
            if outcome.outcome.value is not None:
                items.append(outcome.outcome.value)
        items.sort(key=lambda item: item.rank)
        return items

    async def fetch_top_ids(self, limit: int) -> list[int]:
        data = await self._get_json("topstories.json")
        if not isinstance(data, list):
            raise DiscoveryError("Unexpected top stories payload", transient=True)
        return [int(story_id) for story_id in data[:limit]]

    async def fetch_story(self, story_id: int, rank: int) -> DiscoveredItem | None:
        """Fetch one story; returns None for entries that are not live stories."""
        data = await self._get_json(f"item/{story_id}.json")
        return parse_story(data, rank)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch_story_outcome(self, pair: tuple[int, int]) -> StageOutcome:
        rank, story_id = pair
        try:
            return Success(await self.fetch_story(story_id, rank))
        except DiscoveryError as exc:
            if exc.transient:
                return TransientFailure(str(exc))
            return PermanentFailure(str(exc))

    async def _get_json(self, path: str) -> Any:
        url = f"{self.cfg.base_url.rstrip('/')}/{path}"
        try:
            resp = await self._get_client().get(url)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise DiscoveryError(
                f"HackerNews request failed: {describe_error(exc)}",
                transient=classify_http_error(exc),
            ) from exc
        except ValueError as exc:
            raise DiscoveryError(f"Invalid JSON from {url}", transient=True) from exc

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.cfg.timeout_seconds)
        return self._client


def parse_story(data: Any, rank: int) -> DiscoveredItem | None:
    if not isinstance(data, dict):
        return None
    if data.get("type") != "story" or data.get("dead") or data.get("deleted"):
        return None
    title = str(data.get("title") or "").strip()
    if not title or data.get("id") is None:
        return None
    return DiscoveredItem(
        external_id=str(data["id"]),
        url=data.get("url") or None,
        title=title,
        rank=rank,
        score=int(data.get("score") or 0),
        author=data.get("by"),
    )
