"""
Grouping strategies for digest rendering.

A strategy turns the ordered entries of a digest into named groups. Strategies
are registered by name so configuration can pick one without code changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from urllib.parse import urlparse

from ..core.errors import ConfigError
from ..core.types import DigestEntry, DigestGroup

OTHER_GROUP = "Other"


class GroupingStrategy(ABC):
    name: str = "base"

    @abstractmethod
    def group(self, entries: list[DigestEntry]) -> list[DigestGroup]:
        raise NotImplementedError


class _KeyedGrouping(GroupingStrategy):
    """Groups by a key; larger groups first, ties alphabetically, ``Other`` last."""

    def key(self, entry: DigestEntry) -> str:
        raise NotImplementedError

    def group(self, entries: list[DigestEntry]) -> list[DigestGroup]:
        grouped: dict[str, list[DigestEntry]] = defaultdict(list)
        for entry in entries:
            grouped[self.key(entry) or OTHER_GROUP].append(entry)
        ordered = sorted(
            grouped.items(),
            key=lambda item: (item[0] == OTHER_GROUP, -len(item[1]), item[0].lower()),
        )
        return [DigestGroup(name=name, entries=items) for name, items in ordered]


class TopicGrouping(_KeyedGrouping):
    name = "topic"

    def key(self, entry: DigestEntry) -> str:
        topics = [t.strip() for t in entry.summary.topics if t.strip()]
        return topics[0].title() if topics else OTHER_GROUP


class SiteGrouping(_KeyedGrouping):
    name = "site"

    def key(self, entry: DigestEntry) -> str:
        return site_of(entry.item.url) or "news.ycombinator.com"


class DateGrouping(GroupingStrategy):
    """Groups by discovery day, newest day first."""

    name = "date"

    def group(self, entries: list[DigestEntry]) -> list[DigestGroup]:
        grouped: dict[str, list[DigestEntry]] = defaultdict(list)
        for entry in entries:
            grouped[entry.item.discovered_at.strftime("%Y-%m-%d")].append(entry)
        return [
            DigestGroup(name=day, entries=grouped[day])
            for day in sorted(grouped, reverse=True)
        ]


class ScoreGrouping(GroupingStrategy):
    """Single group ranked by HackerNews score."""

    name = "score"

    def group(self, entries: list[DigestEntry]) -> list[DigestGroup]:
        if not entries:
            return []
        ranked = sorted(entries, key=lambda entry: (-entry.item.score, entry.item.rank))
        return [DigestGroup(name="Top stories", entries=ranked)]


_STRATEGIES: dict[str, type[GroupingStrategy]] = {
    TopicGrouping.name: TopicGrouping,
    SiteGrouping.name: SiteGrouping,
    DateGrouping.name: DateGrouping,
    ScoreGrouping.name: ScoreGrouping,
}


def available_groupings() -> list[str]:
    return sorted(_STRATEGIES)


def get_grouping(name: str) -> GroupingStrategy:
    strategy = _STRATEGIES.get(name.lower().strip())
    if strategy is None:
        supported = ", ".join(available_groupings())
        raise ConfigError(f"Unknown grouping: {name}. Supported: {supported}")
    return strategy()


def site_of(url: str | None) -> str:
    if not url:
        return ""
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host
