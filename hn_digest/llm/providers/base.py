"""Abstract interface for LLM summarization backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ...core.types import Summary

# Rough output-size conversion used to cap summaries by character count.
CHARS_PER_TOKEN = 4


class SummaryProvider(ABC):
    """Provider interface for article summarization."""

    name: str = "base"

    @abstractmethod
    async def summarize(
        self,
        title: str,
        text: str,
        max_tokens: int,
        url: str | None = None,
    ) -> Summary:
        """Return a summary no longer than ``max_tokens`` worth of characters.

        Raises:
            SummarizationError: transient for provider outages and rate limits,
                permanent for blocked or empty responses
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def cap_length(text: str, max_tokens: int) -> str:
    limit = max_tokens * CHARS_PER_TOKEN
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()
