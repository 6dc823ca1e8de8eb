"""
HTML content extraction with multiple fallback strategies.

This module provides a chain of extraction methods:
1. trafilatura: Fast, purpose-built for article content (default)
2. readability: Mozilla's readability algorithm (fallback)
3. bs4: BeautifulSoup plain text extraction (last resort)

``ContentExtractor`` combines fetching, the extractor chain and cleaning
into the single ``extract(url)`` call used by the extraction stage.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from bs4 import BeautifulSoup
import httpx
import trafilatura
from readability import Document

from ..config import ExtractConfig, FetchConfig
from ..core.errors import ExtractionError
from .cleaner import clean_content
from .fetcher import build_client, fetch_url

logger = logging.getLogger("hn_digest.fetch")


class ContentExtractor:
    """Fetch a page and return its cleaned article text.

    Args:
        fetch_cfg: HTTP settings and minimum text length
        extract_cfg: Extractor chain order
        client: Optional shared client; one is created lazily otherwise
    """

    def __init__(
        self,
        fetch_cfg: FetchConfig,
        extract_cfg: ExtractConfig,
        client: httpx.AsyncClient | None = None,
    ):
        self.fetch_cfg = fetch_cfg
        self.extract_cfg = extract_cfg
        self._client = client
        self._owns_client = client is None

    async def extract(self, url: str) -> str:
        """Return cleaned text for ``url``.

        Raises:
            ExtractionError: Fetch failures keep their transient flag; empty or
                placeholder results are permanent
        """
        result = await fetch_url(self._get_client(), url)
        if result.is_html:
            # Extraction libraries are synchronous and CPU-bound.
            text = await asyncio.to_thread(
                extract_text, result.text, self.extract_cfg.primary, self.extract_cfg.fallback
            )
        else:
            text = result.text
        if not text:
            raise ExtractionError("Empty extraction result", transient=False)
        cleaned = clean_content(text)
        if is_placeholder_text(cleaned, self.fetch_cfg.min_chars):
            raise ExtractionError("Placeholder or too-short content", transient=False)
        return cleaned

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_client(self.fetch_cfg)
        return self._client


def extract_text(html: str, primary: str, fallback: list[str]) -> str | None:
    """Extract plain text from HTML using a chain of extractors.

    Tries each extraction method in order until one produces non-empty
    output.

    Args:
        html: The HTML content to extract text from
        primary: Name of the primary extraction method to try first
        fallback: List of fallback method names to try if primary fails

    Returns:
        Extracted plain text with leading/trailing whitespace stripped,
        or None if all methods fail
    """
    order = [primary] + [name for name in fallback if name != primary]
    for method in order:
        extractor = _get_extractor(method)
        if not extractor:
            continue
        try:
            text = extractor(html)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Extractor %s failed: %s", method, exc)
            continue
        if text and text.strip():
            return text.strip()
    return None


def is_placeholder_text(text: str, min_chars: int = 200) -> bool:
    """Detect JavaScript walls, bot challenges and very short content."""
    lowered = text.lower()
    if "javascript is disabled" in lowered or "please enable javascript" in lowered:
        return True
    if "enable javascript to continue" in lowered:
        return True
    if "verifying you are human" in lowered:
        return True
    if "just a moment..." in lowered:
        return True
    if "checking your browser before accessing" in lowered:
        return True
    # Cloudflare footers also appear on real pages; only short ones are challenges.
    if "ray id:" in lowered and len(text.strip()) < 1000:
        return True
    return len(text.strip()) < min_chars


def _get_extractor(name: str) -> Callable[[str], str | None] | None:
    if name == "trafilatura":
        return _extract_trafilatura
    if name == "readability":
        return _extract_readability
    if name == "bs4":
        return _extract_bs4
    return None


def _extract_trafilatura(html: str) -> str | None:
    return trafilatura.extract(html)


def _extract_readability(html: str) -> str | None:
    """Extract the main content block with Mozilla's readability algorithm.

    Readability returns simplified HTML, which bs4 turns into plain text.
    """
    doc = Document(html)
    return _extract_bs4(doc.summary())


def _extract_bs4(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator="\n")
    cleaned = "\n".join([line.strip() for line in text.splitlines() if line.strip()])
    return cleaned if cleaned else None
