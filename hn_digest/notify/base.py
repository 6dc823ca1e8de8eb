"""Notification channel interface and shared helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from bs4 import BeautifulSoup
import httpx

from ..core.errors import DeliveryError, classify_http_error, describe_error
from ..core.types import Digest

FORMAT_EXTENSIONS = {"markdown": "md", "html": "html", "text": "txt"}


class NotificationChannel(ABC):
    """One delivery target for rendered digests.

    ``deliver`` may be called again with the same digest after a failure or a
    crash; channels either dedupe on ``digest.id`` or tolerate a repeat.
    """

    name: str = "channel"

    @abstractmethod
    async def deliver(self, digest: Digest, body: str) -> None:
        """Deliver ``body``.

        Raises:
            DeliveryError: transient for outages and rate limits, permanent
                for rejected requests
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class HttpChannel(NotificationChannel):
    """Base for channels that talk to an HTTP API."""

    def __init__(self, timeout_seconds: float, client: httpx.AsyncClient | None = None):
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def _post_json(self, url: str, payload: dict) -> httpx.Response:
        try:
            resp = await self._get_client().post(url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(
                f"{self.name} delivery failed: {describe_error(exc)}",
                transient=classify_http_error(exc),
            ) from exc
        return resp


def plain_body(digest: Digest, body: str) -> str:
    """Text suitable for chat messages; HTML digests are flattened."""
    if digest.format != "html":
        return body
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    lines = [line.strip() for line in soup.get_text(separator="\n").splitlines()]
    return "\n".join(line for line in lines if line)


def with_dedup_footer(digest: Digest, text: str) -> str:
    return f"{text.rstrip()}\n\n(digest {digest.id})"


def split_message(text: str, limit: int) -> list[str]:
    """Split ``text`` into chunks of at most ``limit`` characters.

    Paragraph boundaries are preferred, then line boundaries; a single line
    longer than ``limit`` is cut hard.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    current = ""
    for paragraph in text.split("\n\n"):
        for piece in _fit(paragraph, limit):
            candidate = f"{current}\n\n{piece}" if current else piece
            if len(candidate) <= limit:
                current = candidate
                continue
            if current:
                chunks.append(current)
            current = piece
    if current:
        chunks.append(current)
    return chunks


def _fit(paragraph: str, limit: int) -> list[str]:
    if len(paragraph) <= limit:
        return [paragraph]
    pieces: list[str] = []
    current = ""
    for line in paragraph.split("\n"):
        while len(line) > limit:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) <= limit:
            current = candidate
        else:
            pieces.append(current)
            current = line
    if current:
        pieces.append(current)
    return pieces
