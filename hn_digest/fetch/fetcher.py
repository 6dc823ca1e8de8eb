"""
HTTP page fetching for content extraction.

Fetch errors are raised as ``ExtractionError`` carrying a transient flag so
the pipeline can decide between retrying and failing the item.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from ..config import FetchConfig
from ..core.errors import ExtractionError, classify_http_error, describe_error

_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.5"


@dataclass
class FetchResult:
    """Result of a successful HTTP fetch.

    Attributes:
        url: Final URL after redirects
        status_code: HTTP status code
        text: Decoded response body
        content_type: Response Content-Type header (may be empty)
    """

    url: str
    status_code: int
    text: str
    content_type: str = ""

    @property
    def is_html(self) -> bool:
        lowered = self.content_type.lower()
        return not lowered or "html" in lowered or "xml" in lowered


def build_client(cfg: FetchConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=cfg.timeout_seconds,
        trust_env=cfg.trust_env,
        follow_redirects=True,
        headers={"User-Agent": cfg.user_agent, "Accept": _ACCEPT},
    )


def is_textual(content_type: str) -> bool:
    lowered = content_type.lower()
    if not lowered:
        return True
    return "html" in lowered or "xml" in lowered or lowered.startswith("text/")


async def fetch_url(client: httpx.AsyncClient, url: str) -> FetchResult:
    """Fetch ``url`` and return its decoded body.

    Raises:
        ExtractionError: transient for timeouts, connection errors, 408/429/5xx;
            permanent for other 4xx responses and non-text content types
    """
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise ExtractionError(
            f"Fetch failed: {describe_error(exc)}",
            transient=classify_http_error(exc),
        ) from exc

    content_type = resp.headers.get("content-type", "")
    if not is_textual(content_type):
        raise ExtractionError(f"Unsupported content type: {content_type}", transient=False)
    return FetchResult(
        url=str(resp.url),
        status_code=resp.status_code,
        text=resp.text,
        content_type=content_type,
    )
