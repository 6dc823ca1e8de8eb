"""Google Gemini provider for article summarization."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import Any

import httpx

from ...config import ProviderConfig, SummaryConfig
from ...core.errors import SummarizationError, classify_http_error, describe_error
from ...core.types import Summary
from ...fetch.cleaner import extract_excerpt
from ...utils.logging import log_event
from ...utils.tracing import record_summary, summary_span
from ..prompts import build_summary_prompt
from .base import SummaryProvider, cap_length

logger = logging.getLogger("hn_digest.llm")

_BLOCKED_FINISH_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


class GeminiProvider(SummaryProvider):
    """Gemini-backed summarizer using the ``generateContent`` REST endpoint."""

    name = "gemini"

    def __init__(
        self,
        cfg: ProviderConfig,
        summary_cfg: SummaryConfig,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ValueError("Missing Google API key")
        self.cfg = cfg
        self.summary_cfg = summary_cfg
        self.api_key = api_key
        self._client = client
        self._owns_client = client is None

    async def summarize(
        self,
        title: str,
        text: str,
        max_tokens: int,
        url: str | None = None,
    ) -> Summary:
        prompt = build_summary_prompt(title, url, text, self.summary_cfg)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.cfg.temperature,
                "maxOutputTokens": max_tokens,
                "responseMimeType": "application/json",
            },
        }
        with summary_span(self.cfg.model, title, url, prompt) as span:
            try:
                data = await self._post(payload)
                content = _extract_text(data)
            except SummarizationError as exc:
                log_event(
                    logger,
                    "LLM response",
                    level=logging.WARNING,
                    event="llm_summary_response",
                    status="provider_error",
                    model=self.cfg.model,
                    title=title,
                    error=str(exc),
                    transient=exc.transient,
                )
                raise
            usage = data.get("usageMetadata") or {}
            record_summary(span, content, usage)

        summary = _build_summary(content, max_tokens)
        summary.model = self.cfg.model
        summary.input_tokens = int(usage.get("promptTokenCount") or 0)
        summary.output_tokens = int(usage.get("candidatesTokenCount") or 0)
        summary.generated_at = datetime.now(timezone.utc).isoformat()
        log_event(
            logger,
            "LLM response",
            event="llm_summary_response",
            status=summary.status,
            model=self.cfg.model,
            title=title,
            input_tokens=summary.input_tokens,
            output_tokens=summary.output_tokens,
        )
        return summary

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.cfg.base_url.rstrip('/')}/v1beta/models/{self.cfg.model}:generateContent"
        params = {"key": self.api_key}
        try:
            resp = await self._get_client().post(url, params=params, json=payload)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise SummarizationError(
                f"Gemini request failed: {describe_error(exc)}",
                transient=classify_http_error(exc),
            ) from exc
        except ValueError as exc:
            raise SummarizationError("Gemini returned invalid JSON", transient=True) from exc

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.cfg.timeout_seconds, trust_env=self.cfg.trust_env
            )
        return self._client


def _extract_text(data: dict[str, Any]) -> str:
    """Return the candidate text, rejecting blocked and empty responses.

    Raises:
        SummarizationError: Always permanent; the same input is blocked again
    """
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise SummarizationError(
            f"Prompt blocked: {feedback['blockReason']}", transient=False
        )
    candidates = data.get("candidates") or []
    if not candidates:
        raise SummarizationError("No candidates in response", transient=False)
    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason in _BLOCKED_FINISH_REASONS:
        raise SummarizationError(f"Response blocked: {finish_reason}", transient=False)
    text = _join_parts(candidate)
    if not text.strip():
        raise SummarizationError("Empty response", transient=False)
    return text


def _join_parts(candidate: dict[str, Any]) -> str:
    """Concatenate answer parts; thinking models also emit ``thought`` parts."""
    try:
        parts = candidate["content"]["parts"]
    except (KeyError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""

    non_thought_chunks: list[str] = []
    all_chunks: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        chunk = str(part.get("text") or "")
        if not chunk:
            continue
        all_chunks.append(chunk)
        if not part.get("thought"):
            non_thought_chunks.append(chunk)

    if non_thought_chunks:
        return "".join(non_thought_chunks)
    return "".join(all_chunks)


def _build_summary(content: str, max_tokens: int) -> Summary:
    try:
        obj = _parse_json_response(content)
    except json.JSONDecodeError:
        obj = None
    if not isinstance(obj, dict) or not str(obj.get("summary") or "").strip():
        text = cap_length(content.strip(), max_tokens)
        return Summary(summary=text, short_summary=extract_excerpt(text), status="parse_error")

    if isinstance(obj.get("key_points"), str):
        obj["key_points"] = [line.lstrip("-* ") for line in obj["key_points"].splitlines()]
    if isinstance(obj.get("topics"), str):
        obj["topics"] = obj["topics"].split(",")
    summary = Summary.from_dict(obj)
    summary.summary = cap_length(summary.summary.strip(), max_tokens)
    summary.short_summary = summary.short_summary.strip() or extract_excerpt(summary.summary)
    summary.key_points = [p.strip() for p in summary.key_points if p.strip()]
    summary.topics = [t.strip() for t in summary.topics if t.strip()]
    summary.status = "ok"
    return summary


def _parse_json_response(content: str) -> Any:
    if not content:
        raise json.JSONDecodeError("Empty content", content or "", 0)
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        extracted = _extract_json_snippet(content)
        return json.loads(extracted)


def _extract_json_snippet(content: str) -> str:
    fence = _extract_fenced_json(content)
    if fence:
        return fence
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise json.JSONDecodeError("No JSON object found", content, 0)
    return content[start : end + 1]


def _extract_fenced_json(content: str) -> str | None:
    lines = content.splitlines()
    start_idx = None
    for idx, line in enumerate(lines):
        if line.strip().startswith("```") and "json" in line.lower():
            start_idx = idx + 1
            break
    if start_idx is None:
        return None
    for idx in range(start_idx, len(lines)):
        if lines[idx].strip().startswith("```"):
            snippet = "\n".join(lines[start_idx:idx]).strip()
            return snippet or None
    return None
