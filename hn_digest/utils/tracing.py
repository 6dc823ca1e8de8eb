"""
Langfuse spans for the digest pipeline.

Spans follow the work: one per tick, one per stage batch carrying the item
ids it selected, one per Gemini call, and one per digest delivery carrying
the digest id and its pending channels. Finished reports are attached as
span output. With tracing disabled, or langfuse not installed, every span
helper yields None and the recorders do nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
import json
import logging
import os
from typing import Any, Iterator, Sequence

from ..config import LangfuseConfig
from .logging import log_event, redact_text, truncate_text

logger = logging.getLogger("hn_digest.tracing")

_CLIENT: Any | None = None
_CFG: LangfuseConfig | None = None

_ENV_FALLBACKS = {
    "public_key": "LANGFUSE_PUBLIC_KEY",
    "secret_key": "LANGFUSE_SECRET_KEY",
    "host": "LANGFUSE_HOST",
    "environment": "LANGFUSE_ENVIRONMENT",
    "release": "LANGFUSE_RELEASE",
}


def setup_langfuse(cfg: LangfuseConfig) -> bool:
    """Create the Langfuse client when tracing is enabled.

    Settings left empty in the config are read from the ``LANGFUSE_*``
    environment variables.

    Returns:
        True if spans will be sent
    """
    global _CLIENT, _CFG  # noqa: PLW0603
    _CFG = cfg
    _CLIENT = None
    if not cfg.enabled:
        return False
    try:
        from langfuse import Langfuse  # type: ignore
    except ImportError:
        log_event(
            logger,
            "Langfuse tracing enabled but the langfuse package is not installed",
            level=logging.WARNING,
            event="tracing_unavailable",
        )
        return False

    settings = {key: getattr(cfg, key) or os.getenv(env) for key, env in _ENV_FALLBACKS.items()}
    _CLIENT = Langfuse(**settings)
    return True


def tracing_enabled() -> bool:
    return _CLIENT is not None


@contextmanager
def tick_span() -> Iterator[Any | None]:
    with _span("hn_digest.tick", kind="chain") as span:
        yield span


@contextmanager
def stage_span(stage: str, item_ids: Sequence[str] = (), **details: Any) -> Iterator[Any | None]:
    """Span for one stage batch; the selected item ids are its input."""
    metadata = {"hn.stage": stage, "hn.batch_size": len(item_ids)}
    metadata.update({f"hn.{key}": value for key, value in details.items()})
    with _span(
        f"hn_digest.{stage}",
        kind="chain",
        input_value={"item_ids": list(item_ids)} if item_ids else None,
        metadata=metadata,
    ) as span:
        yield span


@contextmanager
def summary_span(model: str, item_title: str, item_url: str | None, prompt: str) -> Iterator[Any | None]:
    """Span around one summarization call; the prompt is its input."""
    metadata = {"llm.provider": "gemini", "llm.model": model, "hn.title": item_title}
    if _CFG is not None and _CFG.redaction == "none":
        metadata["hn.url"] = item_url
    with _span("gemini.summarize", kind="llm", input_value=prompt, metadata=metadata) as span:
        yield span


@contextmanager
def delivery_span(digest_id: str, channels: Sequence[str]) -> Iterator[Any | None]:
    with _span(
        "hn_digest.delivery",
        kind="chain",
        input_value={"digest_id": digest_id, "channels": list(channels)},
        metadata={"hn.digest_id": digest_id, "hn.channels": len(channels)},
    ) as span:
        yield span


def record_report(span: Any | None, report: Any) -> None:
    """Attach a finished tick, stage or delivery report as span output.

    Reports with failures, conflicts or a spent tick budget mark the span
    as WARNING.
    """
    if span is None:
        return
    payload = report.as_dict() if hasattr(report, "as_dict") else asdict(report)
    update: dict[str, Any] = {"output": _payload(payload)}
    if any(payload.get(key) for key in ("failed", "conflicts", "budget_exhausted", "discovery_error")):
        update["level"] = "WARNING"
    _update(span, **update)


def record_summary(span: Any | None, content: str, usage: dict[str, Any]) -> None:
    if span is None:
        return
    _update(
        span,
        output=_payload(content),
        metadata=_metadata(
            {
                "llm.input_tokens": usage.get("promptTokenCount"),
                "llm.output_tokens": usage.get("candidatesTokenCount"),
            }
        ),
    )


def record_error(span: Any | None, exc: BaseException) -> None:
    if span is None:
        return
    _update(
        span,
        level="ERROR",
        status_message=str(exc),
        metadata=_metadata(
            {"error.type": type(exc).__name__, "error.transient": getattr(exc, "transient", None)}
        ),
    )


def flush() -> None:
    """Send buffered spans; Langfuse ingests in the background."""
    client = _CLIENT
    if client is None:
        return
    try:
        client.flush()
    except Exception:  # noqa: BLE001
        return


@contextmanager
def _span(
    name: str,
    kind: str,
    input_value: Any | None = None,
    metadata: dict[str, Any] | None = None,
) -> Iterator[Any | None]:
    client = _CLIENT
    if client is None:
        yield None
        return
    try:
        cm = client.start_as_current_span(
            name=name,
            input=_payload(input_value),
            metadata=_metadata({"span.kind": kind, **(metadata or {})}),
        )
        span = cm.__enter__()
    except Exception:  # noqa: BLE001
        yield None
        return

    try:
        yield span
    except Exception as exc:
        record_error(span, exc)
        raise
    finally:
        try:
            cm.__exit__(None, None, None)
        except Exception:  # noqa: BLE001
            pass


def _payload(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, ensure_ascii=True, default=str, sort_keys=True)
    cfg = _CFG
    if cfg is None:
        return text
    return truncate_text(redact_text(text, cfg.redaction), cfg.max_text_chars)


def _metadata(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value if isinstance(value, (str, int, float, bool)) else str(value)
        for key, value in values.items()
        if value is not None
    }


def _update(span: Any, **fields: Any) -> None:
    try:
        span.update(**fields)
    except Exception:  # noqa: BLE001
        return
