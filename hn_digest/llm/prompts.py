"""Prompt loading and rendering helpers for LLM providers."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from ..config import SummaryConfig


_PROMPT_DIR = Path(__file__).resolve().parent.parent / "prompts"


@lru_cache(maxsize=None)
def _load_template(name: str) -> str:
    path = _PROMPT_DIR / f"{name}.md"
    return path.read_text(encoding="utf-8").strip()


def _render_template(name: str, **values: str) -> str:
    template = _load_template(name)
    return template.format(**values)


def build_summary_prompt(title: str, url: str | None, text: str, cfg: SummaryConfig) -> str:
    return _render_template(
        "summary",
        title=title,
        url=url or "(text post)",
        content=text[: cfg.max_chars],
    )
