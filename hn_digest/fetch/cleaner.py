"""Normalization of extracted article text before summarization."""

from __future__ import annotations

import re

_CLUTTER_RE = re.compile(
    r"cookie policy|privacy policy|accept (all )?cookies|uses cookies"
    r"|subscribe to our newsletter|sign up for our newsletter|subscribe now"
    r"|log in|sign in|create an account"
    r"|share on (twitter|facebook|linkedin)|follow us on",
    re.IGNORECASE,
)
# Lines longer than this are prose that happens to mention a clutter phrase.
_CLUTTER_MAX_LINE = 80
_SPACES_RE = re.compile(r" {2,}")
_NEWLINES_RE = re.compile(r"\n{3,}")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def clean_content(text: str) -> str:
    """Collapse whitespace and drop short boilerplate lines."""
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    cleaned = _SPACES_RE.sub(" ", cleaned)
    lines = [line.strip() for line in cleaned.split("\n")]
    lines = [line for line in lines if not _is_clutter(line)]
    cleaned = "\n".join(lines)
    cleaned = _NEWLINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def extract_excerpt(text: str, max_length: int = 200) -> str:
    """Return the leading whole sentences of ``text`` that fit in ``max_length``."""
    cleaned = clean_content(text).replace("\n", " ")
    excerpt = ""
    for sentence in _SENTENCE_RE.split(cleaned):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{excerpt} {sentence}".strip()
        if len(candidate) > max_length:
            break
        excerpt = candidate
    if not excerpt:
        return cleaned[:max_length].rstrip()
    return excerpt


def _is_clutter(line: str) -> bool:
    return bool(line) and len(line) <= _CLUTTER_MAX_LINE and bool(_CLUTTER_RE.search(line))
