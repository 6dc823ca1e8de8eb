"""
Digest rendering for Markdown, HTML and plain text output.

HTML goes through the Jinja2 template in ``templates/``; Markdown and text
are formatted directly.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..core.errors import ConfigError
from ..core.types import DigestGroup

_TEMPLATE_DIR = Path(__file__).parent / "templates"


def _slugify(value: str) -> str:
    """Convert a string to a URL-safe slug.

    Examples:
        >>> _slugify("Tech & Science")
        "tech-science"
    """
    lowered = value.strip().lower()
    cleaned = []
    last_dash = False
    for ch in lowered:
        if ch.isalnum():
            cleaned.append(ch)
            last_dash = False
        else:
            if not last_dash:
                cleaned.append("-")
                last_dash = True
    slug = "".join(cleaned).strip("-")
    return slug or "section"


def render_digest(
    groups: list[DigestGroup],
    fmt: str,
    title: str,
    digest_id: str,
    created_at: datetime,
    include_links: bool = True,
) -> str:
    """Render grouped entries in the requested format.

    Raises:
        ConfigError: For an unknown format
    """
    renderer = _RENDERERS.get(fmt)
    if renderer is None:
        raise ConfigError(f"Unknown digest format: {fmt}")
    return renderer(groups, title, digest_id, created_at, include_links)


def render_markdown(
    groups: list[DigestGroup],
    title: str,
    digest_id: str,
    created_at: datetime,
    include_links: bool = True,
) -> str:
    total = sum(len(group.entries) for group in groups)
    lines = [f"# {title} - {created_at:%Y-%m-%d}", "", f"{total} stories", ""]
    for group in groups:
        lines.append(f"## {group.name}")
        lines.append("")
        for entry in group.entries:
            item, summary = entry.item, entry.summary
            heading = f"[{item.title}]({item.url})" if include_links and item.url else item.title
            lines.append(f"### {heading}")
            lines.append("")
            lines.append(f"{item.score} points" + (f" by {item.author}" if item.author else ""))
            lines.append("")
            lines.append(summary.short_summary or summary.summary)
            lines.append("")
            for point in summary.key_points:
                lines.append(f"- {point}")
            if summary.key_points:
                lines.append("")
            if include_links:
                lines.append(f"[Discuss on HackerNews]({item.discussion_url})")
                lines.append("")
    lines.append(f"_Digest {digest_id}_")
    return "\n".join(lines).strip() + "\n"


def render_text(
    groups: list[DigestGroup],
    title: str,
    digest_id: str,
    created_at: datetime,
    include_links: bool = True,
) -> str:
    lines = [f"{title} - {created_at:%Y-%m-%d}", ""]
    for group in groups:
        lines.append(group.name.upper())
        lines.append("")
        for entry in group.entries:
            item, summary = entry.item, entry.summary
            lines.append(f"* {item.title} ({item.score} points)")
            lines.append(f"  {summary.short_summary or summary.summary}")
            if include_links:
                if item.url:
                    lines.append(f"  {item.url}")
                lines.append(f"  {item.discussion_url}")
            lines.append("")
    lines.append(f"Digest {digest_id}")
    return "\n".join(lines).strip() + "\n"


def render_html(
    groups: list[DigestGroup],
    title: str,
    digest_id: str,
    created_at: datetime,
    include_links: bool = True,
) -> str:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
    )
    template = env.get_template("digest.html")

    used_ids: dict[str, int] = {}
    sections = []
    for group in groups:
        # Duplicate slugs get a numeric suffix so anchors stay unique.
        base_id = _slugify(group.name)
        count = used_ids.get(base_id, 0)
        used_ids[base_id] = count + 1
        group_id = f"{base_id}-{count + 1}" if count else base_id
        sections.append({"id": group_id, "name": group.name, "entries": group.entries})

    return template.render(
        title=title,
        digest_id=digest_id,
        generated_at=created_at.strftime("%Y-%m-%d %H:%M UTC"),
        sections=sections,
        include_links=include_links,
        total=sum(len(group.entries) for group in groups),
    )


_RENDERERS = {
    "markdown": render_markdown,
    "html": render_html,
    "text": render_text,
}
