from .renderer import render_digest

__all__ = ["render_digest"]
