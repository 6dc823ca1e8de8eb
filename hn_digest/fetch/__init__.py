"""Article content fetching, extraction and cleaning."""

from .extractor import ContentExtractor, extract_text, is_placeholder_text

__all__ = ["ContentExtractor", "extract_text", "is_placeholder_text"]
