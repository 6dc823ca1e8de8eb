from .hackernews import HackerNewsSource, parse_story

__all__ = ["HackerNewsSource", "parse_story"]
