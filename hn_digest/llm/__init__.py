"""LLM summarization providers and prompts."""
