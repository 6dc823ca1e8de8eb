"""Provider factory and registry for hot-swappable LLM backends."""

from __future__ import annotations

from ...config import ProviderConfig, SummaryConfig, get_api_key
from ...core.errors import ConfigError
from .base import SummaryProvider
from .gemini import GeminiProvider


ProviderBuilder = type[SummaryProvider]

_PROVIDER_REGISTRY: dict[str, ProviderBuilder] = {
    "gemini": GeminiProvider,
    "google": GeminiProvider,
}


def available_providers() -> list[str]:
    """Return the set of registered provider names."""
    return sorted(_PROVIDER_REGISTRY.keys())


def register_provider(name: str, builder: ProviderBuilder) -> None:
    _PROVIDER_REGISTRY[name.lower().strip()] = builder


def create_provider(provider_cfg: ProviderConfig, summary_cfg: SummaryConfig) -> SummaryProvider:
    """Build a provider instance from runtime config.

    Raises:
        ConfigError: For unknown provider names or a missing API key
    """
    name = provider_cfg.name.lower().strip()
    builder = _PROVIDER_REGISTRY.get(name)
    if builder is None:
        supported = ", ".join(available_providers())
        raise ConfigError(f"Unsupported provider: {provider_cfg.name}. Supported: {supported}")
    api_key = get_api_key(provider_cfg)
    try:
        return builder(provider_cfg, summary_cfg, api_key)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
