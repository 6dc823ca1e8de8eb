from .base import CHARS_PER_TOKEN, SummaryProvider
from .factory import available_providers, create_provider, register_provider

__all__ = [
    "CHARS_PER_TOKEN",
    "SummaryProvider",
    "available_providers",
    "create_provider",
    "register_provider",
]
