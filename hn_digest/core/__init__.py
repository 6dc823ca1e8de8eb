"""
Core domain models and error taxonomy.

This package contains data types and errors that are independent of any
specific pipeline stage or external service.
"""

from .errors import (
    ConfigError,
    DeliveryError,
    DiscoveryError,
    ExtractionError,
    StageError,
    StoreUnavailable,
    SummarizationError,
    SystemicError,
)
from .types import (
    DiscoveredItem,
    Digest,
    DigestStatus,
    Item,
    PermanentFailure,
    Stage,
    StageOutcome,
    Success,
    Summary,
    TransientFailure,
    TransitionResult,
    Work,
)

__all__ = [
    "ConfigError",
    "DeliveryError",
    "DiscoveryError",
    "ExtractionError",
    "StageError",
    "StoreUnavailable",
    "SummarizationError",
    "SystemicError",
    "DiscoveredItem",
    "Digest",
    "DigestStatus",
    "Item",
    "PermanentFailure",
    "Stage",
    "StageOutcome",
    "Success",
    "Summary",
    "TransientFailure",
    "TransitionResult",
    "Work",
]
