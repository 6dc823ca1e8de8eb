"""
Error taxonomy for the pipeline.

Three kinds of failure are distinguished:
- Stage errors (transient or permanent) raised by external capabilities.
  They are converted into per-item outcomes and never leave the batch runner.
- Systemic errors (store unreachable, invalid configuration). They abort the
  current tick and are reported at the trigger boundary.
- Programming errors such as an invalid stage transition.
"""

from __future__ import annotations

import httpx


class HnDigestError(Exception):
    """Base class for all pipeline errors."""


class StageError(HnDigestError):
    """Failure of one external capability call.

    Attributes:
        transient: True if retrying the same call may succeed
            (network, timeout, rate limit, service unavailable)
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class DiscoveryError(StageError):
    pass


class ExtractionError(StageError):
    pass


class SummarizationError(StageError):
    pass


class DeliveryError(StageError):
    pass


class SystemicError(HnDigestError):
    """Failure that invalidates the whole tick."""


class StoreUnavailable(SystemicError):
    pass


class ConfigError(SystemicError):
    pass


class InvalidTransition(HnDigestError, ValueError):
    """Requested stage change is not a forward or sideways move."""


class BlobNotFound(HnDigestError, KeyError):
    pass


_TRANSIENT_STATUS = {408, 425, 429}


def is_transient_status(status_code: int) -> bool:
    """Return True for HTTP statuses worth retrying."""
    return status_code in _TRANSIENT_STATUS or status_code >= 500


def classify_http_error(exc: httpx.HTTPError) -> bool:
    """Classify an httpx error as transient (True) or permanent (False).

    Timeouts, connection failures and other transport errors are transient.
    Status errors are transient for 408/425/429 and 5xx only.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return is_transient_status(exc.response.status_code)
    if isinstance(exc, (httpx.UnsupportedProtocol, httpx.TooManyRedirects)):
        return False
    return True


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"
