"""Error taxonomy surfaced by the analysis engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from glow_common.config import ConfigError


class NetworkErrorCode(str, Enum):
    """Failure class of a single logical outbound request."""

    NETWORK = "NETWORK"  # no response received
    TIMEOUT = "TIMEOUT"  # per-attempt timer expired
    ABORTED = "ABORTED"  # caller cancelled
    HTTP = "HTTP"  # response with a non-2xx status


class AnalysisError(Exception):
    """
    Base class for analysis engine errors.

    Callers (CLI, API layers, tests) can catch this single type when they do
    not care which stage of the pipeline failed.
    """


class ValidationError(AnalysisError):
    """
    Raised when the image has no usable subject.

    Typical causes:
      - No face geometry returned for a face analysis
      - No person label detected for an outfit analysis

    Terminal: the caller must re-capture, retrying the same bytes cannot help.
    """

    def __init__(self, message: str, reasons: Optional[list[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []


class ParseError(AnalysisError):
    """Raised when an upstream response lacks the expected structure."""

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt


class NetworkError(AnalysisError):
    """Raised once the network client gives up on a request."""

    def __init__(
        self,
        message: str,
        code: NetworkErrorCode,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.code = code
        self.http_status = http_status
        self.retryable = is_retryable(http_status, code) if retryable is None else retryable

    @property
    def aborted(self) -> bool:
        return self.code is NetworkErrorCode.ABORTED

    def __repr__(self) -> str:
        return (
            f"NetworkError(code={self.code.value}, http_status={self.http_status}, "
            f"retryable={self.retryable}, message={str(self)!r})"
        )


def is_retryable(http_status: Optional[int], code: NetworkErrorCode) -> bool:
    """Classify a failure as retryable or terminal.

    Pure function of status and code.
    """
    if code is NetworkErrorCode.ABORTED:
        return False
    if http_status is None:
        # NETWORK and TIMEOUT both mean no response was received
        return code in (NetworkErrorCode.NETWORK, NetworkErrorCode.TIMEOUT)
    if http_status >= 500:
        return True
    if http_status in (408, 429):
        return True
    return False


__all__ = [
    "AnalysisError",
    "ConfigError",
    "NetworkError",
    "NetworkErrorCode",
    "ParseError",
    "ValidationError",
    "is_retryable",
]
