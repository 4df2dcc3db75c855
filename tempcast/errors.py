"""
Error types surfaced by the prediction core.

Every failure carries one ErrorKind. Components raise their own kind and the
predictor forwards it unchanged, so callers only ever need to look at
`err.kind` and `str(err)`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NETWORK = "NETWORK"
    REMOTE_STATUS = "REMOTE_STATUS"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    DEGENERATE_FIT = "DEGENERATE_FIT"
    STORE_IO = "STORE_IO"
    CANCELLED = "CANCELLED"


class PredictionError(RuntimeError):
    """Base class for user-facing prediction failures."""
    kind: ErrorKind


class NetworkError(PredictionError):
    """The archive request could not complete (timeout, DNS, transport)."""
    kind = ErrorKind.NETWORK


class RemoteStatusError(PredictionError):
    """The archive answered with a non-200 status."""
    kind = ErrorKind.REMOTE_STATUS

    def __init__(self, message: str, status_code: int, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedResponseError(PredictionError):
    kind = ErrorKind.MALFORMED_RESPONSE


class InsufficientDataError(PredictionError):
    kind = ErrorKind.INSUFFICIENT_DATA


class DegenerateFitError(PredictionError):
    kind = ErrorKind.DEGENERATE_FIT


class StoreIOError(PredictionError):
    kind = ErrorKind.STORE_IO


class PredictionCancelled(PredictionError):
    """The in-flight training for this location was cancelled."""
    kind = ErrorKind.CANCELLED
