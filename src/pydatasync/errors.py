"""Classification of failed network outcomes.

Every failure that reaches the cache or a subscriber is reduced to an
:class:`ErrorKind`. The kind carries a fixed, non-technical message; the raw
exception is only ever written to the debug log.
"""

from __future__ import annotations

import logging
from enum import StrEnum

import aiohttp

from pydatasync.exceptions import (
    AuthenticationError,
    MutationError,
    ResourceLoadError,
    ResponseSchemaError,
    TransportError,
)

_logger = logging.getLogger(__name__)


class ErrorKind(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_UNREACHABLE = "network_unreachable"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: "Your session has expired. Please sign in again.",
    ErrorKind.FORBIDDEN: "You don't have permission to access this resource.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.SERVER_ERROR: "The server encountered an error. Please try again later.",
    ErrorKind.NETWORK_UNREACHABLE: "Unable to reach the server. Please check your connection.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}

_STATUS_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
}


def classify_status(status_code: int | None) -> ErrorKind:
    """Map an HTTP status (``None`` = no response) to an error kind."""
    if status_code is None:
        return ErrorKind.NETWORK_UNREACHABLE
    kind = _STATUS_KINDS.get(status_code)
    if kind is not None:
        return kind
    if 500 <= status_code <= 599:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def classify(error: BaseException) -> ErrorKind:
    """Reduce any failure raised by a network operation to an :class:`ErrorKind`."""
    # Already-classified errors keep their kind.
    if isinstance(error, (AuthenticationError, ResourceLoadError, MutationError)):
        return error.kind
    if isinstance(error, TransportError):
        return classify_status(error.status_code)
    if isinstance(error, ResponseSchemaError):
        return ErrorKind.SERVER_ERROR
    if isinstance(error, (TimeoutError, aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorKind.NETWORK_UNREACHABLE
    if isinstance(error, aiohttp.ClientResponseError):
        return classify_status(error.status)
    return ErrorKind.UNKNOWN


def describe(kind: ErrorKind) -> str:
    """Stable, user-facing message for *kind*."""
    return _MESSAGES[kind]


def log_failure(context: str, error: BaseException, kind: ErrorKind) -> None:
    """Record the raw failure detail for diagnostics only."""
    _logger.debug("%s failed (%s)", context, kind, exc_info=error)
