"""Custom exception hierarchy for pydatasync."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydatasync.errors import ErrorKind
    from pydatasync.store.keys import ResourceKey


class DataSyncError(Exception):
    """Base exception for all pydatasync errors."""


class ConfigError(DataSyncError):
    """Invalid or missing configuration."""


class CredentialStoreError(DataSyncError):
    """The credential store could not be read or written."""


class TransportError(DataSyncError):
    """HTTP-level failure (network, non-2xx status, timeout).

    ``status_code`` is ``None`` when no response was received at all.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ApiError(DataSyncError):
    """The backend answered, but not with a usable result."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class ResponseSchemaError(ApiError):
    """Response body did not match the expected envelope schema."""


class AuthenticationError(ApiError):
    """Login, registration or refresh failed.

    ``kind`` is the classified error kind of the underlying failure.
    """

    def __init__(self, message: str, *, kind: ErrorKind, endpoint: str = "") -> None:
        self.kind = kind
        super().__init__(message, endpoint=endpoint)


class SessionExpiredError(AuthenticationError):
    """Credentials were rejected and could not be refreshed.

    Raised after the token manager has cleared the session; the caller is
    signed out at this point.
    """


class ResourceLoadError(DataSyncError):
    """A resource load failed.

    Every caller that joined the same in-flight load receives the same
    instance. ``str(exc)`` is the stable, user-facing message.
    """

    def __init__(self, message: str, *, kind: ErrorKind, key: ResourceKey) -> None:
        self.kind = kind
        self.key = key
        super().__init__(message)


class MutationError(DataSyncError):
    """A write against the backend failed."""

    def __init__(self, message: str, *, kind: ErrorKind, path: str = "") -> None:
        self.kind = kind
        self.path = path
        super().__init__(message)
