"""Authentication token models."""

from __future__ import annotations

from pydantic import Field, field_validator

from pydatasync.models._base import SyncBaseModel


class AuthTokens(SyncBaseModel):
    """Token pair returned by login, registration and refresh.

    Parameters
    ----------
    access_token : str
        Bearer credential attached to every authenticated request.
    refresh_token : str or None
        Credential exchanged for a new pair. Refresh responses may omit
        it, in which case the previous refresh token stays valid.
    expires_in : str, int or None
        Lifetime of the access token, seconds or a duration string such
        as ``"15m"`` or ``"7d"``.
    session_id : str or None
        Server-issued session identifier, when the backend provides one.
    """

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: str | int | float | None = None
    token_type: str = "Bearer"
    session_id: str | None = None

    @field_validator("access_token", "refresh_token", mode="before")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return value.strip() if isinstance(value, str) else value
