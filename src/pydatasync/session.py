"""Session state for authenticated API calls."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from pydatasync._constants import DEFAULT_TOKEN_TTL, parse_duration
from pydatasync.models.token import AuthTokens


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AuthSession(BaseModel):
    """Immutable credential set for the signed-in user.

    A new instance replaces the old one on login and on every refresh, so a
    reader holding a reference always sees a consistent token pair.

    Parameters
    ----------
    access_token : str
        Bearer credential for authenticated requests.
    refresh_token : str
        Credential exchanged for a new pair when the access token is
        rejected.
    expires_at : datetime
        UTC instant after which the access token is assumed invalid.
    session_id : str
        Identifier of this sign-in; kept across refreshes.
    created_at : datetime
        UTC instant the credentials were issued.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    access_token: str = Field(min_length=1)
    refresh_token: str = ""
    expires_at: datetime
    session_id: str = Field(default_factory=lambda: secrets.token_hex(16))
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_tokens(
        cls,
        tokens: AuthTokens,
        *,
        now: datetime,
        previous: AuthSession | None = None,
    ) -> AuthSession:
        """Build a session from a token response.

        When refreshing, *previous* supplies the refresh token and session id
        the backend did not repeat.
        """
        try:
            ttl = parse_duration(tokens.expires_in)
        except ValueError:
            ttl = DEFAULT_TOKEN_TTL
        refresh_token = tokens.refresh_token or (previous.refresh_token if previous else "")
        session_id = tokens.session_id or (previous.session_id if previous else None)
        kwargs: dict[str, object] = {
            "access_token": tokens.access_token,
            "refresh_token": refresh_token,
            "expires_at": now + timedelta(seconds=ttl),
            "created_at": now,
        }
        if session_id:
            kwargs["session_id"] = session_id
        return cls.model_validate(kwargs)

    def is_expired(self, now: datetime, *, leeway: float = 0.0) -> bool:
        """Whether the access token is expired, or will be within *leeway* seconds."""
        return now >= self.expires_at - timedelta(seconds=leeway)
