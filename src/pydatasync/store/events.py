"""Events delivered to subscribers.

Every notification is one of the tagged variants below; subscribers switch
on ``kind`` (or ``isinstance``) instead of guessing at payload shapes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from pydatasync.errors import ErrorKind
from pydatasync.store.cache import CacheEntry
from pydatasync.store.keys import ResourceKey


class AuthState(StrEnum):
    SIGNED_OUT = "signed_out"
    SIGNING_IN = "signing_in"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    SIGNED_OUT_ERROR = "signed_out_error"

    @property
    def is_signed_in(self) -> bool:
        return self in (AuthState.AUTHENTICATED, AuthState.REFRESHING)


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CacheUpdated(_Event):
    """The cache entry for ``key`` changed; ``entry`` is the new snapshot."""

    kind: Literal["cache_updated"] = "cache_updated"
    key: ResourceKey
    entry: CacheEntry


class AuthChanged(_Event):
    """The token manager moved to ``state``."""

    kind: Literal["auth_changed"] = "auth_changed"
    state: AuthState
    previous: AuthState
    user_id: str | None = None
    error: ErrorKind | None = None


class SignedOut(_Event):
    """The session ended involuntarily; every cached entry was discarded."""

    kind: Literal["signed_out"] = "signed_out"
    error: ErrorKind


SyncEvent = Annotated[CacheUpdated | AuthChanged | SignedOut, Field(discriminator="kind")]
