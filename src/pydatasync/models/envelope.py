"""Response envelope shared by every backend endpoint.

The backend always answers ``{"success": bool, "message": str, "data": ...}``.
Auth payloads are validated against the models below; a body that does not
fit is a :class:`~pydatasync.exceptions.ResponseSchemaError`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from pydatasync.models.token import AuthTokens
from pydatasync.models.user import UserRecord


class ApiEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool
    message: str = ""
    data: Any = None


class AuthPayload(BaseModel):
    """``data`` of login, registration and refresh responses."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    tokens: AuthTokens
    user: UserRecord | None = None


class CurrentUserPayload(BaseModel):
    """``data`` of the current-user endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    user: UserRecord
