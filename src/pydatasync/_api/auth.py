"""Authentication endpoints.

Endpoints:
  - /auth/login
  - /auth/register
  - /auth/refresh-token
  - /auth/logout
  - /auth/me
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydatasync._api._common import parse_data
from pydatasync._constants import (
    CURRENT_USER_ENDPOINT,
    LOGIN_ENDPOINT,
    LOGOUT_ENDPOINT,
    REFRESH_ENDPOINT,
    REGISTER_ENDPOINT,
)
from pydatasync._redact import redact_for_log
from pydatasync._transport import Transport
from pydatasync.models.envelope import AuthPayload, CurrentUserPayload
from pydatasync.models.user import UserRecord

_logger = logging.getLogger(__name__)


async def _post_auth(transport: Transport, endpoint: str, body: Mapping[str, Any]) -> AuthPayload:
    _logger.debug("POST %s payload=%s", endpoint, redact_for_log(body))
    response = await transport.request("POST", endpoint, json_body=body)
    payload = parse_data(endpoint=endpoint, body=response, model=AuthPayload)
    _logger.debug("%s session_id=%s", endpoint, payload.tokens.session_id)
    return payload


async def login(transport: Transport, email: str, password: str) -> AuthPayload:
    """Exchange account credentials for a token pair and the user record."""
    return await _post_auth(transport, LOGIN_ENDPOINT, {"email": email, "password": password})


async def register(transport: Transport, account: Mapping[str, Any]) -> AuthPayload:
    """Create an account; the backend signs the new user in immediately."""
    return await _post_auth(transport, REGISTER_ENDPOINT, account)


async def refresh(transport: Transport, refresh_token: str) -> AuthPayload:
    """Trade a refresh token for a new access (and usually refresh) token."""
    return await _post_auth(transport, REFRESH_ENDPOINT, {"refreshToken": refresh_token})


async def logout(transport: Transport, access_token: str, refresh_token: str | None = None) -> None:
    """Ask the backend to invalidate the session."""
    body = {"refreshToken": refresh_token} if refresh_token else {}
    await transport.request("POST", LOGOUT_ENDPOINT, json_body=body, access_token=access_token)


async def fetch_current_user(transport: Transport, access_token: str) -> UserRecord:
    """Fetch the user the access token belongs to."""
    response = await transport.request("GET", CURRENT_USER_ENDPOINT, access_token=access_token)
    return parse_data(endpoint=CURRENT_USER_ENDPOINT, body=response, model=CurrentUserPayload).user
