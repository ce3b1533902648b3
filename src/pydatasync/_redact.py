"""Helpers for safe debug logging.

pydatasync handles secrets (passwords, access and refresh tokens) on every
authenticated request. This module redacts them before they are emitted in
DEBUG logs: values under sensitive keys, ``Authorization`` credentials
(the scheme is kept so the trace still shows how a request authenticated),
and bearer tokens or JWTs embedded in free text such as error bodies.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "newpassword",
        "currentpassword",
        "accesstoken",
        "access_token",
        "refreshtoken",
        "refresh_token",
        "token",
        "cookie",
        "set-cookie",
    }
)
_AUTHORIZATION_KEYS: frozenset[str] = frozenset({"authorization", "proxy-authorization"})

_SCHEME_CREDENTIAL = re.compile(r"\b(Bearer|Basic)\s+[^\s,;\"']+")
_JWT = re.compile(r"\beyJ[\w-]*\.[\w-]+\.[\w-]+")


def redact_credentials(text: str) -> str:
    """Mask ``<scheme> <credential>`` pairs and bare JWTs inside *text*."""
    text = _SCHEME_CREDENTIAL.sub(rf"\1 {REDACTED}", text)
    return _JWT.sub(REDACTED, text)


def _redact_authorization(value: Any) -> str:
    scheme, sep, _credential = str(value).strip().partition(" ")
    if not sep:
        return REDACTED
    return f"{scheme} {REDACTED}"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of *headers* with credentials and cookies masked."""
    redacted: dict[str, str] = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in _AUTHORIZATION_KEYS:
            redacted[name] = _redact_authorization(value)
        elif lowered in _SENSITIVE_VALUE_KEYS:
            redacted[name] = REDACTED
        else:
            redacted[name] = value
    return redacted


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        value = redact_credentials(value)
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _AUTHORIZATION_KEYS:
                redacted[key] = _redact_authorization(v)
            elif lowered in _SENSITIVE_VALUE_KEYS:
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
