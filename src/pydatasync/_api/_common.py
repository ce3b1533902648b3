"""Shared helpers for backend endpoint modules.

This module centralizes the envelope handling every endpoint repeats:
- validating the ``{"success", "message", "data"}`` envelope
- validating ``data`` against one pydantic schema per endpoint

It is internal to pydatasync and may change at any time.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pydatasync.exceptions import ApiError, ResponseSchemaError
from pydatasync.models.envelope import ApiEnvelope

M = TypeVar("M", bound=BaseModel)


def unwrap_envelope(*, endpoint: str, body: Any) -> Any:
    """Validate the response envelope and return its ``data``."""
    try:
        envelope = ApiEnvelope.model_validate(body)
    except ValidationError as exc:
        raise ResponseSchemaError(f"{endpoint} returned a malformed envelope", endpoint=endpoint) from exc
    if not envelope.success:
        raise ApiError(f"{endpoint} failed: {envelope.message}", endpoint=endpoint)
    return envelope.data


def parse_data(*, endpoint: str, body: Any, model: type[M]) -> M:
    """Validate the envelope and parse ``data`` as *model*."""
    data = unwrap_envelope(endpoint=endpoint, body=body)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ResponseSchemaError(
            f"{endpoint} returned data not matching {model.__name__}",
            endpoint=endpoint,
        ) from exc
