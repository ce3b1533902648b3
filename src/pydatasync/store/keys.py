"""Canonical resource keys."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, field_validator


def _canonical_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        # 1.0 == 1, so both must name the same resource.
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, Mapping):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    if isinstance(value, (set, frozenset)):
        return ",".join(sorted(_canonical_value(item) for item in value))
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return ",".join(_canonical_value(item) for item in value)
    return str(value)


def canonicalize_params(params: Mapping[str, Any] | None) -> tuple[tuple[str, str], ...]:
    """Sorted ``(name, value)`` pairs with ``None`` values dropped."""
    if not params:
        return ()
    return tuple(
        sorted((str(name), _canonical_value(value)) for name, value in params.items() if value is not None)
    )


class ResourceKey(BaseModel):
    """Identifies one cached resource: a type plus its query parameters.

    Two keys built from equal parameter sets compare and hash equal, whatever
    the insertion order of the mapping.
    """

    model_config = ConfigDict(frozen=True)

    resource_type: str
    params: tuple[tuple[str, str], ...] = ()

    @field_validator("resource_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        resource_type = value.strip().strip("/")
        if not resource_type:
            raise ValueError("resource_type must be non-empty")
        return resource_type

    @classmethod
    def build(cls, resource_type: str, params: Mapping[str, Any] | None = None) -> ResourceKey:
        return cls(resource_type=resource_type, params=canonicalize_params(params))

    def query_params(self) -> dict[str, str]:
        return dict(self.params)

    def __str__(self) -> str:
        if not self.params:
            return self.resource_type
        return f"{self.resource_type}?{urlencode(self.params)}"
