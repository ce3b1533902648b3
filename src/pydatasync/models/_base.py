"""Base model for backend payloads.

Every wire model inherits from :class:`SyncBaseModel`, which provides:

* ``alias_generator=to_camel`` so camelCase API keys map
  automatically to snake_case fields.
* Frozen instances, so parsed payloads can be shared between
  snapshots without defensive copies.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SyncBaseModel(BaseModel):
    """Base for backend response models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original API response dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        """Stash the raw payload unless the caller supplied ``raw`` itself."""
        if not isinstance(values, dict) or "raw" in values:
            return values
        return {**values, "raw": dict(values)}
