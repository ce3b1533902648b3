"""Resource payload models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pydatasync.models._base import SyncBaseModel

Record = dict[str, Any]


class Pagination(SyncBaseModel):
    """Pagination metadata returned alongside list results."""

    current_page: int = 1
    total_pages: int = 1
    total_items: int = 0
    limit: int | None = None
    has_next_page: bool = False
    has_prev_page: bool = False


class ResourcePayload(BaseModel):
    """``data`` of a resource read.

    Exactly one of ``items`` (a list endpoint) or ``item`` (a single
    record) must be present.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: list[Record] | None = None
    pagination: Pagination | None = None
    item: Record | None = None

    @model_validator(mode="after")
    def _exactly_one_shape(self) -> ResourcePayload:
        if (self.items is None) == (self.item is None):
            raise ValueError("resource payload must contain exactly one of 'items' or 'item'")
        if self.item is not None and self.pagination is not None:
            raise ValueError("single-record payload must not carry pagination")
        return self


class ResourcePage(BaseModel):
    """What a fetch produces and the cache stores."""

    model_config = ConfigDict(frozen=True)

    data: list[Record] | Record
    pagination: Pagination | None = None

    @classmethod
    def from_payload(cls, payload: ResourcePayload) -> ResourcePage:
        if payload.items is not None:
            return cls(data=payload.items, pagination=payload.pagination)
        assert payload.item is not None  # noqa: S101
        return cls(data=payload.item)


class Mutation(BaseModel):
    """A write request against the backend."""

    model_config = ConfigDict(frozen=True)

    method: Literal["POST", "PUT", "PATCH", "DELETE"] = "POST"
    path: str = Field(min_length=1)
    body: dict[str, Any] | None = None
