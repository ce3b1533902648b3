"""User record model."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pydatasync.models._base import SyncBaseModel


class UserRecord(SyncBaseModel):
    """The signed-in user, as returned by the auth endpoints.

    Only the identity fields are typed; everything else the backend sends
    is kept in ``raw`` and persisted with the record.
    """

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    role: str = ""
    permissions: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email
