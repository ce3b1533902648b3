"""Data models for backend payloads."""

from pydatasync.models._base import SyncBaseModel
from pydatasync.models.envelope import ApiEnvelope, AuthPayload, CurrentUserPayload
from pydatasync.models.resources import Mutation, Pagination, Record, ResourcePage, ResourcePayload
from pydatasync.models.token import AuthTokens
from pydatasync.models.user import UserRecord

__all__ = [
    "ApiEnvelope",
    "AuthPayload",
    "AuthTokens",
    "CurrentUserPayload",
    "Mutation",
    "Pagination",
    "Record",
    "ResourcePage",
    "ResourcePayload",
    "SyncBaseModel",
    "UserRecord",
]
