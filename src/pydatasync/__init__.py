"""pydatasync - Async client-side data synchronization for JSON REST backends."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydatasync")
except PackageNotFoundError:
    __version__ = "0+local"
from pydatasync.auth import TokenLifecycleManager
from pydatasync.client import DataSyncClient
from pydatasync.config import SyncConfig
from pydatasync.credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from pydatasync.errors import ErrorKind, classify, describe
from pydatasync.exceptions import (
    ApiError,
    AuthenticationError,
    ConfigError,
    CredentialStoreError,
    DataSyncError,
    MutationError,
    ResourceLoadError,
    ResponseSchemaError,
    SessionExpiredError,
    TransportError,
)
from pydatasync.models import AuthTokens, Mutation, Pagination, ResourcePage, UserRecord
from pydatasync.session import AuthSession
from pydatasync.store.bus import SubscriptionBus, Unsubscribe
from pydatasync.store.cache import CacheEntry, ResourceCache
from pydatasync.store.coordinator import LoadCoordinator
from pydatasync.store.events import AuthChanged, AuthState, CacheUpdated, SignedOut, SyncEvent
from pydatasync.store.keys import ResourceKey

__all__ = [
    "__version__",
    "ApiError",
    "AuthChanged",
    "AuthSession",
    "AuthState",
    "AuthTokens",
    "AuthenticationError",
    "CacheEntry",
    "CacheUpdated",
    "ConfigError",
    "CredentialStore",
    "CredentialStoreError",
    "DataSyncClient",
    "DataSyncError",
    "ErrorKind",
    "FileCredentialStore",
    "LoadCoordinator",
    "MemoryCredentialStore",
    "Mutation",
    "MutationError",
    "Pagination",
    "ResourceCache",
    "ResourceKey",
    "ResourceLoadError",
    "ResourcePage",
    "ResponseSchemaError",
    "SessionExpiredError",
    "SignedOut",
    "SubscriptionBus",
    "SyncConfig",
    "SyncEvent",
    "TokenLifecycleManager",
    "TransportError",
    "Unsubscribe",
    "UserRecord",
    "classify",
    "describe",
]
