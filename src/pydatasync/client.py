"""High-level async client: cached, deduplicated, auth-aware resource access."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiohttp

from pydatasync._api import resources as _resources_api
from pydatasync._transport import HttpTransport, Transport
from pydatasync.auth import TokenLifecycleManager
from pydatasync.config import SyncConfig
from pydatasync.credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from pydatasync.errors import classify, describe, log_failure
from pydatasync.exceptions import DataSyncError, MutationError, ResourceLoadError
from pydatasync.models.resources import Mutation, ResourcePage
from pydatasync.models.user import UserRecord
from pydatasync.store.bus import AuthCallback, Callback, SubscriptionBus, Unsubscribe
from pydatasync.store.cache import CacheEntry, ResourceCache
from pydatasync.store.coordinator import Fetcher, LoadCoordinator
from pydatasync.store.events import AuthChanged, AuthState, CacheUpdated, SignedOut
from pydatasync.store.keys import ResourceKey

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _ClientTransport:
    """Forwards requests to whichever transport the client currently holds."""

    def __init__(self, client: DataSyncClient) -> None:
        self._client = client

    async def request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        return await self._client._require_transport().request(method, endpoint, **kwargs)


class DataSyncClient:
    """Async client keeping many observers consistent with one backend.

    Usage::

        async with DataSyncClient(config) as client:
            await client.login("ada@example.com", "secret")
            entry = await client.load("orders", {"status": "pending"})

    Every cache change is published to the key's subscribers as a
    :class:`CacheUpdated` event. When the session cannot be refreshed, the
    client discards every cached entry and broadcasts :class:`SignedOut`.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        credential_store: CredentialStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config if config is not None else SyncConfig()
        self._external_session = session is not None
        self._http_session = session
        self._injected_transport = transport is not None
        self._transport: Transport | None = transport

        if credential_store is None:
            if self._config.credentials_path:
                credential_store = FileCredentialStore(self._config.credentials_path, self._config.origin)
            else:
                credential_store = MemoryCredentialStore()

        self._bus = SubscriptionBus()
        self._cache = ResourceCache(
            clock=clock,
            default_max_age=self._config.max_age,
            max_entries=self._config.max_entries,
            on_evict=self._publish_entry,
        )
        self._coordinator = LoadCoordinator(self._cache, on_change=self._publish_entry)
        self._auth = TokenLifecycleManager(
            _ClientTransport(self),
            self._bus,
            store=credential_store,
            clock=clock,
            refresh_leeway=self._config.refresh_leeway,
        )
        # Registered first so the cache is empty before anyone else hears of a sign-out.
        self._bus.subscribe_auth(self._on_auth_event)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DataSyncClient:
        if not self._injected_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._auth.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._injected_transport:
            self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise DataSyncError("Client not initialized. Use 'async with DataSyncClient(...) as client:'")
        return self._transport

    def _publish_entry(self, key: ResourceKey) -> None:
        self._bus.publish(key, CacheUpdated(key=key, entry=self._cache.get(key)))

    def _on_auth_event(self, event: AuthChanged | SignedOut) -> None:
        if isinstance(event, AuthChanged) and event.state is AuthState.SIGNED_OUT_ERROR:
            cleared = self._coordinator.invalidate_where()
            _logger.info("Session ended (%s); discarded %d cached entries", event.error, len(cleared))

    def _fetcher(self, key: ResourceKey) -> Fetcher:
        async def _call() -> ResourcePage:
            transport = self._require_transport()
            return await self._auth.call(lambda token: _resources_api.fetch_resource(transport, key, token))

        return _call

    async def _reload(self, key: ResourceKey) -> None:
        if not self._auth.is_authenticated:
            return
        try:
            await self._coordinator.load(key, self._fetcher(key))
        except ResourceLoadError as exc:
            # Already stored on the entry and published.
            _logger.debug("Reload of %s failed: %s", key, exc.kind)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def load(
        self,
        resource_type: str,
        params: Mapping[str, Any] | None = None,
        *,
        max_age: float | None = None,
        force: bool = False,
    ) -> CacheEntry:
        """Return the entry for ``(resource_type, params)``, fetching if stale.

        A fresh entry is returned without any network access. Otherwise the
        fetch already in flight for the key is joined, or one is started.

        Parameters
        ----------
        resource_type : str
            Backend collection, e.g. ``"orders"``.
        params : Mapping[str, Any] or None
            Filters and pagination; canonicalized into the cache key.
        max_age : float or None
            Freshness window in seconds. Defaults to the configured window
            for *resource_type*.
        force : bool
            Fetch even when the cached entry is fresh.

        Returns
        -------
        CacheEntry
            Snapshot of the entry once the load has settled.

        Raises
        ------
        ResourceLoadError
            The fetch failed; the same error is stored on the entry.
        """
        key = ResourceKey.build(resource_type, params)
        window = self._config.max_age_for(key.resource_type) if max_age is None else max_age
        if not force and self._cache.is_fresh(key, window):
            _logger.debug("Serving %s from cache", key)
            return self._cache.get(key)
        await self._coordinator.load(key, self._fetcher(key))
        return self._cache.get(key)

    def snapshot(self, resource_type: str, params: Mapping[str, Any] | None = None) -> CacheEntry:
        """Read-only view of the cached entry; never touches the network."""
        return self._cache.get(ResourceKey.build(resource_type, params))

    def subscribe(
        self,
        resource_type: str,
        params: Mapping[str, Any] | None,
        callback: Callback,
    ) -> Unsubscribe:
        return self._bus.subscribe(ResourceKey.build(resource_type, params), callback)

    def subscribe_auth(self, callback: AuthCallback) -> Unsubscribe:
        return self._bus.subscribe_auth(callback)

    def invalidate(
        self,
        resource_type: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[ResourceKey]:
        """Discard cached entries and publish their cleared state.

        With *params*, only that key; with just *resource_type*, every key
        of that type; with neither, everything. Returns the discarded keys.
        """
        if resource_type is None:
            return self._coordinator.invalidate_where()
        if params is None:
            return self._coordinator.invalidate_where(resource_type)
        key = ResourceKey.build(resource_type, params)
        self._coordinator.invalidate(key)
        return [key]

    async def mutate(
        self,
        resource_type: str,
        params: Mapping[str, Any] | None,
        mutation: Mutation,
        *,
        optimistic: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Perform a write and reconcile the cache with the server.

        *optimistic*, when given, maps the cached data of
        ``(resource_type, params)`` to its expected post-write value and is
        applied before the request. After a successful write every entry of
        *resource_type* is invalidated, along with the types the configured
        ``invalidation_rules`` relate to it, and ``(resource_type, params)``
        is reloaded. A failed write of any kind rolls the optimistic change
        back by reloading the entry, then raises :class:`MutationError`.

        Returns the response ``data`` of the write.
        """
        key = ResourceKey.build(resource_type, params)
        transport = self._require_transport()
        patched = optimistic is not None and key in self._cache and self._coordinator.patch(key, optimistic)

        try:
            result = await self._auth.call(lambda token: _resources_api.send_mutation(transport, mutation, token))
        except Exception as exc:
            kind = classify(exc)
            log_failure(f"{mutation.method} {mutation.path}", exc, kind)
            if patched:
                self._coordinator.invalidate(key)
                await self._reload(key)
            raise MutationError(describe(kind), kind=kind, path=mutation.path) from exc

        discarded = self._coordinator.invalidate_where(key.resource_type)
        discarded += self._coordinator.invalidate_matching(self._config.related_patterns(key.resource_type))
        _logger.debug("%s %s discarded %d cached entries", mutation.method, mutation.path, len(discarded))
        await self._reload(key)
        return result

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def auth(self) -> TokenLifecycleManager:
        return self._auth

    @property
    def auth_state(self) -> AuthState:
        return self._auth.state

    @property
    def current_user(self) -> UserRecord | None:
        return self._auth.user

    async def login(self, email: str, password: str) -> UserRecord:
        return await self._auth.login(email, password)

    async def register(self, account: Mapping[str, Any]) -> UserRecord:
        return await self._auth.register(account)

    async def logout(self) -> None:
        """Sign out and drop every cached entry fetched under the session."""
        await self._auth.logout()
        self._coordinator.invalidate_where()

    async def restore_session(self, *, confirm: bool = True) -> bool:
        """Resume a persisted session; see :meth:`TokenLifecycleManager.restore`."""
        return await self._auth.restore(confirm=confirm)
