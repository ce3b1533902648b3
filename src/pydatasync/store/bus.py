"""Synchronous fan-out of sync events to subscribers."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable

from pydatasync.store.events import AuthChanged, SignedOut, SyncEvent
from pydatasync.store.keys import ResourceKey

_logger = logging.getLogger(__name__)

Callback = Callable[[SyncEvent], None]
AuthCallback = Callable[[AuthChanged | SignedOut], None]


class Unsubscribe:
    """Handle returned by ``subscribe``; calling it more than once is a no-op."""

    __slots__ = ("_release", "_done")

    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._done = False

    def __call__(self) -> None:
        if self._done:
            return
        self._done = True
        self._release()

    @property
    def active(self) -> bool:
        return not self._done


class SubscriptionBus:
    """Per-key and process-wide subscriber registry.

    Callbacks run synchronously in subscription order. Each publish iterates
    over a snapshot of the subscribers, so a callback that subscribes or
    unsubscribes while being notified cannot make the bus skip or repeat any
    other callback. A failing callback is logged and the rest still run.
    """

    def __init__(self) -> None:
        self._ids = itertools.count()
        self._by_key: dict[ResourceKey, dict[int, Callback]] = {}
        self._auth: dict[int, AuthCallback] = {}

    def subscribe(self, key: ResourceKey, callback: Callback) -> Unsubscribe:
        sub_id = next(self._ids)
        self._by_key.setdefault(key, {})[sub_id] = callback

        def _release() -> None:
            subscribers = self._by_key.get(key)
            if subscribers is None:
                return
            subscribers.pop(sub_id, None)
            if not subscribers:
                del self._by_key[key]

        return Unsubscribe(_release)

    def subscribe_auth(self, callback: AuthCallback) -> Unsubscribe:
        sub_id = next(self._ids)
        self._auth[sub_id] = callback
        return Unsubscribe(lambda: self._auth.pop(sub_id, None))

    def subscriber_count(self, key: ResourceKey) -> int:
        return len(self._by_key.get(key, {}))

    def subscribed_keys(self) -> list[ResourceKey]:
        return list(self._by_key)

    @staticmethod
    def _deliver(callbacks: list[Callable[..., None]], event: SyncEvent, target: str) -> None:
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                _logger.exception("Subscriber callback for %s raised on %s", target, event.kind)

    def publish(self, key: ResourceKey, event: SyncEvent) -> None:
        self._deliver(list(self._by_key.get(key, {}).values()), event, str(key))

    def publish_auth(self, event: AuthChanged | SignedOut) -> None:
        self._deliver(list(self._auth.values()), event, "auth")

    def broadcast(self, event: SignedOut) -> None:
        """Deliver *event* to every key's subscribers, then to auth listeners."""
        for key in self.subscribed_keys():
            self.publish(key, event)
        self.publish_auth(event)
