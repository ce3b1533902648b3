"""Single-flight load coordination.

At most one fetch per resource key is in flight. The fetch runs as one
``asyncio.Task`` that every caller awaits through :func:`asyncio.shield`:
joining callers never issue a second network call, and cancelling a caller
never cancels the fetch or its eventual cache write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydatasync.errors import classify, describe, log_failure
from pydatasync.exceptions import ResourceLoadError
from pydatasync.models.resources import ResourcePage
from pydatasync.store.cache import ResourceCache
from pydatasync.store.keys import ResourceKey
from pydatasync.store.policy import matches_type

_logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[ResourcePage]]


@dataclass(slots=True)
class _InFlight:
    generation: int
    task: asyncio.Task[ResourcePage]


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Every caller may have been cancelled; mark the outcome as retrieved.
    if not task.cancelled():
        task.exception()


class LoadCoordinator:
    """Owns every write to a :class:`ResourceCache`.

    ``on_change(key)`` is called after each mutation of a key's entry
    (loading start, success, error, invalidation, optimistic patch).
    """

    def __init__(
        self,
        cache: ResourceCache,
        *,
        on_change: Callable[[ResourceKey], None] | None = None,
    ) -> None:
        self._cache = cache
        self._on_change = on_change
        self._in_flight: dict[ResourceKey, _InFlight] = {}

    def _changed(self, key: ResourceKey) -> None:
        if self._on_change is not None:
            self._on_change(key)

    def in_flight(self, key: ResourceKey) -> bool:
        pending = self._in_flight.get(key)
        return pending is not None and pending.generation == self._cache.generation(key)

    async def load(self, key: ResourceKey, fetcher: Fetcher) -> ResourcePage:
        """Fetch *key*, or join the fetch already running for it.

        Raises :class:`ResourceLoadError`; all joined callers receive the
        same instance.
        """
        generation = self._cache.generation(key)
        pending = self._in_flight.get(key)
        if pending is not None and pending.generation == generation:
            _logger.debug("Joining in-flight load for %s", key)
            return await asyncio.shield(pending.task)

        self._cache.set_loading(key, True, generation=generation)
        self._changed(key)

        task = asyncio.get_running_loop().create_task(
            self._run(key, generation, fetcher),
            name=f"pydatasync-load:{key}",
        )
        task.add_done_callback(_consume_exception)
        self._in_flight[key] = _InFlight(generation=generation, task=task)
        _logger.debug("Started load for %s (generation %d)", key, generation)
        return await asyncio.shield(task)

    async def _run(self, key: ResourceKey, generation: int, fetcher: Fetcher) -> ResourcePage:
        try:
            try:
                page = await fetcher()
            except Exception as exc:
                kind = classify(exc)
                log_failure(f"Load of {key}", exc, kind)
                if self._cache.set_error(key, kind, generation=generation):
                    self._changed(key)
                raise ResourceLoadError(describe(kind), kind=kind, key=key) from exc

            if self._cache.set(key, page.data, generation=generation, pagination=page.pagination):
                self._changed(key)
            else:
                _logger.debug("Discarded response for %s from invalidated generation %d", key, generation)
            return page
        finally:
            # Joiners are already awaiting this task; only drop our own marker.
            current = self._in_flight.get(key)
            if current is not None and current.generation == generation:
                del self._in_flight[key]

    def _discarded(self, keys: list[ResourceKey]) -> list[ResourceKey]:
        for key in keys:
            # A fetch of a cleared generation can no longer be joined.
            self._in_flight.pop(key, None)
            self._changed(key)
        return keys

    def invalidate(self, key: ResourceKey) -> None:
        """Discard *key*'s entry; any fetch in flight for it becomes stale."""
        self._cache.clear(key)
        self._discarded([key])

    def invalidate_where(self, resource_type: str | None = None) -> list[ResourceKey]:
        """Discard every entry (of *resource_type*, when given)."""
        if resource_type is None:
            return self._discarded(self._cache.clear_all())
        keys = self._cache.keys(resource_type)
        for key in keys:
            self._cache.clear(key)
        return self._discarded(keys)

    def invalidate_matching(self, patterns: Iterable[str]) -> list[ResourceKey]:
        """Discard every entry whose resource type matches a glob in *patterns*."""
        patterns = tuple(patterns)
        keys = [key for key in self._cache.keys() if matches_type(key.resource_type, patterns)]
        for key in keys:
            self._cache.clear(key)
        return self._discarded(keys)

    def patch(self, key: ResourceKey, update: Callable[[Any], Any]) -> bool:
        """Apply an optimistic update to *key*'s data.

        Refused while a load for *key* is in flight, since that load owns the
        entry until it completes.
        """
        if not self._cache.patch(key, update(self._cache.get(key).data)):
            _logger.debug("Optimistic update for %s skipped: load in flight", key)
            return False
        self._changed(key)
        return True
