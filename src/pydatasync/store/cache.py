"""In-memory per-resource cache.

Each entry carries a generation. A write is tagged with the generation its
operation started under and is discarded when the key has been cleared
since, so an invalidated response can never resurrect discarded state.

Generations are drawn from one cache-wide counter that only moves forward:
clearing or evicting a key advances it, and an absent key reports its
current value. Nothing is remembered about keys that are gone, yet a
generation handed out before a clear is never handed out again.

The cache is bounded. Once it holds ``max_entries`` keys, the least recently
used entries that are not loading are evicted.
"""

from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict

from pydatasync._constants import DEFAULT_MAX_AGE, DEFAULT_MAX_ENTRIES
from pydatasync.errors import ErrorKind
from pydatasync.models.resources import Pagination
from pydatasync.store.keys import ResourceKey
from pydatasync.store.policy import as_max_age, is_fresh, should_accept_write

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CacheEntry(BaseModel):
    """Read-only snapshot of one cache entry.

    ``data`` is a private copy; mutating it never affects the cache.
    """

    model_config = ConfigDict(frozen=True)

    data: Any = None
    pagination: Pagination | None = None
    loading: bool = False
    error: ErrorKind | None = None
    last_fetch_at: datetime | None = None
    generation: int = 0

    @property
    def is_empty(self) -> bool:
        return self.data is None and not self.loading and self.error is None


@dataclass
class _Slot:
    generation: int
    data: Any = None
    pagination: Pagination | None = None
    loading: bool = False
    error: ErrorKind | None = None
    last_fetch_at: datetime | None = None


class ResourceCache:
    """Per-key store of ``{data, loading, error, last_fetch_at}``.

    Writes are last-write-wins per key in the order they are applied, which
    the coordinator makes the completion order of the network operations.

    Parameters
    ----------
    clock : Callable[[], datetime]
        Source of the current time; stamps fetches and judges freshness.
    default_max_age : timedelta or float
        Freshness window used when :meth:`is_fresh` is given none.
    max_entries : int or None
        Upper bound on cached keys. ``None`` disables eviction.
    on_evict : Callable[[ResourceKey], None] or None
        Called for every key dropped to respect ``max_entries``.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        default_max_age: timedelta | float = DEFAULT_MAX_AGE,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        on_evict: Callable[[ResourceKey], None] | None = None,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._clock = clock
        self._default_max_age = as_max_age(default_max_age, timedelta(seconds=DEFAULT_MAX_AGE))
        self._max_entries = max_entries
        self._on_evict = on_evict
        # Least recently used first.
        self._slots: OrderedDict[ResourceKey, _Slot] = OrderedDict()
        self._floor = 0

    def _advance(self) -> None:
        self._floor += 1

    def _slot(self, key: ResourceKey) -> _Slot:
        slot = self._slots.get(key)
        if slot is not None:
            self._slots.move_to_end(key)
            return slot
        slot = _Slot(generation=self._floor)
        self._slots[key] = slot
        self._evict(keep=key)
        return slot

    def _evict(self, *, keep: ResourceKey) -> None:
        if self._max_entries is None:
            return
        excess = len(self._slots) - self._max_entries
        if excess <= 0:
            return
        victims: list[ResourceKey] = []
        for key, slot in self._slots.items():
            if len(victims) == excess:
                break
            if key != keep and not slot.loading:
                victims.append(key)
        for key in victims:
            del self._slots[key]
        if not victims:
            return
        self._advance()
        _logger.debug("Evicted %d least recently used entries", len(victims))
        if self._on_evict is not None:
            for key in victims:
                self._on_evict(key)

    def _accepts(self, key: ResourceKey, generation: int) -> bool:
        return should_accept_write(current_generation=self.generation(key), write_generation=generation)

    def generation(self, key: ResourceKey) -> int:
        slot = self._slots.get(key)
        return self._floor if slot is None else slot.generation

    def get(self, key: ResourceKey) -> CacheEntry:
        slot = self._slots.get(key)
        if slot is None:
            return CacheEntry(generation=self._floor)
        self._slots.move_to_end(key)
        return CacheEntry(
            data=copy.deepcopy(slot.data),
            pagination=slot.pagination,
            loading=slot.loading,
            error=slot.error,
            last_fetch_at=slot.last_fetch_at,
            generation=slot.generation,
        )

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def keys(self, resource_type: str | None = None) -> list[ResourceKey]:
        if resource_type is None:
            return list(self._slots)
        return [key for key in self._slots if key.resource_type == resource_type]

    def set(
        self,
        key: ResourceKey,
        data: Any,
        *,
        generation: int,
        pagination: Pagination | None = None,
    ) -> bool:
        """Replace data, clear the error and stamp the fetch time.

        Returns ``False`` (and changes nothing) for a stale generation.
        """
        if not self._accepts(key, generation):
            return False
        slot = self._slot(key)
        slot.data = copy.deepcopy(data)
        slot.pagination = pagination
        slot.error = None
        slot.loading = False
        slot.last_fetch_at = self._clock()
        return True

    def set_loading(self, key: ResourceKey, loading: bool, *, generation: int) -> bool:
        if not self._accepts(key, generation):
            return False
        slot = self._slot(key)
        slot.loading = loading
        return True

    def set_error(self, key: ResourceKey, kind: ErrorKind, *, generation: int) -> bool:
        """Record a failed load; previously fetched data is kept."""
        if not self._accepts(key, generation):
            return False
        slot = self._slot(key)
        slot.error = kind
        slot.loading = False
        return True

    def patch(self, key: ResourceKey, data: Any) -> bool:
        """Replace data without touching freshness; refused while loading."""
        slot = self._slots.get(key)
        if slot is not None and slot.loading:
            return False
        self._slot(key).data = copy.deepcopy(data)
        return True

    def is_fresh(self, key: ResourceKey, max_age: timedelta | float | None = None) -> bool:
        slot = self._slots.get(key)
        if slot is None:
            return False
        return is_fresh(self._clock(), slot.last_fetch_at, as_max_age(max_age, self._default_max_age))

    def clear(self, key: ResourceKey) -> bool:
        """Reset *key* to the absent state and start a new generation."""
        self._advance()
        return self._slots.pop(key, None) is not None

    def clear_all(self) -> list[ResourceKey]:
        cleared = list(self._slots)
        self._slots.clear()
        self._advance()
        return cleared
