"""Freshness, write-acceptance and invalidation-matching policy.

Pure functions, kept apart from the cache so the rules can be tested without
any state.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from fnmatch import fnmatchcase


def is_fresh(now: datetime, last_fetch_at: datetime | None, max_age: timedelta) -> bool:
    """True iff a fetch happened and ``now - last_fetch_at < max_age``."""
    if last_fetch_at is None:
        return False
    return now - last_fetch_at < max_age


def should_accept_write(*, current_generation: int, write_generation: int) -> bool:
    """Writes tagged with an invalidated generation are discarded."""
    return write_generation == current_generation


def as_max_age(value: timedelta | float | None, default: timedelta) -> timedelta:
    """Accept either a ``timedelta`` or seconds."""
    if value is None:
        return default
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


def matches_type(resource_type: str, patterns: Iterable[str]) -> bool:
    """Whether *resource_type* matches one of the glob *patterns*.

    ``*`` also spans ``/``, so ``products/*/availability`` matches
    ``products/p-1/availability`` and ``admin/*`` matches every admin view.
    """
    return any(fnmatchcase(resource_type, pattern.strip("/")) for pattern in patterns)
