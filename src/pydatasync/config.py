"""Client configuration for pydatasync."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from pydatasync._constants import (
    BASE_URL,
    DEFAULT_MAX_AGE,
    DEFAULT_MAX_ENTRIES,
    DEFAULT_REFRESH_LEEWAY,
    USER_AGENT,
)
from pydatasync.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _parse_overrides(value: str) -> dict[str, float]:
    """Parse ``orders=60,categories=1800`` into a mapping."""
    overrides: dict[str, float] = {}
    for chunk in value.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, seconds = chunk.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"Invalid max-age override {chunk!r}; expected <resource>=<seconds>")
        try:
            overrides[name.strip()] = float(seconds)
        except ValueError as exc:
            raise ConfigError(f"Invalid max-age override {chunk!r}; seconds must be numeric") from exc
    return overrides


def _parse_rules(value: str) -> dict[str, tuple[str, ...]]:
    """Parse ``orders=cart,products/*/availability;cart=shipping`` into a mapping."""
    rules: dict[str, tuple[str, ...]] = {}
    for chunk in value.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, related = chunk.partition("=")
        patterns = tuple(p.strip() for p in related.split(",") if p.strip())
        if not sep or not name.strip() or not patterns:
            raise ConfigError(f"Invalid invalidation rule {chunk!r}; expected <resource>=<pattern>[,<pattern>...]")
        rules[name.strip()] = patterns
    return rules


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backend API root, e.g. ``"https://shop.example.com/api"``.
    max_age : float
        Seconds a fetched resource is reused without a network call.
        Defaults to 5 minutes.
    max_age_overrides : Mapping[str, float]
        Per-resource-type freshness windows that take precedence over
        ``max_age`` (e.g. ``{"categories": 1800}``).
    max_entries : int
        Cached keys kept before the least recently used are evicted.
        Every distinct filter or page is a key. Defaults to 100.
    invalidation_rules : Mapping[str, tuple[str, ...]]
        Resource types a successful write to a type also makes stale,
        as glob patterns (e.g. ``{"orders": ("cart", "products/*/availability")}``).
        A write always invalidates its own type.
    request_timeout : float
        Total seconds allowed per HTTP request. A timeout is reported as
        a network failure.
    refresh_leeway : float
        Refresh the session this many seconds before its expiry instead
        of waiting for the backend to reject it. With ``0`` the session
        is refreshed only once it has expired.
    credentials_path : str or None
        File backing the persistent credential store. ``None`` keeps
        credentials in memory only.
    api_trace_enabled : bool
        Log every request/response pair (redacted) at DEBUG level.
    user_agent : str
        ``User-Agent`` header sent with every request.
    """

    base_url: str = BASE_URL
    max_age: float = DEFAULT_MAX_AGE
    max_age_overrides: Mapping[str, float] = dataclasses.field(default_factory=dict)
    max_entries: int = DEFAULT_MAX_ENTRIES
    invalidation_rules: Mapping[str, tuple[str, ...]] = dataclasses.field(default_factory=dict)
    request_timeout: float = 30.0
    refresh_leeway: float = DEFAULT_REFRESH_LEEWAY
    credentials_path: str | None = None
    api_trace_enabled: bool = False
    user_agent: str = USER_AGENT

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigError("base_url is required")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.max_age < 0:
            raise ConfigError("max_age must not be negative")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.max_entries < 1:
            raise ConfigError("max_entries must be at least 1")
        rules = {
            name: (related,) if isinstance(related, str) else tuple(related)
            for name, related in self.invalidation_rules.items()
        }
        object.__setattr__(self, "invalidation_rules", rules)

    def related_patterns(self, resource_type: str) -> tuple[str, ...]:
        """Glob patterns of the types a write to *resource_type* also invalidates."""
        return self.invalidation_rules.get(resource_type, ())

    @property
    def origin(self) -> str:
        """Scheme and host of ``base_url``; namespaces persisted credentials."""
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"

    def max_age_for(self, resource_type: str) -> float:
        """Freshness window (seconds) for *resource_type*."""
        return float(self.max_age_overrides.get(resource_type, self.max_age))

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``DATASYNC_BASE_URL`` and the optional ``DATASYNC_*``
        variables below. Explicit keyword arguments override environment
        values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SyncConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        for env_key, field_name in {
            "DATASYNC_BASE_URL": "base_url",
            "DATASYNC_CREDENTIALS_PATH": "credentials_path",
            "DATASYNC_USER_AGENT": "user_agent",
        }.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # Numeric fields, handled separately
        for env_key, field_name in {
            "DATASYNC_MAX_AGE": "max_age",
            "DATASYNC_REQUEST_TIMEOUT": "request_timeout",
            "DATASYNC_REFRESH_LEEWAY": "refresh_leeway",
        }.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise ConfigError(f"{env_key} must be numeric, got {val!r}") from exc

        max_entries = env.get("DATASYNC_MAX_ENTRIES")
        if max_entries is not None and "max_entries" not in overrides:
            try:
                config_kwargs["max_entries"] = int(max_entries)
            except ValueError as exc:
                raise ConfigError(f"DATASYNC_MAX_ENTRIES must be an integer, got {max_entries!r}") from exc

        age_overrides = env.get("DATASYNC_MAX_AGE_OVERRIDES")
        if age_overrides is not None and "max_age_overrides" not in overrides:
            config_kwargs["max_age_overrides"] = _parse_overrides(age_overrides)

        rules = env.get("DATASYNC_INVALIDATION_RULES")
        if rules is not None and "invalidation_rules" not in overrides:
            config_kwargs["invalidation_rules"] = _parse_rules(rules)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(
                env.get("DATASYNC_API_TRACE_ENABLED"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
