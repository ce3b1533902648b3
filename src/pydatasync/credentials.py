"""Non-volatile key-value storage for auth state.

Only the access token, refresh token, expiry, session id and last-known user
record are ever persisted; cached resource data never is.

:class:`FileCredentialStore` keeps one JSON object per backend origin in a
single file. Writes go through a temporary file that replaces the target
atomically, and the file is created owner read/write only (``0600``).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydatasync.exceptions import CredentialStoreError

_logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Structural interface of a per-origin key-value store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Volatile store; the default when no credentials path is configured."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileCredentialStore:
    """JSON-file store namespaced by origin.

    Example:
        >>> store = FileCredentialStore("~/.pydatasync/credentials.json", "https://shop.example.com")
        >>> store.set("access_token", "abc")
        >>> store.get("access_token")
        'abc'
    """

    def __init__(self, path: str | os.PathLike[str], namespace: str) -> None:
        self._path = Path(path).expanduser()
        self._namespace = namespace

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, dict[str, str]]:
        if not self._path.exists():
            return {}
        try:
            content = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            _logger.warning("Credential store %s is corrupt; treating it as empty", self._path)
            return {}
        except OSError as exc:
            raise CredentialStoreError(f"Failed to read credential store {self._path}: {exc}") from exc
        if not isinstance(content, dict):
            _logger.warning("Credential store %s has an unexpected layout; treating it as empty", self._path)
            return {}
        return {ns: values for ns, values in content.items() if isinstance(values, dict)}

    def _write_all(self, content: dict[str, dict[str, str]]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(content, handle, separators=(",", ":"), sort_keys=True)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CredentialStoreError(f"Failed to write credential store {self._path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        value = self._read_all().get(self._namespace, {}).get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        content = self._read_all()
        content.setdefault(self._namespace, {})[key] = value
        self._write_all(content)

    def delete(self, key: str) -> None:
        content = self._read_all()
        values = content.get(self._namespace)
        if values is None or key not in values:
            return
        del values[key]
        if not values:
            del content[self._namespace]
        self._write_all(content)
