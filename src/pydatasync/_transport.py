"""HTTP transport for the JSON backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pydatasync._redact import redact_credentials, redact_for_log, redact_headers
from pydatasync.config import SyncConfig
from pydatasync.exceptions import ResponseSchemaError, TransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
        access_token: str | None = None,
    ) -> Any:
        ...


class HttpTransport:
    """aiohttp-backed transport.

    Returns the decoded JSON body of 2xx responses. Everything else raises
    :class:`TransportError`: ``status_code`` carries the HTTP status, or is
    ``None`` when no response arrived (connection failure, timeout).
    """

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, access_token: str | None) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": self._config.user_agent,
            "x-requested-with": "XMLHttpRequest",
        }
        if access_token:
            headers["authorization"] = f"Bearer {access_token}"
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
        access_token: str | None = None,
    ) -> Any:
        url = f"{self._config.base_url}{endpoint}"
        body = json.dumps(json_body, separators=(",", ":")) if json_body is not None else None
        headers = self._headers(access_token)

        _logger.debug("%s %s params=%s", method, url, dict(params or {}))
        if self._config.api_trace_enabled:
            _logger.debug(
                "API trace request %s %s headers=%s body=%s",
                method,
                endpoint,
                redact_headers(headers),
                redact_for_log(json_body),
            )

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params) if params else None,
                data=body,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except TimeoutError as exc:
            raise TransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc

        if not 200 <= status < 300:
            raise TransportError(
                f"HTTP {status} from {endpoint}: {redact_credentials(text[:200])}",
                status_code=status,
                endpoint=endpoint,
            )

        if not text.strip():
            return None

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ResponseSchemaError(
                f"Invalid JSON from {endpoint}: {redact_credentials(text[:200])}",
                endpoint=endpoint,
            ) from exc

        if self._config.api_trace_enabled:
            _logger.debug("API trace response %s %s body=%s", method, endpoint, redact_for_log(result))
        return result
