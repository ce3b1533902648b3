"""Credential lifecycle: sign-in, silent refresh, sign-out and restore.

The manager is the only component that writes the :class:`AuthSession`.
Authenticated calls go through :meth:`TokenLifecycleManager.call`, which
attaches the current access token and, when the backend rejects it,
refreshes once and retries once.

Refresh is single-flight. Concurrent rejections join the one refresh task,
and a rejection that arrives after the token it used has already been
replaced skips the refresh and retries straight away.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import ValidationError

from pydatasync._api import auth as _auth_api
from pydatasync._constants import (
    LOGIN_ENDPOINT,
    REFRESH_ENDPOINT,
    REGISTER_ENDPOINT,
    STORE_ACCESS_TOKEN,
    STORE_EXPIRES_AT,
    STORE_KEYS,
    STORE_REFRESH_TOKEN,
    STORE_SESSION_ID,
    STORE_USER,
)
from pydatasync._transport import Transport
from pydatasync.credentials import CredentialStore, MemoryCredentialStore
from pydatasync.errors import ErrorKind, classify, describe, log_failure
from pydatasync.exceptions import (
    AuthenticationError,
    CredentialStoreError,
    ResponseSchemaError,
    SessionExpiredError,
    TransportError,
)
from pydatasync.models.envelope import AuthPayload
from pydatasync.models.user import UserRecord
from pydatasync.session import AuthSession
from pydatasync.store.bus import SubscriptionBus
from pydatasync.store.events import AuthChanged, AuthState, SignedOut

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _session_expired_error() -> SessionExpiredError:
    return SessionExpiredError(
        describe(ErrorKind.UNAUTHENTICATED),
        kind=ErrorKind.UNAUTHENTICATED,
        endpoint=REFRESH_ENDPOINT,
    )


class TokenLifecycleManager:
    """Owns the access/refresh credentials and the auth state machine.

    States: ``SIGNED_OUT``, ``SIGNING_IN``, ``AUTHENTICATED``,
    ``REFRESHING`` and ``SIGNED_OUT_ERROR`` (signed out because a refresh
    failed or a restored session was revoked). Every transition is published
    as an :class:`AuthChanged` event; an involuntary sign-out is additionally
    broadcast as :class:`SignedOut` to every subscriber.
    """

    def __init__(
        self,
        transport: Transport,
        bus: SubscriptionBus,
        *,
        store: CredentialStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        refresh_leeway: float = 0.0,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._store: CredentialStore = store if store is not None else MemoryCredentialStore()
        self._clock = clock
        self._refresh_leeway = refresh_leeway
        self._state = AuthState.SIGNED_OUT
        self._session: AuthSession | None = None
        self._user: UserRecord | None = None
        self._last_error: ErrorKind | None = None
        self._refresh_task: asyncio.Task[AuthSession] | None = None
        self._confirm_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def user(self) -> UserRecord | None:
        return self._user

    @property
    def last_error(self) -> ErrorKind | None:
        """Error kind that caused the last involuntary sign-out."""
        return self._last_error

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._state.is_signed_in

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None

    # ------------------------------------------------------------------
    # State and persistence helpers
    # ------------------------------------------------------------------

    def _transition(self, state: AuthState, *, error: ErrorKind | None = None) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        _logger.info("Auth state %s -> %s", previous, state)
        self._bus.publish_auth(
            AuthChanged(
                state=state,
                previous=previous,
                user_id=self._user.id if self._user is not None else None,
                error=error,
            )
        )

    def _persist(self) -> None:
        session = self._session
        if session is None:
            return
        values = {
            STORE_ACCESS_TOKEN: session.access_token,
            STORE_REFRESH_TOKEN: session.refresh_token,
            STORE_EXPIRES_AT: session.expires_at.isoformat(),
            STORE_SESSION_ID: session.session_id,
        }
        if self._user is not None:
            values[STORE_USER] = json.dumps(self._user.raw or self._user.model_dump(mode="json"))
        try:
            for key, value in values.items():
                self._store.set(key, value)
        except CredentialStoreError:
            _logger.warning("Could not persist credentials; the session will not survive a restart", exc_info=True)

    def _clear(self) -> None:
        self._session = None
        self._user = None
        try:
            for key in STORE_KEYS:
                self._store.delete(key)
        except CredentialStoreError:
            _logger.warning("Could not remove persisted credentials", exc_info=True)

    def _install(self, payload: AuthPayload, previous: AuthSession | None = None) -> AuthSession:
        session = AuthSession.from_tokens(payload.tokens, now=self._clock(), previous=previous)
        self._session = session
        if payload.user is not None:
            self._user = payload.user
        self._persist()
        return session

    # ------------------------------------------------------------------
    # Sign-in / sign-out
    # ------------------------------------------------------------------

    async def _sign_in(self, endpoint: str, request: Callable[[], Awaitable[AuthPayload]]) -> UserRecord:
        previous = self._state
        self._transition(AuthState.SIGNING_IN)
        try:
            payload = await request()
            if payload.user is None:
                raise ResponseSchemaError(f"{endpoint} response is missing the user record", endpoint=endpoint)
        except Exception as exc:
            kind = classify(exc)
            log_failure(endpoint, exc, kind)
            self._transition(previous)
            raise AuthenticationError(describe(kind), kind=kind, endpoint=endpoint) from exc

        self._install(payload)
        self._last_error = None
        self._transition(AuthState.AUTHENTICATED)
        return payload.user

    async def login(self, email: str, password: str) -> UserRecord:
        """Authenticate with account credentials.

        Raises :class:`AuthenticationError` on failure; the previous state
        (and session, if any) is kept.
        """
        return await self._sign_in(LOGIN_ENDPOINT, lambda: _auth_api.login(self._transport, email, password))

    async def register(self, account: Mapping[str, Any]) -> UserRecord:
        """Create an account and sign it in."""
        return await self._sign_in(REGISTER_ENDPOINT, lambda: _auth_api.register(self._transport, account))

    async def logout(self) -> None:
        """Sign out. The remote call is best-effort; local state is always cleared."""
        session = self._session
        if session is not None:
            try:
                await _auth_api.logout(self._transport, session.access_token, session.refresh_token or None)
            except Exception as exc:
                _logger.warning("Remote logout failed (%s); clearing local session anyway", classify(exc))
                _logger.debug("Remote logout failure detail", exc_info=exc)
        self._cancel_confirmation()
        self._clear()
        self._last_error = None
        self._transition(AuthState.SIGNED_OUT)

    def _sign_out_forced(self, kind: ErrorKind) -> None:
        _logger.warning("Signing out: session could not be refreshed (%s)", kind)
        self._clear()
        self._last_error = kind
        self._transition(AuthState.SIGNED_OUT_ERROR, error=kind)
        self._bus.broadcast(SignedOut(error=kind))

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> AuthSession:
        """Exchange the refresh token for new credentials.

        Joins the refresh already in flight, if any. On failure every
        credential is cleared, the manager enters ``SIGNED_OUT_ERROR`` and
        :class:`SessionExpiredError` is raised to every waiting caller.
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_refresh(), name="pydatasync-refresh")
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._refresh_task = task
        else:
            _logger.debug("Joining in-flight token refresh")
        return await asyncio.shield(task)

    async def _run_refresh(self) -> AuthSession:
        try:
            session = self._session
            if session is None:
                raise _session_expired_error()
            if not session.refresh_token:
                self._sign_out_forced(ErrorKind.UNAUTHENTICATED)
                raise _session_expired_error()

            self._transition(AuthState.REFRESHING)
            try:
                payload = await _auth_api.refresh(self._transport, session.refresh_token)
            except Exception as exc:
                kind = classify(exc)
                log_failure("Token refresh", exc, kind)
                if self._session is session:
                    self._sign_out_forced(kind)
                raise _session_expired_error() from exc

            if self._session is not session:
                # Logged out or signed in again while the refresh was running.
                if self._session is None:
                    raise _session_expired_error()
                return self._session

            refreshed = self._install(payload, previous=session)
            self._transition(AuthState.AUTHENTICATED)
            _logger.debug("Session %s refreshed", refreshed.session_id)
            return refreshed
        finally:
            self._refresh_task = None

    async def _refresh_after_rejection(self, rejected: AuthSession) -> AuthSession:
        current = self._session
        if current is None:
            raise _session_expired_error()
        if current.access_token != rejected.access_token:
            # Someone else already replaced the rejected token.
            return current
        return await self.refresh()

    async def ensure_session(self) -> AuthSession:
        """Return usable credentials, waiting for or starting a refresh as needed."""
        if self._refresh_task is not None:
            return await asyncio.shield(self._refresh_task)
        session = self._session
        if session is None:
            raise SessionExpiredError(
                describe(ErrorKind.UNAUTHENTICATED),
                kind=ErrorKind.UNAUTHENTICATED,
            )
        if session.is_expired(self._clock(), leeway=self._refresh_leeway):
            _logger.debug("Session %s is about to expire; refreshing proactively", session.session_id)
            return await self._refresh_after_rejection(session)
        return session

    async def call(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Run *operation* with the current access token.

        An unauthenticated rejection triggers (or joins) the silent refresh,
        after which *operation* is retried exactly once.
        """
        session = await self.ensure_session()
        try:
            return await operation(session.access_token)
        except TransportError as exc:
            if classify(exc) is not ErrorKind.UNAUTHENTICATED:
                raise
            _logger.debug("Request rejected as unauthenticated; refreshing session %s", session.session_id)
        refreshed = await self._refresh_after_rejection(session)
        return await operation(refreshed.access_token)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _load_persisted(self) -> tuple[AuthSession, UserRecord] | None:
        try:
            access_token = self._store.get(STORE_ACCESS_TOKEN)
            user_json = self._store.get(STORE_USER)
            refresh_token = self._store.get(STORE_REFRESH_TOKEN) or ""
            expires_at = self._store.get(STORE_EXPIRES_AT)
            session_id = self._store.get(STORE_SESSION_ID)
        except CredentialStoreError:
            _logger.warning("Could not read persisted credentials", exc_info=True)
            return None
        if not access_token or not user_json:
            return None
        try:
            user = UserRecord.model_validate(json.loads(user_json))
            fields: dict[str, Any] = {
                "access_token": access_token,
                "refresh_token": refresh_token,
                # Unknown expiry: treat as expired so the first use refreshes.
                "expires_at": datetime.fromisoformat(expires_at) if expires_at else self._clock(),
            }
            if session_id:
                fields["session_id"] = session_id
            session = AuthSession.model_validate(fields)
        except (ValueError, ValidationError):
            _logger.warning("Discarding unreadable persisted credentials", exc_info=True)
            self._clear()
            return None
        return session, user

    async def restore(self, *, confirm: bool = True) -> bool:
        """Optimistically resume a persisted session.

        Returns ``True`` when stored credentials and a cached user record
        were found; the manager is then ``AUTHENTICATED`` immediately and,
        with *confirm*, a background current-user check validates the
        session (see :meth:`wait_confirmed`).
        """
        if self._session is not None:
            return True
        persisted = self._load_persisted()
        if persisted is None:
            return False
        self._session, self._user = persisted
        _logger.info("Restored session %s for user %s", self._session.session_id, self._user.id)
        self._transition(AuthState.AUTHENTICATED)
        if confirm:
            self._confirm_task = asyncio.get_running_loop().create_task(
                self._confirm_restored(),
                name="pydatasync-confirm-session",
            )
        return True

    async def _confirm_restored(self) -> None:
        try:
            user = await self.call(lambda token: _auth_api.fetch_current_user(self._transport, token))
        except SessionExpiredError:
            _logger.info("Restored session was revoked")
            return
        except Exception as exc:
            kind = classify(exc)
            if kind is ErrorKind.UNAUTHENTICATED and self._session is not None:
                # Still rejected after a successful refresh.
                self._sign_out_forced(kind)
                return
            _logger.warning("Could not confirm restored session (%s); keeping it", kind)
            _logger.debug("Session confirmation failure detail", exc_info=exc)
            return
        finally:
            self._confirm_task = None
        if self._session is not None:
            self._user = user
            self._persist()

    async def wait_confirmed(self) -> None:
        """Wait for the background confirmation started by :meth:`restore`."""
        task = self._confirm_task
        if task is not None:
            await asyncio.shield(task)

    def _cancel_confirmation(self) -> None:
        task = self._confirm_task
        self._confirm_task = None
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        """Stop background work; credentials are left untouched."""
        self._cancel_confirmation()
