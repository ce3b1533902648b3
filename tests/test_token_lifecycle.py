from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest
from fakes import USER, FakeBackend, FakeClock, auth_response, http_error, ok, token_gated

from pydatasync.auth import TokenLifecycleManager
from pydatasync.credentials import MemoryCredentialStore
from pydatasync.errors import ErrorKind
from pydatasync.exceptions import AuthenticationError, SessionExpiredError, TransportError
from pydatasync.store.bus import SubscriptionBus
from pydatasync.store.events import AuthChanged, AuthState, SignedOut


def _manager(
    backend: FakeBackend,
    store: MemoryCredentialStore,
    clock: FakeClock,
    *,
    refresh_leeway: float = 300.0,
) -> tuple[TokenLifecycleManager, list[AuthChanged | SignedOut]]:
    bus = SubscriptionBus()
    events: list[AuthChanged | SignedOut] = []
    bus.subscribe_auth(events.append)
    manager = TokenLifecycleManager(backend, bus, store=store, clock=clock, refresh_leeway=refresh_leeway)
    return manager, events


def _states(events: list[AuthChanged | SignedOut]) -> list[AuthState]:
    return [e.state for e in events if isinstance(e, AuthChanged)]


async def _fetch(backend: FakeBackend, endpoint: str, token: str) -> object:
    return await backend.request("GET", endpoint, access_token=token)


# ----------------------------------------------------------------------
# Sign-in / sign-out
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_login_stores_credentials_and_user(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    manager, events = _manager(backend, store, clock)

    user = await manager.login("ada@example.com", "secret")

    assert user.id == "user-1"
    assert user.display_name == "Ada Lovelace"
    assert manager.state is AuthState.AUTHENTICATED
    assert manager.session is not None
    assert manager.session.access_token == "access-1"
    assert manager.session.expires_at == clock.now + timedelta(minutes=15)
    assert _states(events) == [AuthState.SIGNING_IN, AuthState.AUTHENTICATED]
    assert events[-1].user_id == "user-1"

    assert store.get("access_token") == "access-1"
    assert store.get("refresh_token") == "refresh-1"
    assert store.get("session_id") == manager.session.session_id
    assert json.loads(store.get("user") or "{}")["_id"] == "user-1"
    assert backend.calls_to("POST", "/auth/login")[0].json_body == {
        "email": "ada@example.com",
        "password": "secret",
    }


@pytest.mark.asyncio
async def test_login_failure_surfaces_error_without_state_change(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("POST", "/auth/login", http_error(401, "/auth/login"))
    manager, events = _manager(backend, store, clock)

    with pytest.raises(AuthenticationError) as excinfo:
        await manager.login("ada@example.com", "wrong")

    assert excinfo.value.kind is ErrorKind.UNAUTHENTICATED
    assert manager.state is AuthState.SIGNED_OUT
    assert manager.session is None
    assert _states(events) == [AuthState.SIGNING_IN, AuthState.SIGNED_OUT]
    assert store.get("access_token") is None


@pytest.mark.asyncio
async def test_login_rejected_by_envelope_is_unknown(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("POST", "/auth/login", {"success": False, "message": "Invalid credentials", "data": None})
    manager, _ = _manager(backend, store, clock)

    with pytest.raises(AuthenticationError) as excinfo:
        await manager.login("ada@example.com", "wrong")
    assert excinfo.value.kind is ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_login_response_without_user_is_a_server_error(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("POST", "/auth/login", auth_response("access-1", "refresh-1", user=None))
    manager, _ = _manager(backend, store, clock)

    with pytest.raises(AuthenticationError) as excinfo:
        await manager.login("ada@example.com", "secret")
    assert excinfo.value.kind is ErrorKind.SERVER_ERROR
    assert manager.session is None


@pytest.mark.asyncio
async def test_register_signs_the_new_account_in(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("POST", "/auth/register", auth_response("access-r", "refresh-r"))
    manager, _ = _manager(backend, store, clock)

    account = {"email": "ada@example.com", "password": "secret", "firstName": "Ada"}
    user = await manager.register(account)

    assert user.email == "ada@example.com"
    assert manager.state is AuthState.AUTHENTICATED
    assert manager.session is not None
    assert manager.session.access_token == "access-r"
    assert backend.calls_to("POST", "/auth/register")[0].json_body == account


@pytest.mark.asyncio
async def test_logout_clears_state_even_when_remote_call_fails(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    manager, events = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")
    backend.on("POST", "/auth/logout", http_error(503, "/auth/logout"))

    await manager.logout()

    assert manager.state is AuthState.SIGNED_OUT
    assert manager.session is None
    assert manager.user is None
    assert store.get("access_token") is None
    assert store.get("user") is None
    logout_call = backend.calls_to("POST", "/auth/logout")[0]
    assert logout_call.access_token == "access-1"
    assert logout_call.json_body == {"refreshToken": "refresh-1"}
    assert _states(events)[-1] is AuthState.SIGNED_OUT
    assert not any(isinstance(e, SignedOut) for e in events)


# ----------------------------------------------------------------------
# Authenticated calls and refresh
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_call_without_session_raises(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    manager, _ = _manager(backend, store, clock)
    with pytest.raises(SessionExpiredError):
        await manager.call(lambda token: _fetch(backend, "/orders", token))
    assert backend.calls == []


@pytest.mark.asyncio
async def test_unauthenticated_call_refreshes_and_retries_once(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", token_gated(ok({"items": []}), valid="access-2"))
    manager, events = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")
    session_id = manager.session.session_id

    result = await manager.call(lambda token: _fetch(backend, "/orders", token))

    assert result == ok({"items": []})
    assert [c.access_token for c in backend.calls_to("GET", "/orders")] == ["access-1", "access-2"]
    assert backend.count("POST", "/auth/refresh-token") == 1
    assert backend.calls_to("POST", "/auth/refresh-token")[0].json_body == {"refreshToken": "refresh-1"}
    assert manager.session.access_token == "access-2"
    assert manager.session.refresh_token == "refresh-2"
    assert manager.session.session_id == session_id
    assert manager.user is not None
    assert store.get("access_token") == "access-2"
    assert _states(events)[-2:] == [AuthState.REFRESHING, AuthState.AUTHENTICATED]


@pytest.mark.asyncio
async def test_refresh_without_new_refresh_token_keeps_the_old_one(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("POST", "/auth/refresh-token", auth_response("access-2", None, user=None))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    session = await manager.refresh()

    assert session.access_token == "access-2"
    assert session.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_retry_happens_exactly_once(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", http_error(401, "/orders"))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    with pytest.raises(TransportError) as excinfo:
        await manager.call(lambda token: _fetch(backend, "/orders", token))

    assert excinfo.value.status_code == 401
    assert backend.count("GET", "/orders") == 2
    assert backend.count("POST", "/auth/refresh-token") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 404, 429, 500])
async def test_other_failures_are_not_retried(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock, status: int
) -> None:
    backend.on("GET", "/orders", http_error(status, "/orders"))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    with pytest.raises(TransportError):
        await manager.call(lambda token: _fetch(backend, "/orders", token))

    assert backend.count("GET", "/orders") == 1
    assert backend.count("POST", "/auth/refresh-token") == 0
    assert manager.state is AuthState.AUTHENTICATED


@pytest.mark.asyncio
async def test_concurrent_rejections_share_one_refresh(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    for resource in ("orders", "users", "products"):
        backend.on("GET", f"/{resource}", token_gated(ok({"items": [resource]}), valid="access-2"))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    results = await asyncio.gather(
        *(
            manager.call(lambda token, r=resource: _fetch(backend, f"/{r}", token))
            for resource in ("orders", "users", "products")
        )
    )

    assert backend.count("POST", "/auth/refresh-token") == 1
    assert [r["data"]["items"] for r in results] == [["orders"], ["users"], ["products"]]
    for resource in ("orders", "users", "products"):
        tokens = [c.access_token for c in backend.calls_to("GET", f"/{resource}")]
        assert tokens == ["access-1", "access-2"]


@pytest.mark.asyncio
async def test_late_rejection_of_replaced_token_skips_refresh(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/reports", token_gated(ok({"item": {"id": "r"}}), valid="access-2"))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    backend.hold("GET", "/reports")
    slow = asyncio.create_task(manager.call(lambda token: _fetch(backend, "/reports", token)))
    while backend.count("GET", "/reports") == 0:
        await asyncio.sleep(0)

    await manager.refresh()
    backend.release("GET", "/reports")
    await slow

    assert backend.count("POST", "/auth/refresh-token") == 1
    assert [c.access_token for c in backend.calls_to("GET", "/reports")] == ["access-1", "access-2"]


@pytest.mark.asyncio
async def test_requests_issued_during_refresh_wait_for_new_token(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", token_gated(ok({"items": []}), valid="access-2"))
    manager, _ = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    backend.hold("POST", "/auth/refresh-token")
    refreshing = asyncio.create_task(manager.refresh())
    while not manager.refreshing or backend.count("POST", "/auth/refresh-token") == 0:
        await asyncio.sleep(0)
    waiting = asyncio.create_task(manager.call(lambda token: _fetch(backend, "/orders", token)))
    await asyncio.sleep(0)
    assert backend.count("GET", "/orders") == 0

    backend.release("POST", "/auth/refresh-token")
    await refreshing
    await waiting
    assert [c.access_token for c in backend.calls_to("GET", "/orders")] == ["access-2"]


@pytest.mark.asyncio
async def test_refresh_failure_signs_out_and_broadcasts(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", http_error(401, "/orders"))
    backend.on("POST", "/auth/refresh-token", http_error(401, "/auth/refresh-token"))
    manager, events = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    with pytest.raises(SessionExpiredError):
        await manager.call(lambda token: _fetch(backend, "/orders", token))

    assert manager.state is AuthState.SIGNED_OUT_ERROR
    assert manager.session is None
    assert manager.user is None
    assert manager.last_error is ErrorKind.UNAUTHENTICATED
    assert store.get("access_token") is None
    assert store.get("refresh_token") is None
    assert _states(events)[-2:] == [AuthState.REFRESHING, AuthState.SIGNED_OUT_ERROR]
    assert isinstance(events[-1], SignedOut)
    assert events[-1].error is ErrorKind.UNAUTHENTICATED
    assert backend.count("GET", "/orders") == 1


@pytest.mark.asyncio
async def test_refresh_failure_is_shared_by_all_waiters(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", http_error(401, "/orders"))
    backend.on("POST", "/auth/refresh-token", http_error(500, "/auth/refresh-token"))
    manager, events = _manager(backend, store, clock)
    await manager.login("ada@example.com", "secret")

    outcomes = await asyncio.gather(
        *(manager.call(lambda token: _fetch(backend, "/orders", token)) for _ in range(3)),
        return_exceptions=True,
    )

    assert all(isinstance(o, SessionExpiredError) for o in outcomes)
    assert backend.count("POST", "/auth/refresh-token") == 1
    assert sum(isinstance(e, SignedOut) for e in events) == 1
    assert manager.last_error is ErrorKind.SERVER_ERROR


@pytest.mark.asyncio
async def test_session_near_expiry_is_refreshed_before_the_request(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    backend.on("GET", "/orders", token_gated(ok({"items": []}), valid="access-2"))
    manager, _ = _manager(backend, store, clock, refresh_leeway=120)
    await manager.login("ada@example.com", "secret")

    clock.advance(14 * 60)
    await manager.call(lambda token: _fetch(backend, "/orders", token))

    assert [c.access_token for c in backend.calls_to("GET", "/orders")] == ["access-2"]
    assert backend.count("POST", "/auth/refresh-token") == 1


# ----------------------------------------------------------------------
# Restore
# ----------------------------------------------------------------------


def _persist_session(store: MemoryCredentialStore, clock: FakeClock) -> None:
    store.set("access_token", "access-1")
    store.set("refresh_token", "refresh-1")
    store.set("expires_at", (clock.now + timedelta(hours=1)).isoformat())
    store.set("session_id", "sess-restored")
    store.set("user", json.dumps({**USER, "firstName": "Cached"}))


@pytest.mark.asyncio
async def test_restore_without_stored_credentials(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    manager, events = _manager(backend, store, clock)
    assert await manager.restore() is False
    assert manager.state is AuthState.SIGNED_OUT
    assert events == []


@pytest.mark.asyncio
async def test_restore_is_optimistic_and_confirmed_in_background(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    _persist_session(store, clock)
    manager, events = _manager(backend, store, clock)

    assert await manager.restore() is True
    assert manager.state is AuthState.AUTHENTICATED
    assert manager.user is not None
    assert manager.user.first_name == "Cached"
    assert manager.session.session_id == "sess-restored"
    assert _states(events) == [AuthState.AUTHENTICATED]

    await manager.wait_confirmed()

    assert backend.calls_to("GET", "/auth/me")[0].access_token == "access-1"
    assert manager.user.first_name == "Ada"
    assert json.loads(store.get("user") or "{}")["firstName"] == "Ada"
    assert manager.state is AuthState.AUTHENTICATED


@pytest.mark.asyncio
async def test_revoked_restored_session_signs_out(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    _persist_session(store, clock)
    backend.on("GET", "/auth/me", http_error(401, "/auth/me"))
    backend.on("POST", "/auth/refresh-token", http_error(401, "/auth/refresh-token"))
    manager, events = _manager(backend, store, clock)

    await manager.restore()
    await manager.wait_confirmed()

    assert manager.state is AuthState.SIGNED_OUT_ERROR
    assert manager.session is None
    assert store.get("access_token") is None
    assert any(isinstance(e, SignedOut) for e in events)


@pytest.mark.asyncio
async def test_restored_session_survives_unreachable_backend(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    _persist_session(store, clock)
    backend.on("GET", "/auth/me", http_error(503, "/auth/me"))
    manager, _ = _manager(backend, store, clock)

    await manager.restore()
    await manager.wait_confirmed()

    assert manager.state is AuthState.AUTHENTICATED
    assert manager.user is not None
    assert manager.user.first_name == "Cached"


@pytest.mark.asyncio
async def test_unreadable_persisted_credentials_are_discarded(
    backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock
) -> None:
    _persist_session(store, clock)
    store.set("user", "{not json")
    manager, _ = _manager(backend, store, clock)

    assert await manager.restore() is False
    assert store.get("access_token") is None
    assert manager.state is AuthState.SIGNED_OUT
