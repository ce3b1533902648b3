from __future__ import annotations

import pytest
from fakes import USER, FakeBackend, FakeClock, auth_response, ok

from pydatasync.client import DataSyncClient
from pydatasync.config import SyncConfig
from pydatasync.credentials import MemoryCredentialStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.on("POST", "/auth/login", auth_response("access-1", "refresh-1"))
    backend.on("POST", "/auth/refresh-token", auth_response("access-2", "refresh-2", user=None))
    backend.on("POST", "/auth/logout", ok(None))
    backend.on("GET", "/auth/me", ok({"user": USER}))
    return backend


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(base_url="https://shop.example.com/api")


@pytest.fixture
def client(config: SyncConfig, backend: FakeBackend, store: MemoryCredentialStore, clock: FakeClock) -> DataSyncClient:
    return DataSyncClient(config, transport=backend, credential_store=store, clock=clock)
