"""Shared test fixtures and marker registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from mediaops._config import EngineConfig
from mediaops._credentials import InMemoryCredentialStore
from mediaops._models import NetworkCredentials
from mediaops._orchestrator import OperationOrchestrator
from tests.fakes import FakeClock, MemoryAdapter, StubRefresher

if TYPE_CHECKING:
    from collections.abc import Iterator


def pytest_configure(config: object) -> None:
    """Register custom markers."""
    if isinstance(config, pytest.Config):
        config.addinivalue_line("markers", "integration: requires external services")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def refresher() -> StubRefresher:
    return StubRefresher()


@pytest.fixture
def smb() -> MemoryAdapter:
    return MemoryAdapter("smb")


@pytest.fixture
def dropbox() -> MemoryAdapter:
    return MemoryAdapter("cloud:dropbox")


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(
        [
            NetworkCredentials("nas", "smb", "nas", 445, username="alice", secret="pw", share_name="media"),
            NetworkCredentials("box", "cloud:dropbox", "dropbox", None, secret="refresh-token"),
        ]
    )


@pytest.fixture
def orchestrator(
    credentials: InMemoryCredentialStore,
    smb: MemoryAdapter,
    dropbox: MemoryAdapter,
    refresher: StubRefresher,
    clock: FakeClock,
) -> Iterator[OperationOrchestrator]:
    """Orchestrator wired to in-memory SMB and Dropbox resources and the real local filesystem."""
    o = OperationOrchestrator(
        credentials,
        config=EngineConfig(connect_retry_wait=0),
        refresher=refresher,
        factories={"smb": smb.factory, "cloud:dropbox": dropbox.factory},
        clock=clock,
    )
    yield o
    o.close()
