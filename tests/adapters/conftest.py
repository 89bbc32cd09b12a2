"""Adapter test fixtures -- parameterized for conformance testing."""

from __future__ import annotations

import shutil
import tempfile
import uuid
from typing import TYPE_CHECKING

import pytest

from mediaops.adapters import HostKeyPolicy, LocalAdapter, SFTPAdapter
from tests.adapters.sftp_server import SFTPTestServer

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaops._adapter import BackendAdapter


@pytest.fixture(scope="session")
def sftp_server() -> Iterator[SFTPTestServer]:
    """In-process SFTP server for the test session."""
    root = tempfile.mkdtemp(prefix="mediaops_sftp_")
    with SFTPTestServer(root) as server:
        yield server
    shutil.rmtree(root, ignore_errors=True)


def make_sftp_adapter(server: SFTPTestServer, **kwargs: object) -> SFTPAdapter:
    return SFTPAdapter(
        server.host,
        port=server.port,
        username="tester",
        password="secret",
        host_key_policy=HostKeyPolicy.AUTO_ADD,
        connect_kwargs={"allow_agent": False, "look_for_keys": False},
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture(params=["local", "sftp"])
def adapter_env(
    request: pytest.FixtureRequest, sftp_server: SFTPTestServer, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[tuple[BackendAdapter, str]]:
    """An adapter plus an empty base folder on it. Add new adapters here."""
    if request.param == "local":
        adapter: BackendAdapter = LocalAdapter(root=str(tmp_path_factory.mktemp("local")))
        base = "/media"
    else:
        adapter = make_sftp_adapter(sftp_server)
        base = f"/test_{uuid.uuid4().hex[:8]}"
    adapter.make_dirs(base)
    yield adapter, base
    adapter.close()


@pytest.fixture
def adapter(adapter_env: tuple[BackendAdapter, str]) -> BackendAdapter:
    return adapter_env[0]


@pytest.fixture
def base(adapter_env: tuple[BackendAdapter, str]) -> str:
    return adapter_env[1]
