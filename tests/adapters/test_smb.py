"""SMB adapter tests with a mocked ``smbclient`` module."""

from __future__ import annotations

import stat
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from smbprotocol.exceptions import SMBAuthenticationError, SMBConnectionClosed

from mediaops._errors import (
    ConflictError,
    InvalidPathError,
    NotFound,
    PermissionDeniedError,
    RemoteConnectionError,
)
from mediaops._locator import resolve
from mediaops._models import NetworkCredentials
from mediaops.adapters import SMBAdapter

SHARE = "\\\\nas\\media"


def _client(*existing: str) -> MagicMock:
    """A mocked ``smbclient`` where only ``existing`` UNC paths stat successfully."""
    present = set(existing)
    client = MagicMock()

    def _stat(unc: str, port: int = 445) -> SimpleNamespace:
        if unc not in present:
            raise FileNotFoundError(unc)
        return SimpleNamespace(st_mode=stat.S_IFREG, st_size=1, st_mtime=0)

    client.stat.side_effect = _stat
    return client


def _entry(name: str, *, folder: bool = False, size: int = 0) -> SimpleNamespace:
    info = SimpleNamespace(st_mode=stat.S_IFDIR if folder else stat.S_IFREG, st_size=size, st_mtime=1_700_000_000)
    return SimpleNamespace(name=name, stat=lambda: info, is_dir=lambda: folder)


def _adapter(client: MagicMock, **kwargs: object) -> SMBAdapter:
    return SMBAdapter("nas", username="alice", password="pw", client=client, **kwargs)  # type: ignore[arg-type]


class TestSMBSession:
    def test_session_registered_once(self) -> None:
        client = _client(f"{SHARE}\\a.jpg")
        adapter = _adapter(client, domain="HOME")
        adapter.exists("/media/a.jpg")
        adapter.exists("/media/b.jpg")
        client.register_session.assert_called_once_with(
            "nas", username="HOME\\alice", password="pw", port=445, connection_timeout=30
        )

    def test_rejected_login(self) -> None:
        client = _client()
        client.register_session.side_effect = SMBAuthenticationError("bad password")
        with pytest.raises(PermissionDeniedError, match="authentication failed"):
            _adapter(client).exists("/media/a.jpg")

    def test_unreachable_server(self) -> None:
        client = _client()
        client.register_session.side_effect = ValueError("Failed to connect to 'nas:445'")
        with pytest.raises(RemoteConnectionError, match="Cannot connect"):
            _adapter(client).exists("/media/a.jpg")

    def test_dropped_connection_registers_again(self) -> None:
        client = _client()
        client.open_file.side_effect = [SMBConnectionClosed(), MagicMock()]
        adapter = _adapter(client)
        with pytest.raises(RemoteConnectionError):
            adapter.read("/media/a.jpg")
        adapter.read("/media/a.jpg")
        assert client.register_session.call_count == 2

    def test_close_deletes_session(self) -> None:
        client = _client()
        adapter = _adapter(client)
        adapter.exists("/media/a.jpg")
        adapter.close()
        client.delete_session.assert_called_once_with("nas", port=445)

    def test_close_ignores_session_errors(self) -> None:
        client = _client()
        client.delete_session.side_effect = OSError("already gone")
        adapter = _adapter(client)
        adapter.exists("/media/a.jpg")
        adapter.close()

    def test_from_locator(self) -> None:
        creds = NetworkCredentials("nas", "smb", "nas", 445, username="alice", secret="pw", domain="HOME")
        adapter = SMBAdapter.from_locator(resolve("smb://nas/media/a.jpg"), creds)
        assert adapter._username == "HOME\\alice"
        assert adapter._port == 445


class TestSMBPaths:
    def test_unc_conversion(self) -> None:
        assert _adapter(_client())._unc("/media/photos/a.jpg") == "\\\\nas\\media\\photos\\a.jpg"

    def test_share_required(self) -> None:
        with pytest.raises(InvalidPathError, match="share"):
            _adapter(_client())._unc("/")


class TestSMBOperations:
    def test_read_missing(self) -> None:
        client = _client()
        client.open_file.side_effect = FileNotFoundError("a.jpg")
        with pytest.raises(NotFound):
            _adapter(client).read("/media/a.jpg")

    def test_write_creates_parent_and_refuses_overwrite(self) -> None:
        client = _client()
        handle = client.open_file.return_value.__enter__.return_value

        written = _adapter(client).write("/media/photos/a.jpg", b"abc")

        assert written == 3
        client.makedirs.assert_called_once_with(f"{SHARE}\\photos", exist_ok=True, port=445)
        client.open_file.assert_called_once_with(f"{SHARE}\\photos\\a.jpg", mode="xb", port=445)
        handle.write.assert_called_once_with(b"abc")

    def test_write_at_share_root_skips_makedirs(self) -> None:
        client = _client()
        _adapter(client).write("/media/a.jpg", b"a", overwrite=True)
        client.makedirs.assert_not_called()
        client.open_file.assert_called_once_with(f"{SHARE}\\a.jpg", mode="wb", port=445)

    def test_existing_file_conflicts(self) -> None:
        client = _client()
        client.open_file.side_effect = FileExistsError("a.jpg")
        with pytest.raises(ConflictError):
            _adapter(client).write("/media/a.jpg", b"a")

    def test_access_denied(self) -> None:
        client = _client()
        client.remove.side_effect = PermissionError("read-only share")
        with pytest.raises(PermissionDeniedError):
            _adapter(client).delete("/media/a.jpg")

    def test_delete_missing_ok(self) -> None:
        client = _client()
        client.remove.side_effect = FileNotFoundError("a.jpg")
        assert _adapter(client).delete("/media/a.jpg", missing_ok=True) is False

    def test_list(self) -> None:
        client = _client(SHARE)
        client.scandir.return_value = [_entry("b.jpg", size=5), _entry("album", folder=True)]

        entries = list(_adapter(client).list("/media"))

        assert [e.path for e in entries] == ["/media/album", "/media/b.jpg"]
        assert entries[0].is_folder
        assert entries[1].size == 5

    def test_list_missing_folder(self) -> None:
        assert list(_adapter(_client()).list("/media/nowhere")) == []

    def test_move_renames(self) -> None:
        client = _client(f"{SHARE}\\a.jpg")
        _adapter(client).move("/media/a.jpg", "/media/.trash_1/a.jpg")
        client.makedirs.assert_called_once_with(f"{SHARE}\\.trash_1", exist_ok=True, port=445)
        client.rename.assert_called_once_with(f"{SHARE}\\a.jpg", f"{SHARE}\\.trash_1\\a.jpg", port=445)

    def test_move_with_overwrite_replaces(self) -> None:
        client = _client(f"{SHARE}\\a.jpg", f"{SHARE}\\b.jpg")
        _adapter(client).move("/media/a.jpg", "/media/b.jpg", overwrite=True)
        client.replace.assert_called_once_with(f"{SHARE}\\a.jpg", f"{SHARE}\\b.jpg", port=445)

    def test_move_conflict(self) -> None:
        client = _client(f"{SHARE}\\a.jpg", f"{SHARE}\\b.jpg")
        with pytest.raises(ConflictError):
            _adapter(client).move("/media/a.jpg", "/media/b.jpg")
        client.rename.assert_not_called()

    def test_copy_is_server_side(self) -> None:
        client = _client(f"{SHARE}\\a.jpg")
        _adapter(client).copy("/media/a.jpg", "/media/a copy.jpg")
        client.copyfile.assert_called_once_with(f"{SHARE}\\a.jpg", f"{SHARE}\\a copy.jpg", port=445)

    def test_delete_folder_recursive(self) -> None:
        trash = f"{SHARE}\\.trash_1"
        client = _client(trash)
        client.scandir.side_effect = lambda unc, port: [_entry("a.jpg")] if unc == trash else []
        _adapter(client).delete_folder("/media/.trash_1", recursive=True)
        client.remove.assert_called_once_with(f"{trash}\\a.jpg", port=445)
        client.rmdir.assert_called_once_with(trash, port=445)
