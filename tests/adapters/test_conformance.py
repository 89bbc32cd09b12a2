"""Adapter conformance suite -- the BackendAdapter contract against every adapter."""

from __future__ import annotations

import io

import pytest

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import CapabilitySet
from mediaops._errors import ConflictError, MediaOpsError, NotFound
from mediaops._models import FileDescriptor


class TestIdentity:
    def test_is_adapter(self, adapter: BackendAdapter) -> None:
        assert isinstance(adapter, BackendAdapter)
        assert isinstance(adapter.name, str)
        assert adapter.name

    def test_capabilities(self, adapter: BackendAdapter) -> None:
        assert isinstance(adapter.capabilities, CapabilitySet)
        assert not adapter.read_only

    def test_supports_own_backend_type(self, adapter: BackendAdapter) -> None:
        assert adapter.supports(adapter.name)
        assert not adapter.supports("gopher")


class TestExists:
    def test_missing(self, adapter: BackendAdapter, base: str) -> None:
        assert adapter.exists(f"{base}/missing.jpg") is False

    def test_after_write(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        assert adapter.exists(f"{base}/a.jpg") is True

    def test_folder(self, adapter: BackendAdapter, base: str) -> None:
        adapter.make_dirs(f"{base}/album/2024")
        assert adapter.exists(f"{base}/album")
        assert adapter.exists(f"{base}/album/2024")


class TestReadWrite:
    def test_round_trip_bytes(self, adapter: BackendAdapter, base: str) -> None:
        assert adapter.write(f"{base}/a.bin", b"\x00\x01\x02") == 3
        with adapter.read(f"{base}/a.bin") as stream:
            assert stream.read() == b"\x00\x01\x02"

    def test_write_stream(self, adapter: BackendAdapter, base: str) -> None:
        payload = bytes(range(256)) * 1024
        assert adapter.write(f"{base}/big.bin", io.BytesIO(payload), known_size=len(payload)) == len(payload)
        with adapter.read(f"{base}/big.bin") as stream:
            assert stream.read() == payload

    def test_write_creates_parents(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/x/y/z.jpg", b"z")
        assert adapter.exists(f"{base}/x/y")

    def test_write_existing_conflicts(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"first")
        with pytest.raises(ConflictError):
            adapter.write(f"{base}/a.jpg", b"second")
        with adapter.read(f"{base}/a.jpg") as stream:
            assert stream.read() == b"first"

    def test_overwrite(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"first")
        adapter.write(f"{base}/a.jpg", b"second", overwrite=True)
        with adapter.read(f"{base}/a.jpg") as stream:
            assert stream.read() == b"second"

    def test_read_missing(self, adapter: BackendAdapter, base: str) -> None:
        with pytest.raises(NotFound):
            adapter.read(f"{base}/missing.jpg")


class TestList:
    def test_direct_children_sorted(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/b.jpg", b"bb")
        adapter.write(f"{base}/a.jpg", b"a")
        adapter.write(f"{base}/album/c.jpg", b"c")

        entries = list(adapter.list(base))

        assert [e.name for e in entries] == ["a.jpg", "album", "b.jpg"]
        assert all(isinstance(e, FileDescriptor) for e in entries)
        by_name = {e.name: e for e in entries}
        assert by_name["b.jpg"].size == 2
        assert by_name["b.jpg"].path == f"{base}/b.jpg"
        assert by_name["album"].is_folder
        assert not by_name["a.jpg"].is_folder
        assert by_name["a.jpg"].modified_at is not None

    def test_missing_folder_is_empty(self, adapter: BackendAdapter, base: str) -> None:
        assert list(adapter.list(f"{base}/nowhere")) == []


class TestDelete:
    def test_delete(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        assert adapter.delete(f"{base}/a.jpg") is True
        assert not adapter.exists(f"{base}/a.jpg")

    def test_missing(self, adapter: BackendAdapter, base: str) -> None:
        with pytest.raises(NotFound):
            adapter.delete(f"{base}/missing.jpg")

    def test_missing_ok(self, adapter: BackendAdapter, base: str) -> None:
        assert adapter.delete(f"{base}/missing.jpg", missing_ok=True) is False

    def test_delete_folder_recursive(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/.trash_1/a.jpg", b"a")
        adapter.write(f"{base}/.trash_1/sub/b.jpg", b"b")
        adapter.delete_folder(f"{base}/.trash_1", recursive=True)
        assert not adapter.exists(f"{base}/.trash_1")

    def test_delete_non_empty_folder_needs_recursive(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/album/a.jpg", b"a")
        with pytest.raises(MediaOpsError):
            adapter.delete_folder(f"{base}/album")
        assert adapter.exists(f"{base}/album/a.jpg")

    def test_delete_missing_folder(self, adapter: BackendAdapter, base: str) -> None:
        with pytest.raises(NotFound):
            adapter.delete_folder(f"{base}/nowhere")
        adapter.delete_folder(f"{base}/nowhere", missing_ok=True)


class TestMoveCopy:
    def test_move(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        adapter.move(f"{base}/a.jpg", f"{base}/.trash_1/a.jpg")
        assert not adapter.exists(f"{base}/a.jpg")
        with adapter.read(f"{base}/.trash_1/a.jpg") as stream:
            assert stream.read() == b"a"

    def test_move_missing_source(self, adapter: BackendAdapter, base: str) -> None:
        with pytest.raises(NotFound):
            adapter.move(f"{base}/missing.jpg", f"{base}/b.jpg")

    def test_move_onto_existing(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        adapter.write(f"{base}/b.jpg", b"b")
        with pytest.raises(ConflictError):
            adapter.move(f"{base}/a.jpg", f"{base}/b.jpg")
        adapter.move(f"{base}/a.jpg", f"{base}/b.jpg", overwrite=True)
        with adapter.read(f"{base}/b.jpg") as stream:
            assert stream.read() == b"a"

    def test_copy(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        adapter.copy(f"{base}/a.jpg", f"{base}/backup/a.jpg")
        assert adapter.exists(f"{base}/a.jpg")
        with adapter.read(f"{base}/backup/a.jpg") as stream:
            assert stream.read() == b"a"

    def test_copy_onto_existing(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        adapter.write(f"{base}/b.jpg", b"b")
        with pytest.raises(ConflictError):
            adapter.copy(f"{base}/a.jpg", f"{base}/b.jpg")

    def test_rename(self, adapter: BackendAdapter, base: str) -> None:
        adapter.write(f"{base}/a.jpg", b"a")
        assert adapter.rename(f"{base}/a.jpg", "holiday.jpg") == f"{base}/holiday.jpg"
        assert adapter.exists(f"{base}/holiday.jpg")
        assert not adapter.exists(f"{base}/a.jpg")

    def test_make_dirs_is_idempotent(self, adapter: BackendAdapter, base: str) -> None:
        adapter.make_dirs(f"{base}/a/b")
        adapter.make_dirs(f"{base}/a/b")
        assert adapter.exists(f"{base}/a/b")
