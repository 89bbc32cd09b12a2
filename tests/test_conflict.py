"""Tests for conflict policies and the batch conflict resolver."""

from __future__ import annotations

import threading

import pytest

from mediaops._conflict import (
    ConflictAction,
    ConflictResolver,
    OverwritePolicy,
    SkipPolicy,
    SmartRenamePolicy,
    smart_rename,
    split_extension,
)
from mediaops._errors import ConflictError


class TestSmartRename:
    def test_free_name_unchanged(self) -> None:
        assert smart_rename("a.jpg", {"b.jpg"}) == "a.jpg"

    def test_first_free_suffix(self) -> None:
        assert smart_rename("a.jpg", {"a.jpg"}) == "a (1).jpg"
        assert smart_rename("a.jpg", {"a.jpg", "a (1).jpg", "a (3).jpg"}) == "a (2).jpg"

    def test_no_extension_and_dotfiles(self) -> None:
        assert smart_rename("README", {"README"}) == "README (1)"
        assert smart_rename(".hidden", {".hidden"}) == ".hidden (1)"

    def test_only_last_extension_kept(self) -> None:
        assert smart_rename("backup.tar.gz", {"backup.tar.gz"}) == "backup.tar (1).gz"

    def test_terminates_for_dense_folders(self) -> None:
        existing = {"a.jpg"} | {f"a ({n}).jpg" for n in range(1, 500)}
        assert smart_rename("a.jpg", existing) == "a (500).jpg"

    def test_split_extension(self) -> None:
        assert split_extension("a.b.c") == ("a.b", ".c")
        assert split_extension(".env") == (".env", "")


class TestPolicies:
    def test_skip(self) -> None:
        assert SkipPolicy().resolve("a", {"a"}).action is ConflictAction.SKIP
        assert SkipPolicy().resolve("a", set()).action is ConflictAction.WRITE

    def test_overwrite(self) -> None:
        assert OverwritePolicy().resolve("a", {"a"}).action is ConflictAction.OVERWRITE

    def test_smart_rename_marks_renamed(self) -> None:
        decision = SmartRenamePolicy().resolve("a.jpg", {"a.jpg"})
        assert decision.action is ConflictAction.WRITE
        assert decision.name == "a (1).jpg"
        assert decision.renamed
        assert not SmartRenamePolicy().resolve("b.jpg", {"a.jpg"}).renamed

    def test_policies_compare_by_type(self) -> None:
        assert SkipPolicy() == SkipPolicy()
        assert SkipPolicy() != OverwritePolicy()
        assert repr(SmartRenamePolicy()) == "SmartRenamePolicy()"


class TestResolver:
    def test_lists_each_folder_once(self) -> None:
        listed: list[str] = []

        def lister(folder: str) -> list[str]:
            listed.append(folder)
            return ["a.jpg"]

        resolver = ConflictResolver(SmartRenamePolicy(), lister)
        resolver.decide("smb://nas/x", "b.jpg")
        resolver.decide("smb://nas/x", "c.jpg")
        resolver.decide("smb://nas/y", "c.jpg")
        assert listed == ["smb://nas/x", "smb://nas/y"]

    def test_reserves_chosen_names(self) -> None:
        resolver = ConflictResolver(SmartRenamePolicy(), lambda folder: ["a.jpg"])
        names = [resolver.decide("f", "a.jpg").name for _ in range(3)]
        assert names == ["a (1).jpg", "a (2).jpg", "a (3).jpg"]

    def test_no_policy_raises_on_collision(self) -> None:
        resolver = ConflictResolver(None, lambda folder: ["a.jpg"])
        with pytest.raises(ConflictError):
            resolver.decide("f", "a.jpg")
        assert resolver.decide("f", "b.jpg").action is ConflictAction.WRITE
        with pytest.raises(ConflictError):
            resolver.decide("f", "b.jpg")

    def test_skip_does_not_reserve(self) -> None:
        resolver = ConflictResolver(SkipPolicy(), lambda folder: [])
        assert resolver.decide("f", "a.jpg").action is ConflictAction.WRITE
        assert resolver.decide("f", "a.jpg").action is ConflictAction.SKIP

    def test_concurrent_decisions_are_unique(self) -> None:
        resolver = ConflictResolver(SmartRenamePolicy(), lambda folder: ["a.jpg"])
        names: list[str] = []
        lock = threading.Lock()

        def pick() -> None:
            name = resolver.decide("f", "a.jpg").name
            with lock:
                names.append(name)

        threads = [threading.Thread(target=pick) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(set(names)) == 16
