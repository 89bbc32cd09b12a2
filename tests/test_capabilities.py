"""Tests for Capability and CapabilitySet."""

from __future__ import annotations

import pytest

from mediaops._capabilities import ALL_CAPABILITIES, READ_ONLY_CAPABILITIES, Capability, CapabilitySet
from mediaops._errors import CapabilityNotSupported


class TestCapabilitySet:
    def test_supports_all_given(self) -> None:
        cs = CapabilitySet({Capability.READ, Capability.LIST})
        assert cs.supports(Capability.READ)
        assert cs.supports(Capability.READ, Capability.LIST)
        assert not cs.supports(Capability.READ, Capability.WRITE)
        assert Capability.READ in cs

    def test_missing_keeps_order(self) -> None:
        assert READ_ONLY_CAPABILITIES.missing(Capability.WRITE, Capability.READ, Capability.MOVE) == (
            Capability.WRITE,
            Capability.MOVE,
        )

    def test_require_passes(self) -> None:
        CapabilitySet({Capability.COPY}).require(Capability.COPY)

    def test_require_names_missing(self) -> None:
        with pytest.raises(CapabilityNotSupported, match="write, move") as exc_info:
            READ_ONLY_CAPABILITIES.require(Capability.WRITE, Capability.MOVE, backend="ftp")
        assert exc_info.value.capability == "write"
        assert exc_info.value.backend == "ftp"

    def test_without(self) -> None:
        cs = ALL_CAPABILITIES.without(Capability.COPY, Capability.MOVE)
        assert len(cs) == len(ALL_CAPABILITIES) - 2
        assert Capability.COPY not in cs
        assert Capability.COPY in ALL_CAPABILITIES

    def test_trash_needs_write_and_move(self) -> None:
        assert ALL_CAPABILITIES.can_trash
        assert not ALL_CAPABILITIES.without(Capability.MOVE).can_trash
        assert not CapabilitySet({Capability.MOVE}).can_trash

    def test_native_transfer(self) -> None:
        ftp = ALL_CAPABILITIES.without(Capability.COPY)
        assert ftp.native(move=True)
        assert not ftp.native(move=False)

    def test_equality_and_iteration_order(self) -> None:
        assert CapabilitySet([Capability.LIST, Capability.READ]) == READ_ONLY_CAPABILITIES
        assert len({CapabilitySet(Capability), ALL_CAPABILITIES}) == 1
        assert list(ALL_CAPABILITIES) == list(Capability)

    def test_immutable(self) -> None:
        with pytest.raises(AttributeError):
            ALL_CAPABILITIES._members = frozenset()  # type: ignore[misc]

    def test_repr_sorted(self) -> None:
        assert repr(CapabilitySet({Capability.WRITE, Capability.COPY})) == "CapabilitySet({COPY, WRITE})"
