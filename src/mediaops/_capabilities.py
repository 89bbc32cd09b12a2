"""What an adapter can do on its resource, and the checks built on that."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from mediaops._errors import CapabilityNotSupported

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class Capability(enum.Enum):
    """Primitive operations an adapter may offer.

    ``MOVE`` and ``COPY`` mean server-side operations within one resource;
    everything else is done by streaming through ``READ`` and ``WRITE``.
    """

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    LIST = "list"
    MOVE = "move"
    COPY = "copy"


class CapabilitySet:
    """Immutable set of capabilities declared by an adapter.

    :param capabilities: The supported capabilities.
    """

    __slots__ = ("_members",)
    _members: frozenset[Capability]

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        object.__setattr__(self, "_members", frozenset(capabilities))

    def supports(self, *caps: Capability) -> bool:
        """Whether every one of ``caps`` is supported."""
        return self._members.issuperset(caps)

    def missing(self, *caps: Capability) -> tuple[Capability, ...]:
        """The subset of ``caps`` that is not supported, in the given order."""
        return tuple(c for c in caps if c not in self._members)

    def require(self, *caps: Capability, backend: str = "") -> None:
        """:raises CapabilityNotSupported: Naming the first missing capability."""
        gaps = self.missing(*caps)
        if gaps:
            names = ", ".join(c.value for c in gaps)
            raise CapabilityNotSupported(
                f"Backend does not support: {names}",
                capability=gaps[0].value,
                backend=backend or None,
            )

    def without(self, *caps: Capability) -> CapabilitySet:
        return CapabilitySet(self._members.difference(caps))

    @property
    def can_trash(self) -> bool:
        """Soft delete moves files into a trash folder on the same resource."""
        return self.supports(Capability.WRITE, Capability.MOVE)

    def native(self, *, move: bool) -> bool:
        """Whether a transfer within the resource can run server-side."""
        return self.supports(Capability.MOVE if move else Capability.COPY)

    def __contains__(self, cap: object) -> bool:
        return cap in self._members

    def __iter__(self) -> Iterator[Capability]:
        return (c for c in Capability if c in self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapabilitySet):
            return NotImplemented
        return self._members == other._members

    def __hash__(self) -> int:
        return hash(self._members)

    def __repr__(self) -> str:
        return f"CapabilitySet({{{', '.join(sorted(c.name for c in self._members))}}})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")


ALL_CAPABILITIES = CapabilitySet(Capability)
READ_ONLY_CAPABILITIES = CapabilitySet({Capability.READ, Capability.LIST})
