"""Destination name collision policies."""

from __future__ import annotations

import abc
import dataclasses
import enum
import threading
from typing import TYPE_CHECKING

from mediaops._errors import ConflictError

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterable


class ConflictAction(enum.Enum):
    WRITE = "write"
    OVERWRITE = "overwrite"
    SKIP = "skip"


@dataclasses.dataclass(frozen=True)
class ConflictDecision:
    """What to do with one source: the action and the destination name to use."""

    action: ConflictAction
    name: str

    @property
    def renamed(self) -> bool:
        return False


@dataclasses.dataclass(frozen=True)
class RenameDecision(ConflictDecision):
    original_name: str = ""

    @property
    def renamed(self) -> bool:
        return self.name != self.original_name


class ConflictPolicy(abc.ABC):
    """Decides what happens when a destination name is already taken."""

    @abc.abstractmethod
    def resolve(self, name: str, existing: Collection[str]) -> ConflictDecision:
        """Pick an action for ``name`` given the names already present. Must not touch any backend."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class SkipPolicy(ConflictPolicy):
    """Leave the existing destination alone and report the source as skipped."""

    def resolve(self, name: str, existing: Collection[str]) -> ConflictDecision:
        if name in existing:
            return ConflictDecision(ConflictAction.SKIP, name)
        return ConflictDecision(ConflictAction.WRITE, name)


class OverwritePolicy(ConflictPolicy):
    """Replace the existing destination."""

    def resolve(self, name: str, existing: Collection[str]) -> ConflictDecision:
        if name in existing:
            return ConflictDecision(ConflictAction.OVERWRITE, name)
        return ConflictDecision(ConflictAction.WRITE, name)


class SmartRenamePolicy(ConflictPolicy):
    """Write under ``stem (n).ext`` with the smallest free ``n >= 1``."""

    def resolve(self, name: str, existing: Collection[str]) -> ConflictDecision:
        return RenameDecision(ConflictAction.WRITE, smart_rename(name, existing), original_name=name)


def split_extension(name: str) -> tuple[str, str]:
    """Split ``name`` into stem and extension; dotfiles have no extension."""
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def smart_rename(name: str, existing: Collection[str]) -> str:
    """Return ``name`` if free, else ``stem (n).ext`` for the first free ``n``.

    Terminates for any finite ``existing``: at most ``len(existing) + 1``
    candidates are tried.
    """
    if name not in existing:
        return name
    stem, ext = split_extension(name)
    n = 1
    while True:
        candidate = f"{stem} ({n}){ext}"
        if candidate not in existing:
            return candidate
        n += 1


class ConflictResolver:
    """Applies a policy across one batch, folder by folder.

    Each destination folder is listed once (through ``lister``); names picked
    for earlier files of the batch are reserved so two concurrent sources with
    the same name never land on the same destination.

    :param policy: The batch's policy; ``None`` makes any collision a :class:`ConflictError`.
    :param lister: ``lister(folder_key) -> names``. The only backend I/O done here.
    """

    def __init__(self, policy: ConflictPolicy | None, lister: Callable[[str], Iterable[str]]) -> None:
        self._policy = policy
        self._lister = lister
        self._names: dict[str, set[str]] = {}
        self._folder_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _folder_lock(self, folder_key: str) -> threading.Lock:
        with self._lock:
            return self._folder_locks.setdefault(folder_key, threading.Lock())

    def decide(self, folder_key: str, name: str) -> ConflictDecision:
        """Decide for one source and reserve the chosen name.

        :raises ConflictError: If the name collides and no policy was given.
        """
        with self._folder_lock(folder_key):
            names = self._names.get(folder_key)
            if names is None:
                names = set(self._lister(folder_key))
                self._names[folder_key] = names
            if self._policy is None:
                if name in names:
                    raise ConflictError(f"Destination already exists: {name}", path=f"{folder_key}/{name}")
                decision = ConflictDecision(ConflictAction.WRITE, name)
            else:
                decision = self._policy.resolve(name, names)
            if decision.action is not ConflictAction.SKIP:
                names.add(decision.name)
            return decision
