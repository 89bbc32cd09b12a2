"""Immutable value objects: descriptors, credentials, operations, results and undo records."""

from __future__ import annotations

import dataclasses
import enum
import hashlib
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from mediaops._conflict import ConflictPolicy


# region: files and credentials


@dataclasses.dataclass(frozen=True, eq=False)
class FileDescriptor:
    """A file known by path, with its size when the listing provided one.

    :param path: Full path string (``smb://host/share/a.jpg``) or, for adapter
        listings, the remote path on the adapter's resource.
    :param size: Size in bytes; ``0`` when the backend did not report it.
    :param modified_at: Last modification time, if known.
    :param is_folder: ``True`` for folder entries in a listing.
    :param credential_ref: Id of the stored credentials to use for this file, when the
        resource record names them; otherwise credentials are looked up by host.
    """

    path: str
    size: int = 0
    modified_at: datetime | None = None
    is_folder: bool = False
    credential_ref: str | None = None

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @classmethod
    def coerce(cls, value: FileDescriptor | str) -> FileDescriptor:
        return value if isinstance(value, FileDescriptor) else cls(path=value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FileDescriptor):
            return self.path == other.path
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.path)


@dataclasses.dataclass(frozen=True)
class NetworkCredentials:
    """Stored credentials for one backend resource.

    ``secret`` is a password for SMB/SFTP/FTP and an OAuth refresh token for
    cloud providers. It is excluded from ``repr``.
    """

    id: str
    backend_type: str
    server: str
    port: int | None
    username: str = ""
    secret: str = dataclasses.field(default="", repr=False)
    domain: str | None = None
    share_name: str | None = None
    key_material: str | None = dataclasses.field(default=None, repr=False)

    @property
    def fingerprint(self) -> str:
        """Stable digest of the identity and secret parts, used to detect rotation."""
        identity = (self.id, self.backend_type, self.server, str(self.port), self.username)
        material = "\0".join((*identity, self.secret, self.key_material or ""))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


# endregion

# region: operations


class OperationKind(enum.Enum):
    COPY = "copy"
    MOVE = "move"
    DELETE = "delete"
    RENAME = "rename"


def _descriptors(values: Iterable[FileDescriptor | str]) -> tuple[FileDescriptor, ...]:
    return tuple(FileDescriptor.coerce(v) for v in values)


@dataclasses.dataclass(frozen=True)
class Copy:
    """Copy ``sources`` into the ``destination`` folder.

    ``destination_ref`` names the stored credentials for the destination, like
    :attr:`FileDescriptor.credential_ref` does for each source.
    """

    sources: tuple[FileDescriptor, ...]
    destination: str
    overwrite_policy: ConflictPolicy | None = None
    destination_ref: str | None = None

    kind = OperationKind.COPY

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", _descriptors(self.sources))


@dataclasses.dataclass(frozen=True)
class Move:
    """Move ``sources`` into the ``destination`` folder.

    ``destination_ref`` names the stored credentials for the destination, like
    :attr:`FileDescriptor.credential_ref` does for each source.
    """

    sources: tuple[FileDescriptor, ...]
    destination: str
    overwrite_policy: ConflictPolicy | None = None
    destination_ref: str | None = None

    kind = OperationKind.MOVE

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", _descriptors(self.sources))


@dataclasses.dataclass(frozen=True)
class Delete:
    """Delete ``files``; soft delete into trash unless ``permanent``."""

    files: tuple[FileDescriptor, ...]
    permanent: bool = False

    kind = OperationKind.DELETE

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", _descriptors(self.files))

    @property
    def sources(self) -> tuple[FileDescriptor, ...]:
        return self.files


@dataclasses.dataclass(frozen=True)
class Rename:
    """Rename a single file within its own folder."""

    file: FileDescriptor
    new_name: str

    kind = OperationKind.RENAME

    def __post_init__(self) -> None:
        object.__setattr__(self, "file", FileDescriptor.coerce(self.file))

    @property
    def sources(self) -> tuple[FileDescriptor, ...]:
        return (self.file,)


FileOperation = Union[Copy, Move, Delete, Rename]

# endregion

# region: results


@dataclasses.dataclass(frozen=True)
class FileOutcome:
    """A file that reached COMMITTED.

    :param source: The requested file.
    :param result_path: Where the file now lives (trash path for soft deletes).
    :param renamed: ``True`` if a conflict policy picked a new name.
    :param degraded: ``True`` for a bridged move whose source could not be deleted.
    """

    source: FileDescriptor
    result_path: str
    renamed: bool = False
    degraded: bool = False


@dataclasses.dataclass(frozen=True)
class FileFailure:
    """A file that reached FAILED, with a reason a user can act on."""

    source: FileDescriptor
    reason: str
    error_kind: str = "MediaOpsError"

    @classmethod
    def from_error(cls, source: FileDescriptor, exc: BaseException) -> FileFailure:
        message = exc.args[0] if exc.args and isinstance(exc.args[0], str) else str(exc)
        return cls(source=source, reason=message or type(exc).__name__, error_kind=type(exc).__name__)


class OperationResult:
    """Base of the result variants returned by the orchestrator."""

    @property
    def ok(self) -> bool:
        return False


@dataclasses.dataclass(frozen=True)
class Success(OperationResult):
    """Every requested file succeeded (or was skipped/cancelled without failing)."""

    succeeded: tuple[FileOutcome, ...] = ()
    skipped: tuple[FileDescriptor, ...] = ()
    cancelled: tuple[FileDescriptor, ...] = ()

    @property
    def ok(self) -> bool:
        return True

    @property
    def count(self) -> int:
        return len(self.succeeded)

    @property
    def resulting_paths(self) -> tuple[str, ...]:
        return tuple(o.result_path for o in self.succeeded)


@dataclasses.dataclass(frozen=True)
class PartialSuccess(OperationResult):
    """Some files failed. ``len(succeeded) + len(failed) + len(skipped) + len(cancelled) == total_requested``.

    :raises ValueError: If the counts do not add up.
    """

    succeeded: tuple[FileOutcome, ...]
    failed: tuple[FileFailure, ...]
    total_requested: int
    skipped: tuple[FileDescriptor, ...] = ()
    cancelled: tuple[FileDescriptor, ...] = ()

    def __post_init__(self) -> None:
        accounted = len(self.succeeded) + len(self.failed) + len(self.skipped) + len(self.cancelled)
        if accounted != self.total_requested:
            raise ValueError(f"Result accounts for {accounted} files but {self.total_requested} were requested")

    @property
    def errors(self) -> dict[str, str]:
        """Failed path → reason."""
        return {f.source.path: f.reason for f in self.failed}

    def summary(self) -> str:
        text = f"{len(self.succeeded)} succeeded, {len(self.failed)} failed"
        if self.skipped:
            text += f", {len(self.skipped)} skipped"
        if self.cancelled:
            text += f", {len(self.cancelled)} cancelled"
        return text


@dataclasses.dataclass(frozen=True)
class Failure(OperationResult):
    """Nothing succeeded.

    :param reason: Human-readable reason.
    :param error: The exception behind the failure, when there is a single one.
    :param failed: Per-file failures for batch operations.
    """

    reason: str
    error: BaseException | None = None
    failed: tuple[FileFailure, ...] = ()


@dataclasses.dataclass(frozen=True)
class AuthenticationRequired(OperationResult):
    """The batch stopped because ``provider`` needs interactive reauthentication.

    Files committed before the stop stay in ``succeeded``; ``unfinished`` is the
    subset to resubmit after reauthenticating.
    """

    provider: str
    succeeded: tuple[FileOutcome, ...] = ()
    failed: tuple[FileFailure, ...] = ()
    unfinished: tuple[FileDescriptor, ...] = ()


# endregion

# region: undo


@dataclasses.dataclass(frozen=True)
class UndoOperation:
    """The single live undo record, created by a successful soft delete."""

    original_paths: tuple[str, ...]
    trash_paths: tuple[str, ...]
    created_at: float
    ttl_seconds: int = 300
    type: OperationKind = OperationKind.DELETE

    def __post_init__(self) -> None:
        if len(self.original_paths) != len(self.trash_paths):
            raise ValueError("original_paths and trash_paths must have the same length")

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl_seconds

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


# endregion
