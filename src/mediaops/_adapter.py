"""BackendAdapter abstract base class: the contract every backend implements."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, BinaryIO

from mediaops._capabilities import Capability
from mediaops._errors import CapabilityNotSupported

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaops._capabilities import CapabilitySet
    from mediaops._models import FileDescriptor
    from mediaops._types import WritableContent


class BackendAdapter(abc.ABC):
    """Abstract base class for all backend adapters.

    An adapter is bound to one resource (a server, a share, a cloud account, or
    the local device) and takes remote paths in ``/a/b/c`` form. Backend-native
    exceptions must never leak; they are mapped to ``mediaops`` errors.
    """

    #: Locator schemes (or ``cloud:<provider>`` backend types) this adapter serves.
    schemes: frozenset[str] = frozenset()

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Backend type identifier (e.g. ``'local'``, ``'smb'``, ``'cloud:dropbox'``)."""

    @property
    @abc.abstractmethod
    def capabilities(self) -> CapabilitySet:
        """Declared capabilities of this adapter."""

    @property
    def read_only(self) -> bool:
        return not self.capabilities.supports(Capability.WRITE)

    def supports(self, scheme: str) -> bool:
        """Whether this adapter serves locators of ``scheme`` (or backend type)."""
        return scheme in self.schemes or scheme == self.name

    @abc.abstractmethod
    def exists(self, path: str) -> bool:
        """Check if a file or folder exists. Never raises ``NotFound``."""

    @abc.abstractmethod
    def list(self, path: str) -> Iterator[FileDescriptor]:
        """List the entries of a folder. Missing folders list as empty."""

    @abc.abstractmethod
    def read(self, path: str) -> BinaryIO:
        """Open a file for streaming reads.

        :raises NotFound: If the file does not exist.
        """

    @abc.abstractmethod
    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        """Write content to a file, creating parent folders, and return the byte count.

        :param known_size: Size hint for backends that need it up front.
        :raises ConflictError: If the file exists and ``overwrite`` is ``False``.
        """

    @abc.abstractmethod
    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        """Delete a file. Returns ``False`` only when missing and ``missing_ok``.

        :raises NotFound: If the file is missing and ``missing_ok`` is ``False``.
        """

    @abc.abstractmethod
    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        """Delete a folder.

        :raises NotFound: If the folder is missing and ``missing_ok`` is ``False``.
        """

    @abc.abstractmethod
    def make_dirs(self, path: str) -> None:
        """Create a folder and its parents; existing folders are fine."""

    @abc.abstractmethod
    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        """Server-side move/rename within this resource.

        :raises NotFound: If ``src`` does not exist.
        :raises ConflictError: If ``dst`` exists and ``overwrite`` is ``False``.
        """

    def copy(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        """Server-side copy within this resource.

        :raises CapabilityNotSupported: If the backend has no native copy.
        """
        raise CapabilityNotSupported(
            f"Backend '{self.name}' has no server-side copy",
            capability=Capability.COPY.value,
            backend=self.name,
        )

    def rename(self, path: str, new_name: str) -> str:
        """Rename a file inside its folder and return the new remote path."""
        parent = path.rstrip("/").rsplit("/", 1)[0]
        target = f"{parent}/{new_name}"
        self.move(path, target)
        return target

    def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""
