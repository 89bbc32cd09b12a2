"""Local filesystem adapter (stdlib only)."""

from __future__ import annotations

import contextlib
import errno
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import ALL_CAPABILITIES, CapabilitySet
from mediaops._errors import ConflictError, InvalidPathError, MediaOpsError, NotFound, PermissionDeniedError
from mediaops._models import FileDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaops._locator import ResourceLocator
    from mediaops._models import NetworkCredentials
    from mediaops._types import WritableContent

_CHUNK_SIZE = 1024 * 1024

_OS_ERRORS: tuple[tuple[type[OSError], type[MediaOpsError], str], ...] = (
    (FileNotFoundError, NotFound, "Not found"),
    (FileExistsError, ConflictError, "Already exists"),
    (PermissionError, PermissionDeniedError, "Permission denied"),
)
_DENIED_ERRNOS = frozenset({errno.EROFS, errno.EACCES, errno.EPERM})


def _classify(exc: OSError) -> tuple[type[MediaOpsError], str] | None:
    for native, mapped, label in _OS_ERRORS:
        if isinstance(exc, native):
            return mapped, label
    if exc.errno in _DENIED_ERRNOS:
        return PermissionDeniedError, "Permission denied"
    return None


def _spool(out: BinaryIO, content: WritableContent) -> int:
    if isinstance(content, bytes):
        out.write(content)
        return len(content)
    written = 0
    while chunk := content.read(_CHUNK_SIZE):
        out.write(chunk)
        written += len(chunk)
    return written


class LocalAdapter(BackendAdapter):
    """Local device storage.

    :param root: Directory that remote paths are resolved against (``/`` by default).
    :param capabilities: Override for read-only mounts.
    """

    schemes = frozenset({"file", "content"})

    def __init__(self, root: str = "/", *, capabilities: CapabilitySet = ALL_CAPABILITIES) -> None:
        self._root = Path(root).resolve()
        self._capabilities = capabilities

    @classmethod
    def from_locator(cls, locator: ResourceLocator, credentials: NetworkCredentials | None) -> LocalAdapter:
        return cls()

    @property
    def name(self) -> str:
        return "local"

    @property
    def capabilities(self) -> CapabilitySet:
        return self._capabilities

    # region: path safety
    def _resolve(self, path: str) -> Path:
        """Resolve a remote path to an absolute path within root.

        :raises InvalidPathError: If the resolved path escapes the root.
        """
        resolved = (self._root / path.lstrip("/")).resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError:
            raise InvalidPathError(f"Path escapes root directory: {path}", path=path, backend=self.name) from None
        return resolved

    def _remote(self, full: Path) -> str:
        rel = full.relative_to(self._root).as_posix()
        return "/" if rel == "." else f"/{rel}"

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, path: str) -> Iterator[None]:
        try:
            yield
        except MediaOpsError:
            raise
        except OSError as exc:
            kind = _classify(exc)
            if kind is not None:
                mapped, label = kind
                raise mapped(f"{label}: {path}", path=path, backend=self.name) from None
            raise MediaOpsError(str(exc), path=path, backend=self.name) from None

    # endregion

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def list(self, path: str) -> Iterator[FileDescriptor]:
        full = self._resolve(path)
        if not full.is_dir():
            return
        with self._errors(path):
            entries = sorted(full.iterdir())
        for item in entries:
            with self._errors(path):
                st = item.stat()
            yield FileDescriptor(
                path=self._remote(item),
                size=0 if item.is_dir() else st.st_size,
                modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                is_folder=item.is_dir(),
            )

    def read(self, path: str) -> BinaryIO:
        full = self._resolve(path)
        with self._errors(path):
            if full.is_dir():
                raise NotFound(f"Not a file: {path}", path=path, backend=self.name)
            return full.open("rb")

    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        full = self._resolve(path)
        if not overwrite and full.exists():
            raise ConflictError(f"File already exists: {path}", path=path, backend=self.name)
        with self._errors(path):
            full.parent.mkdir(parents=True, exist_ok=True)
            # Temp file + rename so a failed transfer never leaves a truncated target
            fd, tmp_path = tempfile.mkstemp(dir=str(full.parent), prefix=".~tmp.")
            try:
                with os.fdopen(fd, "wb") as out:
                    written = _spool(out, content)
                os.replace(tmp_path, str(full))
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise
            return written

    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        full = self._resolve(path)
        try:
            with self._errors(path):
                full.unlink()
        except NotFound:
            if missing_ok:
                return False
            raise
        return True

    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        full = self._resolve(path)
        if not full.is_dir():
            if missing_ok and not full.exists():
                return
            raise NotFound(f"Folder not found: {path}", path=path, backend=self.name)
        with self._errors(path):
            if recursive:
                shutil.rmtree(str(full))
            else:
                full.rmdir()

    def make_dirs(self, path: str) -> None:
        with self._errors(path):
            self._resolve(path).mkdir(parents=True, exist_ok=True)

    def _transfer_pair(self, src: str, dst: str, *, overwrite: bool, file_only: bool) -> tuple[Path, Path]:
        src_full, dst_full = self._resolve(src), self._resolve(dst)
        if not (src_full.is_file() if file_only else src_full.exists()):
            raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
        if not overwrite and dst_full.exists():
            raise ConflictError(f"Destination already exists: {dst}", path=dst, backend=self.name)
        with self._errors(dst):
            dst_full.parent.mkdir(parents=True, exist_ok=True)
        return src_full, dst_full

    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        src_full, dst_full = self._transfer_pair(src, dst, overwrite=overwrite, file_only=False)
        with self._errors(src):
            shutil.move(src_full, dst_full)

    def copy(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        src_full, dst_full = self._transfer_pair(src, dst, overwrite=overwrite, file_only=True)
        with self._errors(src):
            shutil.copy2(src_full, dst_full)
