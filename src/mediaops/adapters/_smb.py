"""SMB2/3 adapter using smbprotocol's ``smbclient`` high-level API."""

from __future__ import annotations

import errno
import logging
import socket
import stat
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, BinaryIO

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import ALL_CAPABILITIES, CapabilitySet
from mediaops._errors import (
    ConflictError,
    InvalidPathError,
    MediaOpsError,
    NotFound,
    PermissionDeniedError,
    RemoteConnectionError,
)
from mediaops._models import FileDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaops._locator import ResourceLocator
    from mediaops._models import NetworkCredentials
    from mediaops._types import WritableContent

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class SMBAdapter(BackendAdapter):
    """SMB share adapter.

    Remote paths carry the share as their first segment (``/share/dir/a.jpg``)
    and are converted to UNC form for ``smbclient``.

    :param host: Server name or address.
    :param port: SMB port.
    :param username: Account name; prefixed with ``domain\\`` when ``domain`` is set.
    :param password: Account password.
    :param domain: Windows domain or workgroup.
    :param timeout: Connection timeout in seconds.
    :param client: Module-like object exposing the ``smbclient`` API (injected in tests).
    """

    schemes = frozenset({"smb"})

    def __init__(
        self,
        host: str,
        *,
        port: int = 445,
        username: str | None = None,
        password: str | None = None,
        domain: str | None = None,
        timeout: int = 30,
        client: Any = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = f"{domain}\\{username}" if domain and username else username
        self._password = password
        self._timeout = timeout
        self._client = client
        self._registered = False
        self._lock = threading.Lock()

    @classmethod
    def from_locator(cls, locator: ResourceLocator, credentials: NetworkCredentials | None) -> SMBAdapter:
        if credentials is None:
            return cls(locator.host, port=locator.port or 445)
        return cls(
            locator.host,
            port=locator.port or 445,
            username=credentials.username or None,
            password=credentials.secret or None,
            domain=credentials.domain,
        )

    @property
    def name(self) -> str:
        return "smb"

    @property
    def capabilities(self) -> CapabilitySet:
        return ALL_CAPABILITIES

    # region: session

    @property
    def _smb(self) -> Any:
        """The ``smbclient`` API with a registered session for this server."""
        if self._client is None:
            import smbclient

            self._client = smbclient
        with self._lock:
            if not self._registered:
                self._register()
        return self._client

    def _register(self) -> None:
        from smbprotocol.exceptions import SMBAuthenticationError

        log.info("Opening SMB session to %s:%d as %s", self._host, self._port, self._username)
        try:
            self._client.register_session(
                self._host,
                username=self._username,
                password=self._password,
                port=self._port,
                connection_timeout=self._timeout,
            )
        except SMBAuthenticationError as exc:
            raise PermissionDeniedError(f"SMB authentication failed: {exc}", backend=self.name) from None
        except (ValueError, OSError) as exc:
            raise RemoteConnectionError(
                f"Cannot connect to {self._host}:{self._port}: {exc}", backend=self.name
            ) from None
        self._registered = True

    def _unc(self, path: str) -> str:
        parts = [p for p in path.split("/") if p]
        if not parts:
            raise InvalidPathError("SMB path requires a share name", path=path, backend=self.name)
        return "\\\\" + "\\".join([self._host, *parts])

    # endregion

    # region: error mapping

    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map smbprotocol/OS exceptions to mediaops errors."""
        from smbprotocol.exceptions import SMBAuthenticationError, SMBConnectionClosed, SMBException

        try:
            yield
        except MediaOpsError:
            raise
        except SMBAuthenticationError as exc:
            raise PermissionDeniedError(f"SMB authentication failed: {exc}", path=path, backend=self.name) from None
        except (SMBConnectionClosed, socket.timeout, TimeoutError, ConnectionError) as exc:
            self._registered = False
            raise RemoteConnectionError(str(exc) or "SMB connection lost", path=path, backend=self.name) from None
        except OSError as exc:
            code = getattr(exc, "errno", None)
            if code == errno.ENOENT or isinstance(exc, FileNotFoundError):
                raise NotFound(f"Not found: {path}", path=path, backend=self.name) from None
            if code == errno.EEXIST or isinstance(exc, FileExistsError):
                raise ConflictError(f"Already exists: {path}", path=path, backend=self.name) from None
            if code in (errno.EACCES, errno.EPERM) or isinstance(exc, PermissionError):
                raise PermissionDeniedError(f"Permission denied: {path}", path=path, backend=self.name) from None
            raise MediaOpsError(str(exc), path=path, backend=self.name) from None
        except SMBException as exc:
            raise MediaOpsError(str(exc), path=path, backend=self.name) from None

    # endregion

    def _exists(self, unc: str) -> bool:
        try:
            self._smb.stat(unc, port=self._port)
        except FileNotFoundError:
            return False
        except OSError as exc:
            if getattr(exc, "errno", None) == errno.ENOENT:
                return False
            raise
        return True

    def _parent_unc(self, path: str) -> str | None:
        parts = [p for p in path.split("/") if p]
        # share root needs no creation
        if len(parts) <= 2:
            return None
        return self._unc("/".join(parts[:-1]))

    def exists(self, path: str) -> bool:
        with self._errors(path):
            return self._exists(self._unc(path))

    def list(self, path: str) -> Iterator[FileDescriptor]:
        unc = self._unc(path)
        with self._errors(path):
            if not self._exists(unc):
                return
            entries = sorted(self._smb.scandir(unc, port=self._port), key=lambda e: e.name)
        base = path.rstrip("/")
        for entry in entries:
            with self._errors(path):
                info = entry.stat()
            is_dir = stat.S_ISDIR(info.st_mode)
            yield FileDescriptor(
                path=f"{base}/{entry.name}",
                size=0 if is_dir else int(info.st_size),
                modified_at=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
                is_folder=is_dir,
            )

    def read(self, path: str) -> BinaryIO:
        with self._errors(path):
            return self._smb.open_file(self._unc(path), mode="rb", port=self._port)  # type: ignore[no-any-return]

    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        unc = self._unc(path)
        with self._errors(path):
            parent = self._parent_unc(path)
            if parent is not None:
                self._smb.makedirs(parent, exist_ok=True, port=self._port)
            # mode "xb" lets the server enforce the no-overwrite rule atomically
            mode = "wb" if overwrite else "xb"
            written = 0
            with self._smb.open_file(unc, mode=mode, port=self._port) as out:
                if isinstance(content, bytes):
                    out.write(content)
                    written = len(content)
                else:
                    while chunk := content.read(_CHUNK_SIZE):
                        out.write(chunk)
                        written += len(chunk)
            return written

    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        try:
            with self._errors(path):
                self._smb.remove(self._unc(path), port=self._port)
        except NotFound:
            if missing_ok:
                return False
            raise
        return True

    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        unc = self._unc(path)
        with self._errors(path):
            if not self._exists(unc):
                if missing_ok:
                    return
                raise NotFound(f"Folder not found: {path}", path=path, backend=self.name)
            if recursive:
                self._rmtree(unc)
            else:
                self._smb.rmdir(unc, port=self._port)

    def _rmtree(self, unc: str) -> None:
        for entry in self._smb.scandir(unc, port=self._port):
            child = f"{unc}\\{entry.name}"
            if entry.is_dir():
                self._rmtree(child)
            else:
                self._smb.remove(child, port=self._port)
        self._smb.rmdir(unc, port=self._port)

    def make_dirs(self, path: str) -> None:
        with self._errors(path):
            self._smb.makedirs(self._unc(path), exist_ok=True, port=self._port)

    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        src_unc, dst_unc = self._unc(src), self._unc(dst)
        with self._errors(src):
            if not self._exists(src_unc):
                raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
            if not overwrite and self._exists(dst_unc):
                raise ConflictError(f"Destination already exists: {dst}", path=dst, backend=self.name)
            parent = self._parent_unc(dst)
            if parent is not None:
                self._smb.makedirs(parent, exist_ok=True, port=self._port)
            if overwrite:
                self._smb.replace(src_unc, dst_unc, port=self._port)
            else:
                self._smb.rename(src_unc, dst_unc, port=self._port)

    def copy(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        src_unc, dst_unc = self._unc(src), self._unc(dst)
        with self._errors(src):
            if not self._exists(src_unc):
                raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
            if not overwrite and self._exists(dst_unc):
                raise ConflictError(f"Destination already exists: {dst}", path=dst, backend=self.name)
            parent = self._parent_unc(dst)
            if parent is not None:
                self._smb.makedirs(parent, exist_ok=True, port=self._port)
            # server-side copy (FSCTL_SRV_COPYCHUNK) when both ends are on this server
            self._smb.copyfile(src_unc, dst_unc, port=self._port)

    def close(self) -> None:
        with self._lock:
            if self._registered and self._client is not None:
                try:
                    self._client.delete_session(self._host, port=self._port)
                except Exception:  # noqa: BLE001
                    log.debug("Ignoring error while closing SMB session to %s", self._host, exc_info=True)
            self._registered = False
