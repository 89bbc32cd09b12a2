"""FTP adapter using the standard library's ``ftplib``."""

from __future__ import annotations

import contextlib
import ftplib
import io
import logging
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, BinaryIO

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import ALL_CAPABILITIES, Capability, CapabilitySet
from mediaops._errors import (
    ConflictError,
    MediaOpsError,
    NotFound,
    PermissionDeniedError,
    RemoteConnectionError,
)
from mediaops._models import FileDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from mediaops._locator import ResourceLocator
    from mediaops._models import NetworkCredentials
    from mediaops._types import WritableContent

log = logging.getLogger(__name__)

_BLOCK_SIZE = 64 * 1024
# downloads larger than this spill from memory to a temp file
_SPOOL_MAX = 8 * 1024 * 1024

# FTP has no server-side copy
FTP_CAPABILITIES = ALL_CAPABILITIES.without(Capability.COPY)


def _reply_code(exc: ftplib.Error) -> str:
    return str(exc)[:3]


class FTPAdapter(BackendAdapter):
    """FTP server adapter.

    ``ftplib`` connections are not thread-safe, so every command runs under
    the adapter's lock on one control connection, opened lazily and reopened
    after a connection error.

    :param host: Server hostname.
    :param port: Control port.
    :param username: Login name; anonymous login when omitted.
    :param password: Login password.
    :param use_tls: Use explicit FTPS (``AUTH TLS`` + protected data channel).
    :param timeout: Socket timeout in seconds.
    :param ftp_factory: Callable returning an unconnected ``ftplib.FTP``-like object.
    """

    schemes = frozenset({"ftp"})

    def __init__(
        self,
        host: str,
        *,
        port: int = 21,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout: int = 30,
        ftp_factory: Callable[[], Any] | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout
        self._ftp_factory = ftp_factory or (ftplib.FTP_TLS if use_tls else ftplib.FTP)
        self._conn: Any = None
        self._lock = threading.RLock()

    @classmethod
    def from_locator(cls, locator: ResourceLocator, credentials: NetworkCredentials | None) -> FTPAdapter:
        return cls(
            locator.host,
            port=locator.port or 21,
            username=credentials.username if credentials and credentials.username else None,
            password=credentials.secret if credentials else None,
        )

    @property
    def name(self) -> str:
        return "ftp"

    @property
    def capabilities(self) -> CapabilitySet:
        return FTP_CAPABILITIES

    # region: connection

    @property
    def _ftp(self) -> Any:
        if self._conn is None:
            self._connect()
        return self._conn

    def _connect(self) -> None:
        conn = self._ftp_factory()
        log.info("Connecting to ftp://%s:%d as %s", self._host, self._port, self._username or "anonymous")
        try:
            conn.connect(self._host, self._port, timeout=self._timeout)
            if self._username:
                conn.login(self._username, self._password or "")
            else:
                conn.login()
            if self._use_tls:
                conn.prot_p()
        except ftplib.error_perm as exc:
            with contextlib.suppress(Exception):
                conn.close()
            raise PermissionDeniedError(f"FTP login rejected: {exc}", backend=self.name) from None
        except (ftplib.error_temp, EOFError, OSError) as exc:
            with contextlib.suppress(Exception):
                conn.close()
            raise RemoteConnectionError(
                f"Cannot connect to {self._host}:{self._port}: {exc}", backend=self.name
            ) from None
        self._conn = conn

    def _drop_connection(self) -> None:
        if self._conn is not None:
            with contextlib.suppress(Exception):
                self._conn.close()
            self._conn = None

    # endregion

    # region: error mapping

    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Run one command under the lock and map ``ftplib`` errors."""
        with self._lock:
            try:
                yield
            except MediaOpsError:
                raise
            except ftplib.error_perm as exc:
                code = _reply_code(exc)
                if code == "550":
                    raise NotFound(f"Not found: {path}", path=path, backend=self.name) from None
                if code in ("530", "532", "553"):
                    raise PermissionDeniedError(f"Permission denied: {path}", path=path, backend=self.name) from None
                raise MediaOpsError(str(exc), path=path, backend=self.name) from None
            except (ftplib.error_temp, EOFError, OSError) as exc:
                self._drop_connection()
                raise RemoteConnectionError(str(exc) or "FTP connection lost", path=path, backend=self.name) from None
            except ftplib.Error as exc:
                raise MediaOpsError(str(exc), path=path, backend=self.name) from None

    # endregion

    # region: helpers

    @staticmethod
    def _split(path: str) -> tuple[str, str]:
        parent, _, name = path.rstrip("/").rpartition("/")
        return parent or "/", name

    def _entries(self, path: str) -> list[tuple[str, dict[str, str]]]:
        try:
            return [(n, f) for n, f in self._ftp.mlsd(path, facts=["type", "size", "modify"]) if n not in (".", "..")]
        except ftplib.error_perm as exc:
            if _reply_code(exc) == "550":
                return []
            raise

    def _lookup(self, path: str) -> dict[str, str] | None:
        if path.rstrip("/") == "":
            return {"type": "dir"}
        parent, name = self._split(path)
        for entry_name, facts in self._entries(parent):
            if entry_name == name:
                return facts
        return None

    @staticmethod
    def _modified(facts: dict[str, str]) -> datetime | None:
        value = facts.get("modify")
        if not value:
            return None
        try:
            return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    def _mkdirs(self, folder: str) -> None:
        current = ""
        for part in [p for p in folder.split("/") if p]:
            current = f"{current}/{part}"
            if self._lookup(current) is None:
                self._ftp.mkd(current)

    # endregion

    def exists(self, path: str) -> bool:
        with self._errors(path):
            return self._lookup(path) is not None

    def list(self, path: str) -> Iterator[FileDescriptor]:
        with self._errors(path):
            entries = sorted(self._entries(path), key=lambda e: e[0])
        base = path.rstrip("/")
        for entry_name, facts in entries:
            is_dir = facts.get("type", "").lower() in ("dir", "cdir", "pdir")
            yield FileDescriptor(
                path=f"{base}/{entry_name}",
                size=0 if is_dir else int(facts.get("size") or 0),
                modified_at=self._modified(facts),
                is_folder=is_dir,
            )

    def read(self, path: str) -> BinaryIO:
        buffer = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX)
        try:
            with self._errors(path):
                self._ftp.retrbinary(f"RETR {path}", buffer.write, blocksize=_BLOCK_SIZE)
        except BaseException:
            buffer.close()
            raise
        buffer.seek(0)
        return buffer  # type: ignore[return-value]

    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        source = io.BytesIO(content) if isinstance(content, bytes) else content
        written = 0

        def _count(block: bytes) -> None:
            nonlocal written
            written += len(block)

        with self._errors(path):
            if not overwrite and self._lookup(path) is not None:
                raise ConflictError(f"File already exists: {path}", path=path, backend=self.name)
            self._mkdirs(self._split(path)[0])
            self._ftp.storbinary(f"STOR {path}", source, blocksize=_BLOCK_SIZE, callback=_count)
        return written

    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        try:
            with self._errors(path):
                self._ftp.delete(path)
        except NotFound:
            if missing_ok:
                return False
            raise
        return True

    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        with self._errors(path):
            if self._lookup(path) is None:
                if missing_ok:
                    return
                raise NotFound(f"Folder not found: {path}", path=path, backend=self.name)
            if recursive:
                self._rmtree(path)
            else:
                self._ftp.rmd(path)

    def _rmtree(self, path: str) -> None:
        for entry_name, facts in self._entries(path):
            child = f"{path.rstrip('/')}/{entry_name}"
            if facts.get("type", "").lower() == "dir":
                self._rmtree(child)
            else:
                self._ftp.delete(child)
        self._ftp.rmd(path)

    def make_dirs(self, path: str) -> None:
        with self._errors(path):
            self._mkdirs(path)

    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        with self._errors(src):
            if self._lookup(src) is None:
                raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
            if self._lookup(dst) is not None:
                if not overwrite:
                    raise ConflictError(f"Destination already exists: {dst}", path=dst, backend=self.name)
                self._ftp.delete(dst)
            self._mkdirs(self._split(dst)[0])
            self._ftp.rename(src, dst)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                with contextlib.suppress(Exception):
                    self._conn.quit()
            self._drop_connection()
