"""SFTP adapter built on paramiko's ``SSHClient`` and ``SFTPClient``."""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import re
import socket
import stat
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from io import StringIO
from typing import TYPE_CHECKING, Any, BinaryIO, NamedTuple

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import ALL_CAPABILITIES, CapabilitySet
from mediaops._errors import (
    ConflictError,
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

_CHUNK_SIZE = 32768

_ERRNO_ERRORS: dict[int, tuple[type[MediaOpsError], str]] = {
    errno.ENOENT: (NotFound, "Not found"),
    errno.EACCES: (PermissionDeniedError, "Permission denied"),
    errno.EPERM: (PermissionDeniedError, "Permission denied"),
    errno.EEXIST: (ConflictError, "Already exists"),
}


class HostKeyPolicy(Enum):
    """Controls how unknown remote host keys are handled.

    :cvar STRICT: Reject hosts missing from known_hosts.
    :cvar TRUST_ON_FIRST_USE: Accept and remember on first connect.
    :cvar AUTO_ADD: Accept any key, for test servers.
    """

    STRICT = "strict"
    TRUST_ON_FIRST_USE = "tofu"
    AUTO_ADD = "auto"


# region: key material
_PEM_BLOCK = re.compile(r"^\s*(-----BEGIN [A-Z0-9 ]+-----)(.*?)(-----END [A-Z0-9 ]+-----)\s*$", re.DOTALL)


def _sanitize_pem(pem_content: str) -> str:
    """Rebuild a PEM block whose line breaks were flattened to spaces.

    Keys pasted into a settings field usually lose their newlines. A body
    that still has line breaks is left as it is.
    """
    match = _PEM_BLOCK.match(pem_content)
    if match is None:
        raise ValueError("Invalid PEM structure: expected BEGIN and END markers")
    header, body, footer = match.groups()
    if "\n" not in body.strip():
        body = "\n".join(body.split())
    return f"{header}\n{body.strip()}\n{footer}\n"


def load_private_key(key_material: str, *, passphrase: str | None = None) -> Any:
    """Load a private key from PEM text, trying the key types paramiko knows.

    :raises ValueError: If no key type accepts the material.
    """
    import paramiko

    pem = _sanitize_pem(key_material)
    for key_cls in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
        try:
            return key_cls.from_private_key(StringIO(pem), password=passphrase)
        except paramiko.SSHException:
            log.debug("Key material is not a %s", key_cls.__name__)
    raise ValueError("Unsupported or invalid private key material")


# endregion


class _Session(NamedTuple):
    ssh: Any
    sftp: Any

    @property
    def alive(self) -> bool:
        transport = self.ssh.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        for client in (self.sftp, self.ssh):
            with contextlib.suppress(Exception):
                client.close()


class SFTPAdapter(BackendAdapter):
    """SFTP server adapter.

    Connects lazily on first use and reconnects when the session went stale.
    Writes land in a temporary sibling that is renamed over the target.

    :param host: Server hostname (required, non-empty).
    :param port: SSH port.
    :param username: SSH username.
    :param password: SSH password.
    :param pkey: ``paramiko.PKey`` for key-based auth.
    :param host_key_policy: Host key verification policy.
    :param host_keys_path: known_hosts file (default ``~/.ssh/known_hosts``).
    :param timeout: Connect, banner and auth timeout in seconds.
    :param connect_kwargs: Extra kwargs for ``SSHClient.connect()``.
    """

    schemes = frozenset({"sftp"})

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: str | None = None,
        password: str | None = None,
        pkey: Any = None,
        host_key_policy: HostKeyPolicy = HostKeyPolicy.TRUST_ON_FIRST_USE,
        host_keys_path: str | None = None,
        timeout: int = 10,
        connect_kwargs: dict[str, Any] | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._pkey = pkey
        self._host_key_policy = host_key_policy
        self._host_keys_path = host_keys_path or os.path.expanduser("~/.ssh/known_hosts")
        self._timeout = timeout
        self._connect_kwargs = connect_kwargs or {}
        self._session: _Session | None = None
        self._connect_lock = threading.Lock()

    @classmethod
    def from_locator(cls, locator: ResourceLocator, credentials: NetworkCredentials | None) -> SFTPAdapter:
        """Password login, or key login when the credentials carry key material.

        With key material the secret is the key's passphrase.
        """
        if credentials is None:
            return cls(locator.host, port=locator.port or 22)
        secret = credentials.secret or None
        if credentials.key_material:
            pkey = load_private_key(credentials.key_material, passphrase=secret)
            return cls(locator.host, port=locator.port or 22, username=credentials.username, pkey=pkey)
        return cls(locator.host, port=locator.port or 22, username=credentials.username, password=secret)

    @property
    def name(self) -> str:
        return "sftp"

    @property
    def capabilities(self) -> CapabilitySet:
        return ALL_CAPABILITIES

    # region: session
    @property
    def _sftp(self) -> Any:
        with self._connect_lock:
            session = self._session
            if session is None or not session.alive:
                self._drop_session()
                session = self._session = self._open_session()
            return session.sftp

    def _is_connected(self) -> bool:
        return self._session is not None and self._session.alive

    def _drop_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _open_session(self) -> _Session:
        import paramiko

        ssh = paramiko.SSHClient()
        self._apply_host_key_policy(ssh)
        log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
        timeouts = dict.fromkeys(("timeout", "banner_timeout", "auth_timeout", "channel_timeout"), self._timeout)
        try:
            ssh.connect(
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                pkey=self._pkey,
                **timeouts,
                **self._connect_kwargs,
            )
            session = _Session(ssh, ssh.open_sftp())
        except paramiko.AuthenticationException as exc:
            ssh.close()
            raise PermissionDeniedError(f"SFTP authentication failed: {exc}", backend=self.name) from None
        except (paramiko.SSHException, OSError, EOFError) as exc:
            ssh.close()
            message = f"Cannot connect to {self._host}:{self._port}: {exc}"
            raise RemoteConnectionError(message, backend=self.name) from None
        log.info("SFTP session to %s open", self._host)
        return session

    def _apply_host_key_policy(self, ssh: Any) -> None:
        import paramiko

        if self._host_key_policy is HostKeyPolicy.AUTO_ADD:
            log.warning("Accepting any host key for %s; use only against test servers", self._host)
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            return
        if os.path.isfile(self._host_keys_path):
            ssh.load_host_keys(self._host_keys_path)
        strict = self._host_key_policy is HostKeyPolicy.STRICT
        ssh.set_missing_host_key_policy(paramiko.RejectPolicy() if strict else paramiko.AutoAddPolicy())

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map paramiko and OS exceptions; a dead transport drops the session."""
        import paramiko

        try:
            yield
        except MediaOpsError:
            raise
        except (socket.timeout, ConnectionError, EOFError, paramiko.SSHException) as exc:
            self._drop_session()
            raise RemoteConnectionError(str(exc) or "SFTP connection lost", path=path, backend=self.name) from None
        except OSError as exc:
            mapped = _ERRNO_ERRORS.get(exc.errno or 0)
            if mapped is None and isinstance(exc, FileNotFoundError):
                mapped = _ERRNO_ERRORS[errno.ENOENT]
            if mapped is None:
                raise MediaOpsError(str(exc), path=path, backend=self.name) from None
            cls, label = mapped
            raise cls(f"{label}: {path}", path=path, backend=self.name) from None

    # endregion

    # region: helpers
    def _stat(self, path: str) -> Any:
        """``SFTPAttributes`` for ``path``, or ``None`` when it does not exist."""
        try:
            return self._sftp.stat(path)
        except OSError as exc:
            if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
                return None
            raise

    def _ensure_dirs(self, folder: str) -> None:
        current = ""
        for part in filter(None, folder.split("/")):
            current = f"{current}/{part}"
            if self._stat(current) is None:
                with contextlib.suppress(OSError):
                    self._sftp.mkdir(current)

    def _replace(self, src: str, dst: str, *, overwrite: bool) -> None:
        """Rename ``src`` onto ``dst``; falls back to plain rename without the posix-rename extension."""
        try:
            self._sftp.posix_rename(src, dst)
        except OSError:
            if overwrite:
                with contextlib.suppress(OSError):
                    self._sftp.remove(dst)
            self._sftp.rename(src, dst)

    def _check_target(self, dst: str, *, overwrite: bool) -> None:
        if not overwrite and self._stat(dst) is not None:
            raise ConflictError(f"Destination already exists: {dst}", path=dst, backend=self.name)

    @staticmethod
    def _parent(path: str) -> str:
        return path.rstrip("/").rsplit("/", 1)[0] or "/"

    @staticmethod
    def _descriptor(path: str, attr: Any) -> FileDescriptor:
        folder = stat.S_ISDIR(attr.st_mode or 0)
        return FileDescriptor(
            path=path,
            size=0 if folder else int(attr.st_size or 0),
            modified_at=datetime.fromtimestamp(attr.st_mtime, tz=timezone.utc) if attr.st_mtime else None,
            is_folder=folder,
        )

    # endregion

    def exists(self, path: str) -> bool:
        with self._errors(path):
            return self._stat(path) is not None

    def list(self, path: str) -> Iterator[FileDescriptor]:
        with self._errors(path):
            if self._stat(path) is None:
                return
            entries = self._sftp.listdir_attr(path)
        base = path.rstrip("/")
        for attr in sorted(entries, key=lambda a: a.filename):
            yield self._descriptor(f"{base}/{attr.filename}", attr)

    def read(self, path: str) -> BinaryIO:
        with self._errors(path):
            handle = self._sftp.file(path, "rb")
            handle.prefetch()
            return handle  # type: ignore[no-any-return]

    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        with self._errors(path):
            self._check_target(path, overwrite=overwrite)
            parent = self._parent(path)
            self._ensure_dirs(parent)
            staging = f"{parent.rstrip('/')}/.~tmp.{uuid.uuid4().hex[:8]}"
            try:
                with self._sftp.file(staging, "wb") as out:
                    out.set_pipelined(True)
                    written = self._pump(content, out)
                self._replace(staging, path, overwrite=overwrite)
            except BaseException:
                with contextlib.suppress(Exception):
                    self._sftp.remove(staging)
                raise
            return written

    @staticmethod
    def _pump(content: WritableContent, out: Any) -> int:
        if isinstance(content, bytes):
            out.write(content)
            return len(content)
        total = 0
        for chunk in iter(lambda: content.read(_CHUNK_SIZE), b""):
            out.write(chunk)
            total += len(chunk)
        return total

    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        with self._errors(path):
            if missing_ok and self._stat(path) is None:
                return False
            self._sftp.remove(path)
        return True

    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        with self._errors(path):
            if self._stat(path) is None:
                if missing_ok:
                    return
                raise NotFound(f"Folder not found: {path}", path=path, backend=self.name)
            if recursive:
                self._rmtree(path)
            else:
                self._sftp.rmdir(path)

    def _rmtree(self, path: str) -> None:
        for attr in self._sftp.listdir_attr(path):
            child = f"{path.rstrip('/')}/{attr.filename}"
            if stat.S_ISDIR(attr.st_mode or 0):
                self._rmtree(child)
            else:
                self._sftp.remove(child)
        self._sftp.rmdir(path)

    def make_dirs(self, path: str) -> None:
        with self._errors(path):
            self._ensure_dirs(path)

    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        with self._errors(src):
            if self._stat(src) is None:
                raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
            self._check_target(dst, overwrite=overwrite)
            self._ensure_dirs(self._parent(dst))
            self._replace(src, dst, overwrite=overwrite)

    def copy(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        # no server-side copy in SFTP v3; both handles share one session
        with self._errors(src):
            if self._stat(src) is None:
                raise NotFound(f"Source not found: {src}", path=src, backend=self.name)
            with self._sftp.file(src, "rb") as source:
                source.prefetch()
                self.write(dst, source, overwrite=overwrite)

    def close(self) -> None:
        with self._connect_lock:
            self._drop_session()
