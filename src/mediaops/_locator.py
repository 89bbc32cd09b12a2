"""ResourceLocator, the immutable structured form of a path string, and the path resolver."""

from __future__ import annotations

import dataclasses
import re
from typing import Final

from mediaops._errors import InvalidPathError

LOCAL_SCHEMES: Final = frozenset({"file", "content"})
NETWORK_SCHEMES: Final = frozenset({"smb", "sftp", "ftp"})
CLOUD_SCHEME: Final = "cloud"
KNOWN_SCHEMES: Final = LOCAL_SCHEMES | NETWORK_SCHEMES | {CLOUD_SCHEME}

DEFAULT_PORTS: Final = {"smb": 445, "sftp": 22, "ftp": 21}

CLOUD_PROVIDERS: Final = frozenset({"google_drive", "onedrive", "dropbox"})
_PROVIDER_ALIASES: Final = {
    "googledrive": "google_drive",
    "gdrive": "google_drive",
    "google-drive": "google_drive",
    "one_drive": "onedrive",
}

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):(/*)(.*)$", re.DOTALL)


def normalize_provider(provider: str) -> str:
    """Map a provider segment to its canonical id.

    :raises InvalidPathError: If the provider is not one of the known cloud providers.
    """
    key = provider.strip().lower()
    key = _PROVIDER_ALIASES.get(key, key)
    if key not in CLOUD_PROVIDERS:
        raise InvalidPathError(f"Unknown cloud provider: {provider!r}", path=provider)
    return key


def normalize_remote_path(raw: str, *, original: str = "") -> str:
    """Normalize a remote path to ``/a/b/c`` form.

    Backslashes become forward slashes, empty and ``.`` segments are dropped.

    :raises InvalidPathError: On null bytes or ``..`` segments.
    """
    if "\0" in raw:
        raise InvalidPathError("Path contains null byte", path=original or raw)
    parts: list[str] = []
    for segment in raw.replace("\\", "/").split("/"):
        if segment == "" or segment == ".":
            continue
        if segment == "..":
            raise InvalidPathError("Path contains '..' segment", path=original or raw)
        parts.append(segment)
    return "/" + "/".join(parts)


@dataclasses.dataclass(frozen=True)
class ResourceLocator:
    """Structured, immutable form of a path string.

    A locator never carries secrets; ``credential_ref`` only names a record in
    the credential store.

    :param scheme: One of ``file``, ``content``, ``smb``, ``sftp``, ``ftp``, ``cloud``.
    :param host: Server host, SAF authority, or cloud provider id. Empty for plain local paths.
    :param port: Server port for network schemes, ``None`` otherwise.
    :param remote_path: Normalized absolute path on the resource (``/share/dir/file`` for SMB).
    :param credential_ref: Explicit credential id taken from the resource record, if any.
    :param display_name: Name shown to users; defaults to the final path component.
    """

    scheme: str
    host: str
    port: int | None
    remote_path: str
    credential_ref: str | None = None
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.display_name:
            object.__setattr__(self, "display_name", self.name)

    # region: identity

    @property
    def is_local(self) -> bool:
        return self.scheme in LOCAL_SCHEMES

    @property
    def is_cloud(self) -> bool:
        return self.scheme == CLOUD_SCHEME

    @property
    def provider(self) -> str | None:
        """Cloud provider id, or ``None`` for non-cloud locators."""
        return self.host if self.is_cloud else None

    @property
    def backend_type(self) -> str:
        """Adapter dispatch key: ``local``, ``smb``, ``sftp``, ``ftp`` or ``cloud:<provider>``."""
        if self.is_local:
            return "local"
        if self.is_cloud:
            return f"cloud:{self.host}"
        return self.scheme

    @property
    def share(self) -> str | None:
        """SMB share name (first path segment), ``None`` for other schemes."""
        if self.scheme != "smb":
            return None
        parts = self.parts
        return parts[0] if parts else None

    @property
    def resource_key(self) -> str:
        """Identity of the resource this path lives on.

        Two locators with equal keys are served by the same adapter instance,
        which is what makes native (server-side) transfers possible.
        """
        if self.is_local:
            return "file://"
        if self.is_cloud:
            return f"cloud://{self.host}"
        key = f"{self.scheme}://{self.host}:{self.port}"
        if self.scheme == "smb" and self.share:
            key = f"{key}/{self.share}"
        return key

    def same_resource(self, other: ResourceLocator) -> bool:
        return self.resource_key == other.resource_key and self.credential_ref == other.credential_ref

    # endregion

    # region: path navigation

    @property
    def parts(self) -> tuple[str, ...]:
        return tuple(p for p in self.remote_path.split("/") if p)

    @property
    def name(self) -> str:
        """Final component of the remote path, or empty string for the root."""
        parts = self.parts
        return parts[-1] if parts else ""

    @property
    def parent(self) -> ResourceLocator:
        """Locator of the containing folder. The root is its own parent."""
        parts = self.parts
        return self.with_path("/" + "/".join(parts[:-1]))

    def child(self, name: str) -> ResourceLocator:
        return self.with_path(f"{self.remote_path.rstrip('/')}/{name}")

    def with_name(self, name: str) -> ResourceLocator:
        return self.parent.child(name)

    def with_path(self, remote_path: str) -> ResourceLocator:
        normalized = normalize_remote_path(remote_path)
        return dataclasses.replace(self, remote_path=normalized, display_name="")

    # endregion

    def __str__(self) -> str:
        if self.scheme == "file":
            return f"file://{self.remote_path}"
        authority = self.host
        if self.port is not None and self.port != DEFAULT_PORTS.get(self.scheme):
            authority = f"{authority}:{self.port}"
        path = self.remote_path if self.remote_path != "/" else ""
        return f"{self.scheme}://{authority}{path}"


def resolve(path: str, *, credential_ref: str | None = None, display_name: str = "") -> ResourceLocator:
    """Parse a path string into a :class:`ResourceLocator`.

    Accepted forms are ``scheme://host[:port]/remote/path`` for the known
    schemes, ``file:///abs/path``, and bare absolute local paths. ``cloud:/x``
    is normalized to ``cloud://x``.

    :raises InvalidPathError: If the scheme is unknown or a required host is missing.
    """
    raw = path.strip()
    if not raw:
        raise InvalidPathError("Path is empty", path=path)
    if raw.startswith("/"):
        return ResourceLocator(
            scheme="file",
            host="",
            port=None,
            remote_path=normalize_remote_path(raw, original=path),
            credential_ref=credential_ref,
            display_name=display_name,
        )

    match = _SCHEME_RE.match(raw)
    if match is None:
        raise InvalidPathError("Path has no scheme and is not absolute", path=path)
    scheme, slashes, rest = match.group(1).lower(), match.group(2), match.group(3)
    if scheme not in KNOWN_SCHEMES:
        raise InvalidPathError(f"Unrecognized scheme: {scheme!r}", path=path)

    if scheme == "file":
        # file:///abs, file:/abs and file://localhost/abs all name a local path
        body = rest if len(slashes) != 2 else rest.partition("/")[2]
        return ResourceLocator(
            scheme="file",
            host="",
            port=None,
            remote_path=normalize_remote_path(body, original=path),
            credential_ref=credential_ref,
            display_name=display_name,
        )

    authority, _, remainder = rest.partition("/")
    if not authority:
        raise InvalidPathError(f"Missing host segment for {scheme!r} path", path=path)
    remote_path = normalize_remote_path(remainder, original=path)

    if scheme == CLOUD_SCHEME:
        return ResourceLocator(
            scheme=scheme,
            host=normalize_provider(authority),
            port=None,
            remote_path=remote_path,
            credential_ref=credential_ref,
            display_name=display_name,
        )

    if scheme == "content":
        return ResourceLocator(
            scheme=scheme,
            host=authority,
            port=None,
            remote_path=remote_path,
            credential_ref=credential_ref,
            display_name=display_name,
        )

    host, port = _split_host_port(authority, scheme, path)
    locator = ResourceLocator(
        scheme=scheme,
        host=host,
        port=port,
        remote_path=remote_path,
        credential_ref=credential_ref,
        display_name=display_name,
    )
    if scheme == "smb" and locator.share is None:
        raise InvalidPathError("SMB path requires a share name", path=path)
    return locator


def _split_host_port(authority: str, scheme: str, original: str) -> tuple[str, int]:
    # user@host is accepted for display but the user part is not kept: credentials live in the store
    host_port = authority.rpartition("@")[2]
    if host_port.startswith("["):
        host, _, tail = host_port[1:].partition("]")
        port_text = tail[1:] if tail.startswith(":") else ""
    elif host_port.count(":") == 1:
        host, _, port_text = host_port.partition(":")
    else:
        host, port_text = host_port, ""
    if not host:
        raise InvalidPathError(f"Missing host segment for {scheme!r} path", path=original)
    if not port_text:
        return host, DEFAULT_PORTS[scheme]
    try:
        port = int(port_text)
    except ValueError:
        raise InvalidPathError(f"Invalid port: {port_text!r}", path=original) from None
    if not 0 < port < 65536:
        raise InvalidPathError(f"Port out of range: {port}", path=original)
    return host, port
