"""Credential store interface and the resolver used by every backend call."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from mediaops._errors import CredentialsNotFoundError
from mediaops._models import NetworkCredentials

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from mediaops._locator import ResourceLocator

log = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Read access to stored network credentials.

    Implementations own the secrets; this package never writes to them.
    """

    def find_by_id(self, credential_ref: str) -> NetworkCredentials | None: ...

    def find_by_server(self, backend_type: str, server: str, port: int | None) -> NetworkCredentials | None: ...

    def find_by_share(self, server: str, share_name: str) -> NetworkCredentials | None: ...

    def find_by_host(self, backend_type: str, server: str) -> NetworkCredentials | None: ...


class InMemoryCredentialStore:
    """Dict-backed :class:`CredentialStore`.

    :param credentials: Initial records.
    """

    def __init__(self, credentials: Iterable[NetworkCredentials] = ()) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, NetworkCredentials] = {}
        for cred in credentials:
            self.put(cred)

    @classmethod
    def from_dicts(cls, items: Iterable[Mapping[str, object]]) -> InMemoryCredentialStore:
        """Build from plain dicts (e.g. parsed TOML/JSON).

        :raises TypeError: If an item is not a dict.
        :raises ValueError: If ``id``, ``backend_type`` or ``server`` is missing.
        """
        records = []
        for item in items:
            if not isinstance(item, dict):
                raise TypeError("Credential entries must be dicts")
            missing = [k for k in ("id", "backend_type", "server") if not item.get(k)]
            if missing:
                raise ValueError(f"Credential entry is missing {', '.join(missing)}")
            port = item.get("port")
            records.append(
                NetworkCredentials(
                    id=str(item["id"]),
                    backend_type=str(item["backend_type"]),
                    server=str(item["server"]),
                    port=int(port) if port is not None else None,  # type: ignore[call-overload]
                    username=str(item.get("username", "")),
                    secret=str(item.get("secret", "")),
                    domain=_opt_str(item.get("domain")),
                    share_name=_opt_str(item.get("share_name")),
                    key_material=_opt_str(item.get("key_material")),
                )
            )
        return cls(records)

    def put(self, credentials: NetworkCredentials) -> None:
        with self._lock:
            self._records[credentials.id] = credentials

    def remove(self, credential_ref: str) -> None:
        with self._lock:
            self._records.pop(credential_ref, None)

    def _all(self) -> list[NetworkCredentials]:
        with self._lock:
            return list(self._records.values())

    def find_by_id(self, credential_ref: str) -> NetworkCredentials | None:
        with self._lock:
            return self._records.get(credential_ref)

    def find_by_server(self, backend_type: str, server: str, port: int | None) -> NetworkCredentials | None:
        server = server.lower()
        for cred in self._all():
            if cred.backend_type == backend_type and cred.server.lower() == server and cred.port == port:
                return cred
        return None

    def find_by_share(self, server: str, share_name: str) -> NetworkCredentials | None:
        server = server.lower()
        for cred in self._all():
            if (
                cred.backend_type == "smb"
                and cred.server.lower() == server
                and (cred.share_name or "").lower() == share_name.lower()
            ):
                return cred
        return None

    def find_by_host(self, backend_type: str, server: str) -> NetworkCredentials | None:
        server = server.lower()
        for cred in self._all():
            if cred.backend_type == backend_type and cred.server.lower() == server:
                return cred
        return None


def _opt_str(value: object) -> str | None:
    return None if value is None else str(value)


class CredentialResolver:
    """Finds the credentials for a locator.

    Nothing is cached: every call goes back to the store, so a rotated
    password takes effect on the next backend call.

    :param store: The credential store to read from.
    """

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def find(self, locator: ResourceLocator) -> NetworkCredentials | None:
        """Look up credentials, trying the explicit ref then progressively looser matches."""
        if locator.is_local:
            return None
        if locator.credential_ref:
            return self._store.find_by_id(locator.credential_ref)
        backend_type = locator.backend_type
        server = locator.host
        cred = self._store.find_by_server(backend_type, server, locator.port)
        if cred is None and locator.share:
            cred = self._store.find_by_share(server, locator.share)
        if cred is None:
            cred = self._store.find_by_host(backend_type, server)
        return cred

    def require(self, locator: ResourceLocator) -> NetworkCredentials | None:
        """Like :meth:`find` but raise for remote locators with no match.

        Local locators need no credentials and resolve to ``None``.

        :raises CredentialsNotFoundError: If a remote locator has no stored credentials.
        """
        if locator.is_local:
            return None
        cred = self.find(locator)
        if cred is None:
            log.debug("No credentials for %s", locator.resource_key)
            raise CredentialsNotFoundError(
                f"No credentials stored for {locator.resource_key}",
                path=str(locator),
                backend=locator.backend_type,
            )
        return cred
