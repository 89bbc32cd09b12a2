"""Adapter factory registration and the per-resource adapter pool."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

from mediaops._errors import CapabilityNotSupported

if TYPE_CHECKING:
    from types import TracebackType

    from mediaops._adapter import BackendAdapter
    from mediaops._credentials import CredentialResolver
    from mediaops._locator import ResourceLocator
    from mediaops._models import NetworkCredentials

log = logging.getLogger(__name__)


class AdapterFactory(Protocol):
    def __call__(self, locator: ResourceLocator, credentials: NetworkCredentials | None) -> BackendAdapter: ...


# Global adapter factory registry: maps backend types to factories.
_ADAPTER_FACTORIES: dict[str, AdapterFactory] = {}


def register_adapter(backend_type: str, factory: AdapterFactory) -> None:
    """Register an adapter factory for a backend type.

    :param backend_type: ``local``, ``smb``, ``sftp``, ``ftp`` or ``cloud:<provider>``.
    :param factory: Called with the locator and its resolved credentials.
    """
    _ADAPTER_FACTORIES[backend_type] = factory


def registered_backend_types() -> frozenset[str]:
    _register_builtin_adapters()
    return frozenset(_ADAPTER_FACTORIES)


def _register_builtin_adapters() -> None:
    """Register the built-in adapters. Wire libraries are imported on first connection."""
    from mediaops.adapters._ftp import FTPAdapter
    from mediaops.adapters._local import LocalAdapter
    from mediaops.adapters._sftp import SFTPAdapter
    from mediaops.adapters._smb import SMBAdapter

    _ADAPTER_FACTORIES.setdefault("local", LocalAdapter.from_locator)
    _ADAPTER_FACTORIES.setdefault("sftp", SFTPAdapter.from_locator)
    _ADAPTER_FACTORIES.setdefault("smb", SMBAdapter.from_locator)
    _ADAPTER_FACTORIES.setdefault("ftp", FTPAdapter.from_locator)


class AdapterPool:
    """Lazily creates and caches one adapter per resource.

    Credentials are resolved on every :meth:`get`; the cache key includes the
    credentials' fingerprint, so a rotated secret yields a fresh adapter and
    the stale one is closed.

    :param resolver: Credential resolver consulted on every lookup.
    :param factories: Extra or overriding factories for this pool only.
    """

    def __init__(self, resolver: CredentialResolver, factories: dict[str, AdapterFactory] | None = None) -> None:
        _register_builtin_adapters()
        self._resolver = resolver
        self._factories = {**_ADAPTER_FACTORIES, **(factories or {})}
        self._adapters: dict[str, tuple[str, BackendAdapter]] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"AdapterPool(backends={sorted(self._factories)!r})"

    def get(self, locator: ResourceLocator) -> BackendAdapter:
        """Adapter serving ``locator``'s resource.

        :raises CredentialsNotFoundError: If a remote resource has no credentials.
        :raises CapabilityNotSupported: If no adapter is registered for the backend type.
        """
        credentials = self._resolver.require(locator)
        fingerprint = credentials.fingerprint if credentials is not None else ""
        key = locator.resource_key
        if locator.credential_ref is not None:
            key = f"{key}#{locator.credential_ref}"
        stale: BackendAdapter | None = None
        with self._lock:
            cached = self._adapters.get(key)
            if cached is not None and cached[0] == fingerprint:
                return cached[1]
            if cached is not None:
                stale = cached[1]
                log.info("Credentials for %s changed; reconnecting", locator.resource_key)
            factory = self._factories.get(locator.backend_type)
            if factory is None:
                raise CapabilityNotSupported(
                    f"No adapter registered for backend type '{locator.backend_type}'. "
                    f"Registered types: {sorted(self._factories)}",
                    capability="adapter",
                    backend=locator.backend_type,
                )
            adapter = factory(locator, credentials)
            if not adapter.supports(locator.scheme) and not adapter.supports(locator.backend_type):
                raise CapabilityNotSupported(
                    f"Adapter '{adapter.name}' does not serve scheme '{locator.scheme}'",
                    capability="adapter",
                    backend=adapter.name,
                )
            self._adapters[key] = (fingerprint, adapter)
        if stale is not None:
            stale.close()
        return adapter

    def close(self) -> None:
        """Close all instantiated adapters."""
        with self._lock:
            adapters = [a for _, a in self._adapters.values()]
            self._adapters.clear()
        for adapter in adapters:
            adapter.close()

    def __enter__(self) -> AdapterPool:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
