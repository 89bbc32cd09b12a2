"""Cloud storage adapter and an HTTP client for provider storage APIs.

:class:`CloudAdapter` is provider-agnostic: it talks to a :class:`CloudClient`
bound to one provider and one account. :class:`HttpCloudClient` implements
that client over ``httpx`` against a JSON storage endpoint and maps HTTP
status codes to the mediaops error taxonomy. A rejected access token
(HTTP 401) surfaces as :class:`~mediaops._errors.AuthenticationExpired`,
which the auth retry wrapper turns into one refresh and one replay.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

import httpx

from mediaops._adapter import BackendAdapter
from mediaops._capabilities import ALL_CAPABILITIES, CapabilitySet
from mediaops._errors import (
    AuthenticationExpired,
    ConflictError,
    MediaOpsError,
    NotFound,
    PermissionDeniedError,
    RemoteConnectionError,
)
from mediaops._models import FileDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from mediaops._auth import OAuth2TokenRefresher
    from mediaops._locator import ResourceLocator
    from mediaops._models import NetworkCredentials
    from mediaops._registry import AdapterFactory
    from mediaops._types import WritableContent

log = logging.getLogger(__name__)

_CHUNK_SIZE = 256 * 1024


@runtime_checkable
class CloudClient(Protocol):
    """Storage operations of one provider account, addressed by ``/a/b`` paths.

    Implementations raise mediaops errors only; ``AuthenticationExpired`` when
    the provider rejects the access token.
    """

    provider: str

    def stat(self, path: str) -> FileDescriptor | None: ...

    def list_folder(self, path: str) -> list[FileDescriptor]: ...

    def download(self, path: str) -> BinaryIO: ...

    def upload(self, path: str, content: WritableContent, *, size: int | None, overwrite: bool) -> int: ...

    def delete(self, path: str) -> None: ...

    def create_folder(self, path: str) -> None: ...

    def move(self, src: str, dst: str, *, overwrite: bool) -> None: ...

    def copy(self, src: str, dst: str, *, overwrite: bool) -> None: ...

    def close(self) -> None: ...


class CloudAdapter(BackendAdapter):
    """Adapter for one cloud provider account.

    Copy and move between two paths of the same provider are server-side.

    :param client: Provider client; its ``provider`` names the backend type.
    """

    schemes = frozenset({"cloud"})

    def __init__(self, client: CloudClient) -> None:
        self._client = client

    @property
    def provider(self) -> str:
        return self._client.provider

    @property
    def name(self) -> str:
        return f"cloud:{self._client.provider}"

    @property
    def capabilities(self) -> CapabilitySet:
        return ALL_CAPABILITIES

    def exists(self, path: str) -> bool:
        return self._client.stat(path) is not None

    def list(self, path: str) -> Iterator[FileDescriptor]:
        try:
            entries = self._client.list_folder(path)
        except NotFound:
            return
        yield from sorted(entries, key=lambda d: d.path)

    def read(self, path: str) -> BinaryIO:
        return self._client.download(path)

    def write(
        self, path: str, content: WritableContent, *, known_size: int | None = None, overwrite: bool = False
    ) -> int:
        return self._client.upload(path, content, size=known_size, overwrite=overwrite)

    def delete(self, path: str, *, missing_ok: bool = False) -> bool:
        try:
            self._client.delete(path)
        except NotFound:
            if missing_ok:
                return False
            raise
        return True

    def delete_folder(self, path: str, *, recursive: bool = False, missing_ok: bool = False) -> None:
        info = self._client.stat(path)
        if info is None:
            if missing_ok:
                return
            raise NotFound(f"Folder not found: {path}", path=path, backend=self.name)
        if not recursive and self._client.list_folder(path):
            raise MediaOpsError(f"Folder not empty: {path}", path=path, backend=self.name)
        # providers delete folders with their contents in one call
        self._client.delete(path)

    def make_dirs(self, path: str) -> None:
        current = ""
        for part in [p for p in path.split("/") if p]:
            current = f"{current}/{part}"
            if self._client.stat(current) is None:
                self._client.create_folder(current)

    def move(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        self._client.move(src, dst, overwrite=overwrite)

    def copy(self, src: str, dst: str, *, overwrite: bool = False) -> None:
        self._client.copy(src, dst, overwrite=overwrite)

    def close(self) -> None:
        self._client.close()


# region: HTTP client


class _ResponseStream(io.RawIOBase):
    """Readable raw stream over a streamed ``httpx.Response``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks = response.iter_bytes(_CHUNK_SIZE)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        if not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except httpx.TransportError as exc:
                raise RemoteConnectionError(f"Download interrupted: {exc}") from None
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def _iter_content(content: WritableContent) -> Iterator[bytes]:
    if isinstance(content, bytes):
        yield content
        return
    while chunk := content.read(_CHUNK_SIZE):
        yield chunk


class HttpCloudClient:
    """JSON-over-HTTP storage client for one provider account.

    Endpoints, relative to ``base_url``:

    - ``GET metadata?path=`` and ``GET list?path=`` return item objects
      (``path``, ``size``, ``modified``, ``folder``);
    - ``GET content?path=`` streams file bytes, ``PUT content?path=&overwrite=`` uploads;
    - ``DELETE items?path=`` deletes a file or folder;
    - ``POST folders``, ``POST move`` and ``POST copy`` take a JSON body.

    :param provider: Canonical provider id.
    :param base_url: Storage endpoint of the provider gateway.
    :param token: ``token(provider) -> access token``; raises ``AuthenticationExpired`` when none is valid.
    :param http: Optional ``httpx.Client`` (injected in tests).
    :param timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        token: Callable[[str], str],
        *,
        http: httpx.Client | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.provider = provider
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=timeout)
        self._backend = f"cloud:{provider}"

    def __repr__(self) -> str:
        return f"HttpCloudClient(provider={self.provider!r}, base_url={self._base_url!r})"

    # region: request plumbing

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/{endpoint}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token(self.provider)}"}

    def _check(self, response: httpx.Response, path: str) -> httpx.Response:
        status = response.status_code
        if status < 400:
            return response
        if status == 401:
            raise AuthenticationExpired(provider=self.provider, path=path)
        if status == 403:
            raise PermissionDeniedError(f"Permission denied: {path}", path=path, backend=self._backend)
        if status == 404:
            raise NotFound(f"Not found: {path}", path=path, backend=self._backend)
        if status in (409, 412):
            raise ConflictError(f"Already exists: {path}", path=path, backend=self._backend)
        if status in (408, 429) or status >= 500:
            raise RemoteConnectionError(f"Provider unavailable (HTTP {status})", path=path, backend=self._backend)
        raise MediaOpsError(f"Provider rejected request (HTTP {status})", path=path, backend=self._backend)

    def _request(self, method: str, endpoint: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._http.request(method, self._url(endpoint), headers=self._headers(), **kwargs)
        except httpx.TransportError as exc:
            raise RemoteConnectionError(str(exc) or type(exc).__name__, path=path, backend=self._backend) from None
        return self._check(response, path)

    @staticmethod
    def _descriptor(item: Mapping[str, Any]) -> FileDescriptor:
        modified = item.get("modified")
        return FileDescriptor(
            path=str(item["path"]),
            size=int(item.get("size") or 0),
            modified_at=datetime.fromisoformat(str(modified).replace("Z", "+00:00")) if modified else None,
            is_folder=bool(item.get("folder", False)),
        )

    # endregion

    def stat(self, path: str) -> FileDescriptor | None:
        try:
            response = self._request("GET", "metadata", path, params={"path": path})
        except NotFound:
            return None
        return self._descriptor(response.json())

    def list_folder(self, path: str) -> list[FileDescriptor]:
        response = self._request("GET", "list", path, params={"path": path})
        return [self._descriptor(item) for item in response.json().get("entries", [])]

    def download(self, path: str) -> BinaryIO:
        request = self._http.build_request("GET", self._url("content"), params={"path": path}, headers=self._headers())
        try:
            response = self._http.send(request, stream=True)
        except httpx.TransportError as exc:
            raise RemoteConnectionError(str(exc) or type(exc).__name__, path=path, backend=self._backend) from None
        if response.status_code >= 400:
            response.read()
            response.close()
            self._check(response, path)
        return io.BufferedReader(_ResponseStream(response), buffer_size=_CHUNK_SIZE)  # type: ignore[return-value]

    def upload(self, path: str, content: WritableContent, *, size: int | None, overwrite: bool) -> int:
        written = 0

        def _counted() -> Iterator[bytes]:
            nonlocal written
            for chunk in _iter_content(content):
                written += len(chunk)
                yield chunk

        headers = {"Content-Type": "application/octet-stream"}
        if size is not None:
            headers["Content-Length"] = str(size)
        params = {"path": path, "overwrite": "true" if overwrite else "false"}
        try:
            response = self._http.put(
                self._url("content"), params=params, content=_counted(), headers={**self._headers(), **headers}
            )
        except httpx.TransportError as exc:
            raise RemoteConnectionError(str(exc) or type(exc).__name__, path=path, backend=self._backend) from None
        self._check(response, path)
        return written

    def delete(self, path: str) -> None:
        self._request("DELETE", "items", path, params={"path": path})

    def create_folder(self, path: str) -> None:
        try:
            self._request("POST", "folders", path, json={"path": path})
        except ConflictError:
            pass

    def move(self, src: str, dst: str, *, overwrite: bool) -> None:
        self._request("POST", "move", src, json={"from": src, "to": dst, "overwrite": overwrite})

    def copy(self, src: str, dst: str, *, overwrite: bool) -> None:
        self._request("POST", "copy", src, json={"from": src, "to": dst, "overwrite": overwrite})

    def close(self) -> None:
        if self._owns_http:
            self._http.close()


# endregion


def http_cloud_factory(
    endpoints: Mapping[str, str],
    refresher: OAuth2TokenRefresher,
    *,
    http: httpx.Client | None = None,
) -> AdapterFactory:
    """Adapter factory building :class:`HttpCloudClient`-backed adapters.

    The stored credentials' ``secret`` is the provider refresh token; it seeds
    the refresher so the first call triggers a silent refresh.

    :param endpoints: Provider id → storage endpoint base URL.
    :param refresher: Holds the access tokens and refreshes them.
    :param http: Shared ``httpx.Client`` (injected in tests).
    """

    def factory(locator: ResourceLocator, credentials: NetworkCredentials | None) -> CloudAdapter:
        provider = locator.host
        base_url = endpoints.get(provider)
        if base_url is None:
            raise MediaOpsError(f"No storage endpoint configured for {provider}", backend=locator.backend_type)
        if credentials is not None and credentials.secret:
            refresher.seed_refresh_token(provider, credentials.secret)
        client = HttpCloudClient(provider, base_url, refresher.access_token, http=http)
        return CloudAdapter(client)

    return factory
