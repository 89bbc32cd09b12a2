"""Transfer strategies and the scheme-pair registry that selects them.

A *native* strategy uses the backend's own copy/move when source and
destination live on the same resource. The *bridged* strategy stages bytes
through an exclusively named temporary file: read from the source adapter,
write into the destination adapter, delete the buffer on every exit path.
"""

from __future__ import annotations

import abc
import contextlib
import dataclasses
import logging
import os
import shutil
import tempfile
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeVar

from mediaops._auth import AuthRetryWrapper
from mediaops._errors import MediaOpsError, RemoteConnectionError
from mediaops._locator import CLOUD_PROVIDERS
from mediaops._retry import DEFAULT_RETRY_WAIT, retry_connection
from mediaops._throttle import ProgressChannel, ProgressThrottle

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

    from mediaops._adapter import BackendAdapter
    from mediaops._locator import ResourceLocator

T = TypeVar("T")

log = logging.getLogger(__name__)

BACKEND_TYPES: tuple[str, ...] = ("local", "smb", "sftp", "ftp", *(f"cloud:{p}" for p in sorted(CLOUD_PROVIDERS)))


@contextlib.contextmanager
def _buffer_errors(path: str) -> Iterator[None]:
    """Map raw I/O failures around the local buffer (missing buffer dir, full disk, dropped stream)."""
    try:
        yield
    except MediaOpsError:
        raise
    except (ConnectionError, TimeoutError) as exc:
        raise RemoteConnectionError(f"Stream interrupted: {exc}", path=path) from exc
    except OSError as exc:
        raise MediaOpsError(f"Transfer buffer failed: {exc.strerror or exc}", path=path, backend="local") from exc


@dataclasses.dataclass
class TransferContext:
    """Collaborators every strategy call runs through.

    :param auth: Refresh-and-replay wrapper applied to every cloud call.
    :param throttle: Buffer sizing and progress reporting.
    :param buffer_dir: Directory for bridged-transfer buffers (system temp dir when ``None``).
    :param retry_wait: Seconds before the single retry of a connection error.
    :param channel: Progress channel of the current batch.
    """

    auth: AuthRetryWrapper = dataclasses.field(default_factory=AuthRetryWrapper)
    throttle: ProgressThrottle = dataclasses.field(default_factory=ProgressThrottle)
    buffer_dir: str | None = None
    retry_wait: float = DEFAULT_RETRY_WAIT
    channel: ProgressChannel | None = None

    def call(self, locator: ResourceLocator, action: Callable[[], T]) -> T:
        """Run one backend call for ``locator``'s resource.

        Connection errors are retried once; expired cloud tokens are refreshed
        once and the call replayed once.
        """
        return retry_connection(lambda: self.auth.call(locator.provider, action), wait=self.retry_wait)


@dataclasses.dataclass(frozen=True)
class TransferOutcome:
    """What a strategy did for one file.

    :param bytes_transferred: Bytes written to the destination (the known size for native transfers).
    :param degraded: A move whose source could not be deleted after the copy succeeded.
    """

    bytes_transferred: int
    degraded: bool = False


class TransferStrategy(abc.ABC):
    """Moves or copies one file from ``src`` to ``dst``."""

    name: str = ""

    @abc.abstractmethod
    def applies(self, src: ResourceLocator, dst: ResourceLocator, src_adapter: BackendAdapter, *, move: bool) -> bool:
        """Whether this strategy can serve this particular pair."""

    @abc.abstractmethod
    def transfer(
        self,
        ctx: TransferContext,
        src_adapter: BackendAdapter,
        src: ResourceLocator,
        dst_adapter: BackendAdapter,
        dst: ResourceLocator,
        *,
        move: bool,
        overwrite: bool,
        size: int = 0,
    ) -> TransferOutcome:
        """Perform the transfer. Errors propagate as mediaops errors."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NativeStrategy(TransferStrategy):
    """Server-side copy or move within one resource."""

    name = "native"

    def applies(self, src: ResourceLocator, dst: ResourceLocator, src_adapter: BackendAdapter, *, move: bool) -> bool:
        if not src.same_resource(dst):
            return False
        return src_adapter.capabilities.native(move=move)

    def transfer(
        self,
        ctx: TransferContext,
        src_adapter: BackendAdapter,
        src: ResourceLocator,
        dst_adapter: BackendAdapter,
        dst: ResourceLocator,
        *,
        move: bool,
        overwrite: bool,
        size: int = 0,
    ) -> TransferOutcome:
        tracker = ctx.throttle.tracker(dst.resource_key, dst.remote_path, size, channel=ctx.channel)
        primitive = src_adapter.move if move else src_adapter.copy
        ctx.call(src, lambda: primitive(src.remote_path, dst.remote_path, overwrite=overwrite))
        tracker.add(size)
        tracker.finish()
        return TransferOutcome(size)


class BridgedStrategy(TransferStrategy):
    """Read into a local buffer file, then write into the destination.

    A move deletes the source only after the upload succeeded. If that delete
    fails the content is safe at the destination, so the move is reported as
    done but ``degraded`` and the orphaned source is left in place.
    """

    name = "bridged"

    def applies(self, src: ResourceLocator, dst: ResourceLocator, src_adapter: BackendAdapter, *, move: bool) -> bool:
        return True

    def transfer(
        self,
        ctx: TransferContext,
        src_adapter: BackendAdapter,
        src: ResourceLocator,
        dst_adapter: BackendAdapter,
        dst: ResourceLocator,
        *,
        move: bool,
        overwrite: bool,
        size: int = 0,
    ) -> TransferOutcome:
        with _buffer_errors(str(src)):
            fd, buffer_path = tempfile.mkstemp(prefix="mediaops-", suffix=".part", dir=ctx.buffer_dir)
            os.close(fd)
        try:
            staged = ctx.call(src, lambda: self._download(ctx, src_adapter, src, buffer_path, size))
            written = ctx.call(dst, lambda: self._upload(ctx, dst_adapter, dst, buffer_path, staged, overwrite))
            degraded = False
            if move:
                try:
                    ctx.call(src, lambda: src_adapter.delete(src.remote_path))
                except MediaOpsError as exc:
                    degraded = True
                    log.warning(
                        "Degraded move: %s copied to %s but the source could not be deleted (%s)", src, dst, exc
                    )
            return TransferOutcome(written, degraded=degraded)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(buffer_path)

    @staticmethod
    def _download(
        ctx: TransferContext, adapter: BackendAdapter, src: ResourceLocator, buffer_path: str, size: int
    ) -> int:
        # truncates the buffer, so a replayed attempt starts from scratch
        tracker = ctx.throttle.tracker(src.resource_key, src.remote_path, size, channel=ctx.channel)
        chunk = ctx.throttle.buffer_size(src.resource_key)
        with _buffer_errors(str(src)), adapter.read(src.remote_path) as stream, open(buffer_path, "wb") as out:
            shutil.copyfileobj(tracker.wrap(stream), out, chunk)
        tracker.finish()
        return tracker.transferred

    @staticmethod
    def _upload(
        ctx: TransferContext,
        adapter: BackendAdapter,
        dst: ResourceLocator,
        buffer_path: str,
        size: int,
        overwrite: bool,
    ) -> int:
        tracker = ctx.throttle.tracker(dst.resource_key, dst.remote_path, size, channel=ctx.channel)
        with _buffer_errors(str(dst)), open(buffer_path, "rb") as staged:
            stream: Any = tracker.wrap(staged)
            written = adapter.write(dst.remote_path, stream, known_size=size, overwrite=overwrite)
        tracker.finish()
        return written


NATIVE = NativeStrategy()
BRIDGED = BridgedStrategy()


class StrategyRegistry:
    """Lookup table from ``(source backend type, destination backend type)`` to a strategy.

    Read-only once built. Pairs missing from the table, and pairs whose entry
    does not apply to the concrete locators, use the fallback strategy.

    :param entries: Scheme pair → strategy.
    :param fallback: Strategy used when no entry applies.
    """

    def __init__(
        self,
        entries: Mapping[tuple[str, str], TransferStrategy],
        fallback: TransferStrategy = BRIDGED,
    ) -> None:
        self._entries = MappingProxyType(dict(entries))
        self._fallback = fallback

    def __repr__(self) -> str:
        return f"StrategyRegistry(pairs={len(self._entries)}, fallback={self._fallback!r})"

    def lookup(self, src_type: str, dst_type: str) -> TransferStrategy | None:
        return self._entries.get((src_type, dst_type))

    def select(
        self, src: ResourceLocator, dst: ResourceLocator, src_adapter: BackendAdapter, *, move: bool
    ) -> TransferStrategy:
        """Strategy for one file: the table's entry if it applies, else the fallback."""
        candidate = self.lookup(src.backend_type, dst.backend_type)
        if candidate is not None and candidate.applies(src, dst, src_adapter, move=move):
            return candidate
        return self._fallback

    @property
    def pairs(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._entries)


def build_registry(backend_types: Iterable[str] = BACKEND_TYPES) -> StrategyRegistry:
    """Native strategy for every same-type pair; everything else is bridged.

    Different cloud providers are different backend types, so cross-provider
    transfers are bridged and no provider ever sees another provider's token.
    """
    return StrategyRegistry({(t, t): NATIVE for t in backend_types})


DEFAULT_REGISTRY = build_registry()
