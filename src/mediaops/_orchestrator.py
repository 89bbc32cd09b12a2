"""OperationOrchestrator: the public entry point for copy, move, delete, rename and undo.

Every file of a batch goes ``PENDING -> RESOLVING -> (CONFLICT_CHECK) ->
TRANSFERRING -> COMMITTED | FAILED`` on a bounded worker pool. A failing
file never aborts the batch; only an authentication that cannot be renewed
silently stops it, and the result then names what is left to resubmit.
Nothing is raised past :meth:`OperationOrchestrator.execute`.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import operator
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from mediaops._auth import AuthRetryWrapper, OAuth2TokenRefresher, OAuthClientConfig
from mediaops._capabilities import Capability
from mediaops._config import EngineConfig
from mediaops._conflict import ConflictAction, ConflictResolver
from mediaops._credentials import CredentialResolver, InMemoryCredentialStore
from mediaops._errors import (
    AuthenticationRequiredError,
    ConflictError,
    InvalidPathError,
    MediaOpsError,
    NoPendingUndo,
    RemoteConnectionError,
    UndoExpiredError,
)
from mediaops._locator import resolve
from mediaops._models import (
    AuthenticationRequired,
    Copy,
    Delete,
    Failure,
    FileDescriptor,
    FileFailure,
    FileOutcome,
    Move,
    OperationResult,
    PartialSuccess,
    Rename,
    Success,
)
from mediaops._registry import AdapterPool
from mediaops._strategies import DEFAULT_REGISTRY, TransferContext
from mediaops._throttle import ConcurrencyLimits, ProgressChannel, ProgressDispatcher, ProgressThrottle
from mediaops._trash import TrashUndoManager, supports_trash

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType

    import httpx

    from mediaops._auth import TokenRefresher
    from mediaops._credentials import CredentialStore
    from mediaops._locator import ResourceLocator
    from mediaops._models import FileOperation, UndoOperation
    from mediaops._registry import AdapterFactory
    from mediaops._strategies import StrategyRegistry
    from mediaops._types import Clock, ProgressCallback

T = TypeVar("T")

log = logging.getLogger(__name__)

_LOCAL_RESOURCE = "file://"


class FileState(enum.Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    CONFLICT_CHECK = "conflict_check"
    TRANSFERRING = "transferring"
    COMMITTED = "committed"
    FAILED = "failed"


class CancellationToken:
    """Shared between the caller and a batch. Once cancelled, no new file starts.

    Transfers already in flight run to completion.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclasses.dataclass(frozen=True)
class _Job:
    index: int
    source: FileDescriptor
    locator: ResourceLocator


class _Batch:
    """Thread-safe accumulator of per-file outcomes, kept in submission order."""

    def __init__(self, total: int) -> None:
        self.total = total
        self._lock = threading.Lock()
        self._succeeded: list[tuple[int, FileOutcome]] = []
        self._failed: list[tuple[int, tuple[FileFailure, Exception]]] = []
        self._skipped: list[tuple[int, FileDescriptor]] = []
        self._cancelled: list[tuple[int, FileDescriptor]] = []
        self._unfinished: list[tuple[int, FileDescriptor]] = []
        self._stopped: dict[str, RemoteConnectionError] = {}
        self.auth_provider: str | None = None

    def succeed(self, index: int, outcome: FileOutcome) -> None:
        with self._lock:
            self._succeeded.append((index, outcome))

    def fail(self, index: int, source: FileDescriptor, exc: Exception, *, reason: str | None = None) -> None:
        failure = FileFailure.from_error(source, exc)
        if reason is not None:
            failure = dataclasses.replace(failure, reason=reason)
        with self._lock:
            self._failed.append((index, (failure, exc)))

    def skip(self, index: int, source: FileDescriptor) -> None:
        with self._lock:
            self._skipped.append((index, source))

    def cancel(self, index: int, source: FileDescriptor) -> None:
        with self._lock:
            self._cancelled.append((index, source))

    def leave_unfinished(self, index: int, source: FileDescriptor) -> None:
        with self._lock:
            self._unfinished.append((index, source))

    def require_auth(self, provider: str) -> None:
        with self._lock:
            if self.auth_provider is None:
                self.auth_provider = provider

    def stop_resources(self, keys: Sequence[str], exc: RemoteConnectionError) -> None:
        with self._lock:
            for key in keys:
                if key != _LOCAL_RESOURCE:
                    self._stopped.setdefault(key, exc)

    def stopped_by(self, keys: Sequence[str]) -> RemoteConnectionError | None:
        with self._lock:
            for key in keys:
                if key in self._stopped:
                    return self._stopped[key]
        return None

    @staticmethod
    def _ordered(items: list[tuple[int, T]]) -> list[T]:
        return [value for _, value in sorted(items, key=operator.itemgetter(0))]

    def result(self) -> OperationResult:
        with self._lock:
            succeeded = tuple(self._ordered(self._succeeded))
            failed_pairs = self._ordered(self._failed)
            skipped = tuple(self._ordered(self._skipped))
            cancelled = tuple(self._ordered(self._cancelled))
            unfinished = tuple(self._ordered(self._unfinished))
        failed = tuple(f for f, _ in failed_pairs)

        if self.auth_provider is not None:
            return AuthenticationRequired(
                provider=self.auth_provider,
                succeeded=succeeded,
                failed=failed,
                unfinished=unfinished + cancelled,
            )
        if not failed:
            return Success(succeeded=succeeded, skipped=skipped, cancelled=cancelled)
        if succeeded or skipped or cancelled:
            return PartialSuccess(
                succeeded=succeeded,
                failed=failed,
                total_requested=self.total,
                skipped=skipped,
                cancelled=cancelled,
            )
        if len(failed_pairs) == 1:
            only, error = failed_pairs[0]
            return Failure(reason=only.reason, error=error, failed=failed)
        return Failure(reason=f"All {len(failed)} files failed", failed=failed)


class OperationOrchestrator:
    """Executes :data:`~mediaops.FileOperation` requests across backends.

    :param credentials: Credential store consulted on every adapter lookup.
    :param config: Engine settings.
    :param refresher: Silent token refresh for cloud providers.
    :param factories: Extra or overriding adapter factories (``cloud:<provider>`` adapters go here).
    :param registry: Scheme-pair strategy registry.
    :param throttle: Shared throughput history; one is created from ``config`` when omitted.
    :param clock: Wall-clock time source for the undo window.
    """

    def __init__(
        self,
        credentials: CredentialStore | None = None,
        *,
        config: EngineConfig | None = None,
        refresher: TokenRefresher | None = None,
        factories: dict[str, AdapterFactory] | None = None,
        registry: StrategyRegistry = DEFAULT_REGISTRY,
        throttle: ProgressThrottle | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        store = credentials or InMemoryCredentialStore.from_dicts(self.config.credentials)
        self._pool = AdapterPool(CredentialResolver(store), factories)
        self._registry = registry
        self._limits = ConcurrencyLimits(self.config.concurrency)
        self._ctx = TransferContext(
            auth=AuthRetryWrapper(refresher),
            throttle=throttle
            or ProgressThrottle(
                interval=self.config.progress_interval,
                default_chunk_size=self.config.chunk_size,
                min_chunk_size=self.config.min_chunk_size,
                max_chunk_size=self.config.max_chunk_size,
            ),
            buffer_dir=self.config.buffer_dir,
            retry_wait=self.config.connect_retry_wait,
        )
        self._trash = TrashUndoManager(
            self._pool.get, ctx=self._ctx, ttl_seconds=self.config.trash_ttl_seconds, clock=clock
        )
        self._clock = clock
        self._refresher = refresher
        self._owns_refresher = False

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        credentials: CredentialStore | None = None,
        http: httpx.Client | None = None,
        clock: Clock = time.time,
    ) -> OperationOrchestrator:
        """Build an orchestrator whose cloud adapters use :class:`~mediaops.adapters.HttpCloudClient`.

        :param http: Shared ``httpx.Client`` for storage and token requests (injected in tests).
        """
        from mediaops.adapters._cloud import http_cloud_factory

        refresher = OAuth2TokenRefresher(
            {
                provider: OAuthClientConfig(cfg.token_url, cfg.client_id, cfg.client_secret, cfg.scope)
                for provider, cfg in config.cloud.items()
            },
            http=http,
            clock=clock,
        )
        factory = http_cloud_factory({p: cfg.base_url for p, cfg in config.cloud.items()}, refresher, http=http)
        factories = {f"cloud:{provider}": factory for provider in config.cloud}
        orchestrator = cls(credentials, config=config, refresher=refresher, factories=factories, clock=clock)
        orchestrator._owns_refresher = True
        return orchestrator

    def __repr__(self) -> str:
        return f"OperationOrchestrator(pool={self._pool!r}, registry={self._registry!r})"

    @property
    def throttle(self) -> ProgressThrottle:
        return self._ctx.throttle

    # region: public API

    def execute(
        self,
        operation: FileOperation,
        *,
        on_progress: ProgressCallback | None = None,
        progress: ProgressChannel | None = None,
        cancel: CancellationToken | None = None,
    ) -> OperationResult:
        """Run one operation synchronously and return its aggregated result.

        Progress events go to ``progress`` when given; otherwise, if
        ``on_progress`` is given, they are delivered to it on a separate thread
        so a slow callback never holds up the batch. That thread is not joined:
        the channel is closed on return, but ``on_progress`` may still be
        draining queued events after ``execute`` has returned.

        :param on_progress: ``on_progress(resource_key, bytes_transferred, total_bytes)``.
        :param progress: Channel to publish :class:`~mediaops.ProgressEvent` objects to.
        :param cancel: Token the caller may cancel to stop new files from starting.
        """
        channel = progress
        dispatcher = None
        if channel is None and on_progress is not None:
            channel = ProgressChannel()
            dispatcher = ProgressDispatcher(channel, on_progress).start()
        ctx = dataclasses.replace(self._ctx, channel=channel)
        cancel = cancel or CancellationToken()
        try:
            return self._dispatch(operation, ctx, cancel)
        except MediaOpsError as exc:
            log.info("%s failed: %s", type(operation).__name__, exc)
            return Failure(reason=exc.message or str(exc), error=exc)
        except Exception as exc:  # noqa: BLE001
            log.exception("Unexpected error while executing %s", type(operation).__name__)
            return Failure(reason=f"Unexpected error: {exc}", error=exc)
        finally:
            if dispatcher is not None and channel is not None:
                channel.close()

    def get_pending_undo(self) -> UndoOperation | None:
        """The live undo record, or ``None`` if there is none or it expired."""
        return self._trash.pending()

    def restore(self) -> OperationResult:
        """Undo the last soft delete.

        Returns :class:`Failure` carrying :class:`NoPendingUndo` or
        :class:`UndoExpiredError` when there is nothing (left) to restore.
        """
        try:
            report = self._trash.restore()
        except (NoPendingUndo, UndoExpiredError) as exc:
            log.info("Restore refused: %s", exc.message)
            return Failure(reason=exc.message, error=exc)
        batch = _Batch(len(report.restored) + len(report.failed))
        index = 0
        for trash, original in report.restored:
            batch.succeed(index, FileOutcome(FileDescriptor(str(trash)), str(original)))
            index += 1
        for trash, exc in report.failed:
            batch.fail(index, FileDescriptor(str(trash)), exc)
            index += 1
        return batch.result()

    def clear_expired(self) -> bool:
        """Drop an expired undo record and purge its trash folders."""
        return self._trash.clear_expired()

    def close(self) -> None:
        """Close every adapter opened by this orchestrator."""
        self._pool.close()
        if self._owns_refresher and isinstance(self._refresher, OAuth2TokenRefresher):
            self._refresher.close()

    def __enter__(self) -> OperationOrchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # endregion

    def _dispatch(self, operation: FileOperation, ctx: TransferContext, cancel: CancellationToken) -> OperationResult:
        if isinstance(operation, Rename):
            return self._rename(operation, ctx)
        if isinstance(operation, Delete):
            return self._delete(operation, ctx, cancel)
        if isinstance(operation, (Copy, Move)):
            return self._transfer(operation, ctx, cancel)
        raise TypeError(f"Unsupported operation: {type(operation).__name__}")

    # region: resolution and pooling

    def _resolve_jobs(self, sources: Sequence[FileDescriptor], batch: _Batch) -> list[_Job]:
        jobs = []
        for index, source in enumerate(sources):
            log.debug("%s: %s -> %s", source.path, FileState.PENDING.value, FileState.RESOLVING.value)
            try:
                locator = resolve(source.path, credential_ref=source.credential_ref)
            except InvalidPathError as exc:
                log.debug("%s: %s", source.path, FileState.FAILED.value)
                batch.fail(index, source, exc)
                continue
            jobs.append(_Job(index, source, locator))
        return jobs

    def _pool_size(self, locators: Sequence[ResourceLocator]) -> int:
        limits = [self._limits.limit(loc.backend_type, loc.resource_key) for loc in locators]
        return max(1, min(limits, default=1))

    def _run(self, jobs: Sequence[_Job], extra: Sequence[ResourceLocator], work: Callable[[_Job], None]) -> None:
        if not jobs:
            return
        workers = self._pool_size([j.locator for j in jobs] + list(extra))
        log.debug("Running %d file(s) on %d worker(s)", len(jobs), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mediaops") as executor:
            for future in [executor.submit(work, job) for job in jobs]:
                future.result()

    def _guarded(
        self,
        batch: _Batch,
        job: _Job,
        cancel: CancellationToken,
        resources: Sequence[ResourceLocator],
        action: Callable[[_Job], FileOutcome | None],
    ) -> None:
        """Run one file's work and file its outcome; the per-file error boundary."""
        keys = [r.resource_key for r in resources]
        if cancel.cancelled:
            batch.cancel(job.index, job.source)
            return
        if batch.auth_provider is not None:
            batch.leave_unfinished(job.index, job.source)
            return
        stopped = self._stopped_error(batch, keys)
        if stopped is not None:
            batch.fail(job.index, job.source, stopped)
            return
        try:
            outcome = action(job)
        except AuthenticationRequiredError as exc:
            log.info("%s: authentication required for %s; stopping batch", job.source.path, exc.provider)
            batch.require_auth(exc.provider)
            batch.leave_unfinished(job.index, job.source)
            return
        except RemoteConnectionError as exc:
            log.debug("%s: %s (%s)", job.source.path, FileState.FAILED.value, exc)
            for r in resources:
                self._limits.record_failure(r.backend_type, r.resource_key)
            batch.stop_resources(keys, exc)
            batch.fail(job.index, job.source, exc)
            return
        except MediaOpsError as exc:
            log.debug("%s: %s (%s)", job.source.path, FileState.FAILED.value, exc)
            batch.fail(job.index, job.source, exc)
            return
        except Exception as exc:  # noqa: BLE001
            log.exception("%s: unexpected error", job.source.path)
            batch.fail(job.index, job.source, exc, reason=f"Unexpected error: {exc}")
            return
        for r in resources:
            self._limits.record_success(r.backend_type, r.resource_key)
        if outcome is None:
            batch.skip(job.index, job.source)
            return
        log.debug("%s: %s", job.source.path, FileState.COMMITTED.value)
        batch.succeed(job.index, outcome)

    @staticmethod
    def _stopped_error(batch: _Batch, keys: Sequence[str]) -> RemoteConnectionError | None:
        exc = batch.stopped_by(keys)
        if exc is None:
            return None
        return RemoteConnectionError(
            f"Not attempted: {exc.message or 'connection lost'}", path=exc.path, backend=exc.backend
        )

    # endregion

    # region: copy / move

    def _transfer(self, operation: Copy | Move, ctx: TransferContext, cancel: CancellationToken) -> OperationResult:
        move = isinstance(operation, Move)
        batch = _Batch(len(operation.sources))
        jobs = self._resolve_jobs(operation.sources, batch)
        try:
            destination = resolve(operation.destination, credential_ref=operation.destination_ref)
        except InvalidPathError as exc:
            for job in jobs:
                batch.fail(job.index, job.source, exc)
            return batch.result()

        def list_names(folder_key: str) -> list[str]:
            adapter = self._pool.get(destination)
            return [d.name for d in ctx.call(destination, lambda: list(adapter.list(destination.remote_path)))]

        conflicts = ConflictResolver(operation.overwrite_policy, list_names)

        def work(job: _Job) -> None:
            self._guarded(
                batch,
                job,
                cancel,
                (job.locator, destination),
                lambda j: self._transfer_one(j, destination, conflicts, ctx, move=move),
            )

        self._run(jobs, [destination], work)
        result = batch.result()
        log.info("%s of %d file(s) to %s: %s", "Move" if move else "Copy", batch.total, destination, _describe(result))
        return result

    def _transfer_one(
        self,
        job: _Job,
        destination: ResourceLocator,
        conflicts: ConflictResolver,
        ctx: TransferContext,
        *,
        move: bool,
    ) -> FileOutcome | None:
        src = job.locator
        src_adapter = self._pool.get(src)
        dst_adapter = self._pool.get(destination)
        dst_adapter.capabilities.require(Capability.WRITE, backend=dst_adapter.name)
        log.debug("%s: %s", job.source.path, FileState.CONFLICT_CHECK.value)
        decision = conflicts.decide(str(destination), src.name)
        if decision.action is ConflictAction.SKIP:
            log.debug("%s: skipped, %s exists at destination", job.source.path, src.name)
            return None
        dst = destination.child(decision.name)
        if dst.same_resource(src) and dst.remote_path == src.remote_path:
            raise ConflictError("Source and destination are the same file", path=job.source.path)
        strategy = self._registry.select(src, dst, src_adapter, move=move)
        log.debug("%s: %s via %s", job.source.path, FileState.TRANSFERRING.value, strategy.name)
        outcome = strategy.transfer(
            ctx,
            src_adapter,
            src,
            dst_adapter,
            dst,
            move=move,
            overwrite=decision.action is ConflictAction.OVERWRITE,
            size=job.source.size,
        )
        return FileOutcome(job.source, str(dst), renamed=decision.renamed, degraded=outcome.degraded)

    # endregion

    # region: delete

    def _delete(self, operation: Delete, ctx: TransferContext, cancel: CancellationToken) -> OperationResult:
        batch = _Batch(len(operation.files))
        jobs = self._resolve_jobs(operation.files, batch)
        soft = self.config.trash_enabled and not operation.permanent
        created_at = self._trash.now()
        if soft:
            self._purge_parents(jobs)
        trashed: dict[int, tuple[ResourceLocator, ResourceLocator]] = {}
        trashed_lock = threading.Lock()

        def delete_one(job: _Job) -> FileOutcome:
            adapter = self._pool.get(job.locator)
            if soft and supports_trash(adapter):
                target = self._trash.soft_delete(job.locator, created_at)
                with trashed_lock:
                    trashed[job.index] = (job.locator, target)
                return FileOutcome(job.source, str(target))
            if soft:
                log.warning("%s cannot hold a trash folder; deleting %s permanently", adapter.name, job.source.path)
            ctx.call(job.locator, lambda: adapter.delete(job.locator.remote_path))
            return FileOutcome(job.source, str(job.locator))

        def work(job: _Job) -> None:
            self._guarded(batch, job, cancel, (job.locator,), delete_one)

        self._run(jobs, [], work)
        if trashed:
            pairs = [trashed[i] for i in sorted(trashed)]
            self._trash.record(pairs, created_at)
        result = batch.result()
        log.info("Delete of %d file(s) (%s): %s", batch.total, "trash" if soft else "permanent", _describe(result))
        return result

    def _purge_parents(self, jobs: Sequence[_Job]) -> None:
        for folder in {job.locator.parent for job in jobs}:
            try:
                adapter = self._pool.get(folder)
                if supports_trash(adapter):
                    self._trash.purge_expired(folder)
            except MediaOpsError as exc:
                log.warning("Skipping trash purge in %s: %s", folder, exc)

    # endregion

    # region: rename

    def _rename(self, operation: Rename, ctx: TransferContext) -> OperationResult:
        source = operation.file
        batch = _Batch(1)
        try:
            validate_name(operation.new_name)
            locator = resolve(source.path, credential_ref=source.credential_ref)
            adapter = self._pool.get(locator)
            target = locator.with_name(operation.new_name)
            if target.remote_path != locator.remote_path:
                if ctx.call(locator, lambda: adapter.exists(target.remote_path)):
                    raise ConflictError(f"A file named {operation.new_name!r} already exists", path=str(target))
                ctx.call(locator, lambda: adapter.rename(locator.remote_path, operation.new_name))
        except AuthenticationRequiredError as exc:
            return AuthenticationRequired(provider=exc.provider, unfinished=(source,))
        except MediaOpsError as exc:
            batch.fail(0, source, exc)
            return batch.result()
        log.info("Renamed %s to %s", source.path, operation.new_name)
        batch.succeed(0, FileOutcome(source, str(target)))
        return batch.result()

    # endregion


def validate_name(name: str) -> None:
    """Check that ``name`` is a single path segment.

    :raises InvalidPathError: If the name is empty, ``.``/``..``, or contains a separator or NUL.
    """
    if not name or name in (".", "..") or any(c in name for c in "/\\\0"):
        raise InvalidPathError(f"Invalid file name: {name!r}", path=name)


def _describe(result: OperationResult) -> str:
    if isinstance(result, PartialSuccess):
        return result.summary()
    if isinstance(result, Success):
        return f"{result.count} succeeded"
    if isinstance(result, AuthenticationRequired):
        return f"stopped, authentication required for {result.provider}"
    if isinstance(result, Failure):
        return f"failed: {result.reason}"
    return type(result).__name__

