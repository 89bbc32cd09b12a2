"""Soft delete into same-resource trash folders and the single-level undo record.

Each soft-delete batch moves a file into ``<parent>/.trash_<created-ms>/<name>``
on the file's own resource, so trashing and restoring are always native moves.
Expired trash folders are purged lazily when a later delete touches the same
parent folder, or through :meth:`TrashUndoManager.clear_expired`.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import TYPE_CHECKING

from mediaops._errors import MediaOpsError, NoPendingUndo, UndoExpiredError
from mediaops._models import UndoOperation
from mediaops._strategies import TransferContext

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from mediaops._adapter import BackendAdapter
    from mediaops._locator import ResourceLocator
    from mediaops._types import Clock

log = logging.getLogger(__name__)

TRASH_PREFIX = ".trash_"
DEFAULT_TTL_SECONDS = 300


def trash_folder_name(created_at: float) -> str:
    return f"{TRASH_PREFIX}{int(created_at * 1000)}"


def parse_trash_folder(name: str) -> int | None:
    """Creation time in ms encoded in a trash folder name, ``None`` if unparsable."""
    if not name.startswith(TRASH_PREFIX):
        return None
    try:
        return int(name[len(TRASH_PREFIX) :])
    except ValueError:
        return None


def supports_trash(adapter: BackendAdapter) -> bool:
    """Whether files on ``adapter`` can be soft-deleted (a writable resource with native move)."""
    return adapter.capabilities.can_trash


@dataclasses.dataclass(frozen=True)
class RestoreReport:
    """Outcome of one restore: ``(trash, original)`` pairs moved back, and failures."""

    restored: tuple[tuple[ResourceLocator, ResourceLocator], ...]
    failed: tuple[tuple[ResourceLocator, MediaOpsError], ...]


class TrashUndoManager:
    """Owns the one live :class:`UndoOperation` and the trash folder layout.

    :param adapter_for: Returns the adapter serving a locator's resource.
    :param ctx: Retry/auth context for backend calls.
    :param ttl_seconds: Undo window.
    :param clock: Wall-clock time source in seconds.
    """

    def __init__(
        self,
        adapter_for: Callable[[ResourceLocator], BackendAdapter],
        *,
        ctx: TransferContext | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self._adapter_for = adapter_for
        self._ctx = ctx or TransferContext()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._record: UndoOperation | None = None
        self._entries: tuple[tuple[ResourceLocator, ResourceLocator], ...] = ()
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    # region: soft delete

    def trash_location(self, locator: ResourceLocator, created_at: float) -> ResourceLocator:
        """Where ``locator`` goes when trashed by a batch started at ``created_at``."""
        return locator.parent.child(trash_folder_name(created_at)).child(locator.name)

    def soft_delete(self, locator: ResourceLocator, created_at: float) -> ResourceLocator:
        """Move one file into its batch's trash folder and return the trash locator.

        :raises NotFound: If the file does not exist.
        """
        adapter = self._adapter_for(locator)
        target = self.trash_location(locator, created_at)
        self._ctx.call(locator, lambda: adapter.make_dirs(target.parent.remote_path))
        self._ctx.call(locator, lambda: adapter.move(locator.remote_path, target.remote_path))
        log.debug("Trashed %s -> %s", locator, target.remote_path)
        return target

    def record(self, pairs: Sequence[tuple[ResourceLocator, ResourceLocator]], created_at: float) -> UndoOperation:
        """Replace the live undo record with one covering ``(original, trash)`` pairs."""
        undo = UndoOperation(
            original_paths=tuple(str(o) for o, _ in pairs),
            trash_paths=tuple(str(t) for _, t in pairs),
            created_at=created_at,
            ttl_seconds=self.ttl_seconds,
        )
        with self._lock:
            if self._record is not None:
                log.debug("Replacing undo record created at %.3f", self._record.created_at)
            self._record = undo
            self._entries = tuple((t, o) for o, t in pairs)
        return undo

    # endregion

    # region: undo

    def pending(self) -> UndoOperation | None:
        """The live undo record, or ``None`` when absent or expired."""
        with self._lock:
            record = self._record
        if record is None or record.is_expired(self.now()):
            return None
        return record

    def restore(self) -> RestoreReport:
        """Move every trashed file of the live record back to its original path.

        The record is cleared once everything was restored; entries that failed
        stay in the record so the restore can be retried within the window.

        :raises NoPendingUndo: If there is no undo record.
        :raises UndoExpiredError: If the undo window has closed; nothing is moved.
        """
        with self._lock:
            record, entries = self._record, self._entries
            if record is None:
                raise NoPendingUndo("Nothing to restore")
            if record.is_expired(self.now()):
                self._record, self._entries = None, ()
                raise UndoExpiredError(
                    f"Undo window of {record.ttl_seconds}s closed {self.now() - record.expires_at:.0f}s ago"
                )
            # taken out so a concurrent restore cannot move the same files twice
            self._record, self._entries = None, ()

        restored: list[tuple[ResourceLocator, ResourceLocator]] = []
        failed: list[tuple[ResourceLocator, MediaOpsError]] = []
        for trash, original in entries:
            try:
                adapter = self._adapter_for(original)
                self._ctx.call(original, lambda a=adapter, t=trash, o=original: a.move(t.remote_path, o.remote_path))
            except MediaOpsError as exc:
                log.warning("Could not restore %s: %s", original, exc)
                failed.append((trash, exc))
                continue
            restored.append((trash, original))
        self._remove_empty_trash_folders(restored)

        if failed:
            remaining = [(o, t) for t, o in entries if any(t is f for f, _ in failed)]
            with self._lock:
                if self._record is None:
                    self._record = dataclasses.replace(
                        record,
                        original_paths=tuple(str(o) for o, _ in remaining),
                        trash_paths=tuple(str(t) for _, t in remaining),
                    )
                    self._entries = tuple((t, o) for o, t in remaining)
        log.info("Restored %d of %d trashed files", len(restored), len(entries))
        return RestoreReport(tuple(restored), tuple(failed))

    def clear_expired(self) -> bool:
        """Drop the undo record if it expired and purge its trash folders.

        Returns ``True`` if a record was dropped.
        """
        with self._lock:
            record, entries = self._record, self._entries
            if record is None or not record.is_expired(self.now()):
                return False
            self._record, self._entries = None, ()
        folders = {trash.parent for trash, _ in entries}
        for folder in folders:
            try:
                adapter = self._adapter_for(folder)
                self._ctx.call(
                    folder, lambda a=adapter, f=folder: a.delete_folder(f.remote_path, recursive=True, missing_ok=True)
                )
            except MediaOpsError as exc:
                log.warning("Could not purge expired trash %s: %s", folder, exc)
        return True

    def _remove_empty_trash_folders(self, restored: Sequence[tuple[ResourceLocator, ResourceLocator]]) -> None:
        for folder in {trash.parent for trash, _ in restored}:
            try:
                adapter = self._adapter_for(folder)
                if not any(True for _ in adapter.list(folder.remote_path)):
                    adapter.delete_folder(folder.remote_path, missing_ok=True)
            except MediaOpsError as exc:
                log.debug("Leaving trash folder %s in place: %s", folder, exc)

    # endregion

    # region: lazy purge

    def purge_expired(self, folder: ResourceLocator, *, max_age: float | None = None) -> int:
        """Delete trash folders under ``folder`` older than ``max_age`` seconds.

        ``max_age`` defaults to the undo window; ``0`` purges every trash folder,
        including ones whose name carries no parsable timestamp. Folders of the
        live undo record are never purged while it is valid.

        :returns: Number of trash folders deleted.
        """
        max_age = self.ttl_seconds if max_age is None else max_age
        adapter = self._adapter_for(folder)
        now_ms = int(self.now() * 1000)
        live = self._live_trash_names(folder)
        purged = 0
        for entry in self._ctx.call(folder, lambda: list(adapter.list(folder.remote_path))):
            if not entry.is_folder or not entry.name.startswith(TRASH_PREFIX):
                continue
            created_ms = parse_trash_folder(entry.name)
            if max_age != 0:
                if created_ms is None or now_ms - created_ms <= max_age * 1000:
                    continue
            if entry.name in live:
                continue
            target = folder.child(entry.name)
            self._ctx.call(
                folder, lambda t=target: adapter.delete_folder(t.remote_path, recursive=True, missing_ok=True)
            )
            log.debug("Purged trash folder %s", target)
            purged += 1
        if purged:
            log.info("Purged %d expired trash folder(s) under %s", purged, folder)
        return purged

    def _live_trash_names(self, folder: ResourceLocator) -> set[str]:
        """Names of the live record's trash folders that sit directly in ``folder``."""
        record = self.pending()
        if record is None:
            return set()
        with self._lock:
            trash_folders = {trash.parent for trash, _ in self._entries}
        return {
            t.name
            for t in trash_folders
            if t.parent.same_resource(folder) and t.parent.remote_path == folder.remote_path
        }

    # endregion
