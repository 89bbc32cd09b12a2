"""Throughput history, buffer sizing, progress reporting and per-resource concurrency limits."""

from __future__ import annotations

import collections
import dataclasses
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Any, BinaryIO

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mediaops._types import Clock, ProgressCallback

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
MIN_CHUNK_SIZE = 16 * 1024
MAX_CHUNK_SIZE = 4 * 1024 * 1024
_TARGET_CHUNK_SECONDS = 0.25
_HISTORY_LENGTH = 32

DEFAULT_CONCURRENCY: dict[str, int] = {"local": 24, "smb": 2, "sftp": 3, "ftp": 2, "cloud": 8}
DEGRADE_AFTER_FAILURES = 3
RESTORE_AFTER_SUCCESSES = 10


# region: progress events


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """Byte-level progress of one transfer."""

    resource_key: str
    path: str
    bytes_transferred: int
    total_bytes: int
    done: bool = False


_CLOSED = object()


class ProgressChannel:
    """Unbounded push channel of :class:`ProgressEvent`.

    Producers never block on consumers, so a slow sink cannot stall a transfer.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._closed = threading.Event()

    def publish(self, event: ProgressEvent) -> None:
        if not self._closed.is_set():
            self._queue.put(event)

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def drain(self) -> list[ProgressEvent]:
        """Return every event queued so far without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return events
            events.append(item)

    def __iter__(self) -> Iterator[ProgressEvent]:
        """Block for events until the channel is closed."""
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item


class ProgressDispatcher:
    """Forwards channel events to an ``on_progress`` callback on its own thread.

    :param channel: Source channel.
    :param callback: ``callback(resource_key, bytes_transferred, total_bytes)``.
    """

    def __init__(self, channel: ProgressChannel, callback: ProgressCallback) -> None:
        self._channel = channel
        self._callback = callback
        self._thread = threading.Thread(target=self._run, name="mediaops-progress", daemon=True)

    def start(self) -> ProgressDispatcher:
        self._thread.start()
        return self

    def _run(self) -> None:
        for event in self._channel:
            try:
                self._callback(event.resource_key, event.bytes_transferred, event.total_bytes)
            except Exception:  # noqa: BLE001
                log.exception("Progress callback raised; event dropped")

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)


# endregion

# region: throughput history


@dataclasses.dataclass(frozen=True)
class ThroughputSample:
    bytes: int
    seconds: float

    @property
    def rate(self) -> float:
        return self.bytes / self.seconds if self.seconds > 0 else 0.0


class ProgressThrottle:
    """Per-resource throughput history and progress reporting.

    History is append-only per key: each resource has its own bounded deque,
    created once with ``dict.setdefault`` and appended to without a global lock.

    :param channel: Where progress events are pushed; ``None`` disables reporting.
    :param interval: Minimum seconds between two events of one transfer.
    :param default_chunk_size: Buffer size used before any history exists.
    :param clock: Monotonic time source.
    """

    def __init__(
        self,
        channel: ProgressChannel | None = None,
        *,
        interval: float = 0.1,
        default_chunk_size: int = DEFAULT_CHUNK_SIZE,
        min_chunk_size: int = MIN_CHUNK_SIZE,
        max_chunk_size: int = MAX_CHUNK_SIZE,
        clock: Clock = time.monotonic,
    ) -> None:
        self.channel = channel
        self._interval = interval
        self._default_chunk = default_chunk_size
        self._min_chunk = min_chunk_size
        self._max_chunk = max_chunk_size
        self._clock = clock
        self._history: dict[str, collections.deque[ThroughputSample]] = {}
        self._recommended: dict[str, int] = {}

    def record(self, resource_key: str, nbytes: int, seconds: float) -> None:
        """Append one completed transfer's throughput to the resource's history."""
        history = self._history.setdefault(resource_key, collections.deque(maxlen=_HISTORY_LENGTH))
        history.append(ThroughputSample(nbytes, seconds))

    def history(self, resource_key: str) -> tuple[ThroughputSample, ...]:
        return tuple(self._history.get(resource_key, ()))

    def average_rate(self, resource_key: str) -> float:
        """Bytes per second over the recorded history, ``0.0`` when unknown."""
        samples = self.history(resource_key)
        total_bytes = sum(s.bytes for s in samples)
        total_seconds = sum(s.seconds for s in samples)
        return total_bytes / total_seconds if total_seconds > 0 else 0.0

    def set_recommended_buffer_size(self, resource_key: str, size: int) -> None:
        """Pin a buffer size for a resource, e.g. from a speed test."""
        self._recommended[resource_key] = self._clamp(size)
        log.debug("Recommended buffer for %s set to %d KiB", resource_key, size // 1024)

    def buffer_size(self, resource_key: str) -> int:
        """Chunk size for the next transfer on ``resource_key``."""
        if resource_key in self._recommended:
            return self._recommended[resource_key]
        rate = self.average_rate(resource_key)
        if rate <= 0:
            return self._clamp(self._default_chunk)
        target = int(rate * _TARGET_CHUNK_SECONDS)
        return self._clamp(1 << max(target, 1).bit_length() - 1)

    def _clamp(self, size: int) -> int:
        return max(self._min_chunk, min(self._max_chunk, size))

    def tracker(
        self, resource_key: str, path: str, total_bytes: int, *, channel: ProgressChannel | None = None
    ) -> TransferTracker:
        """Tracker for one transfer, reporting to ``channel`` or the throttle's own channel."""
        return TransferTracker(self, resource_key, path, total_bytes, channel or self.channel)


class TransferTracker:
    """Counts the bytes of one transfer and reports throttled progress."""

    def __init__(
        self,
        throttle: ProgressThrottle,
        resource_key: str,
        path: str,
        total_bytes: int,
        channel: ProgressChannel | None = None,
    ) -> None:
        self._throttle = throttle
        self._channel = channel
        self.resource_key = resource_key
        self.path = path
        self.total_bytes = total_bytes
        self.transferred = 0
        self._started = throttle._clock()
        self._last_emit = float("-inf")
        self._lock = threading.Lock()

    def add(self, nbytes: int) -> None:
        with self._lock:
            self.transferred += nbytes
            now = self._throttle._clock()
            if now - self._last_emit < self._throttle._interval:
                return
            self._last_emit = now
            transferred = self.transferred
        self._publish(ProgressEvent(self.resource_key, self.path, transferred, self.total_bytes))

    def finish(self) -> None:
        """Emit the final event and record throughput."""
        elapsed = self._throttle._clock() - self._started
        total = self.total_bytes or self.transferred
        self._publish(ProgressEvent(self.resource_key, self.path, self.transferred, total, done=True))
        if self.transferred:
            self._throttle.record(self.resource_key, self.transferred, elapsed)

    def _publish(self, event: ProgressEvent) -> None:
        if self._channel is not None:
            self._channel.publish(event)

    def wrap(self, stream: BinaryIO) -> ProgressStream:
        return ProgressStream(stream, self)


class ProgressStream:
    """Proxy around a binary stream that reports bytes read to a tracker."""

    def __init__(self, stream: BinaryIO, tracker: TransferTracker) -> None:
        self._stream = stream
        self._tracker = tracker

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self._tracker.add(len(data))
        return data

    def __getattr__(self, attr: str) -> Any:
        return getattr(self._stream, attr)


# endregion

# region: concurrency limits


@dataclasses.dataclass
class _ResourceHealth:
    limit: int
    failures: int = 0
    successes: int = 0


class ConcurrencyLimits:
    """Per-backend worker limits with health-based degradation.

    A resource's limit halves (floor 1) after consecutive connection failures
    and grows back one step after a run of successes.

    :param limits: Backend family (``local``, ``smb``, ``sftp``, ``ftp``, ``cloud``) → max workers.
    """

    def __init__(self, limits: dict[str, int] | None = None) -> None:
        self._max = {**DEFAULT_CONCURRENCY, **(limits or {})}
        self._health: dict[str, _ResourceHealth] = {}
        self._lock = threading.Lock()

    @staticmethod
    def family(backend_type: str) -> str:
        return backend_type.split(":", 1)[0]

    def max_limit(self, backend_type: str) -> int:
        return self._max.get(self.family(backend_type), 1)

    def limit(self, backend_type: str, resource_key: str) -> int:
        with self._lock:
            health = self._health.get(resource_key)
            return health.limit if health else self.max_limit(backend_type)

    def record_success(self, backend_type: str, resource_key: str) -> None:
        with self._lock:
            health = self._health.setdefault(resource_key, _ResourceHealth(self.max_limit(backend_type)))
            health.failures = 0
            health.successes += 1
            if health.successes >= RESTORE_AFTER_SUCCESSES and health.limit < self.max_limit(backend_type):
                health.limit += 1
                health.successes = 0
                log.info("Restored %s worker limit to %d", resource_key, health.limit)

    def record_failure(self, backend_type: str, resource_key: str) -> None:
        with self._lock:
            health = self._health.setdefault(resource_key, _ResourceHealth(self.max_limit(backend_type)))
            health.successes = 0
            health.failures += 1
            if health.failures >= DEGRADE_AFTER_FAILURES and health.limit > 1:
                health.limit = max(1, health.limit // 2)
                health.failures = 0
                log.warning("Degraded %s worker limit to %d after connection failures", resource_key, health.limit)


# endregion
