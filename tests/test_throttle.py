"""Tests for progress reporting, buffer sizing and concurrency limits."""

from __future__ import annotations

import io
import threading

import pytest

from mediaops._throttle import (
    DEFAULT_CHUNK_SIZE,
    DEGRADE_AFTER_FAILURES,
    MAX_CHUNK_SIZE,
    MIN_CHUNK_SIZE,
    RESTORE_AFTER_SUCCESSES,
    ConcurrencyLimits,
    ProgressChannel,
    ProgressDispatcher,
    ProgressEvent,
    ProgressThrottle,
)
from tests.fakes import FakeClock

KEY = "sftp://pi:22"


class TestProgressChannel:
    def test_drain_returns_queued_events(self) -> None:
        channel = ProgressChannel()
        channel.publish(ProgressEvent(KEY, "/a", 1, 10))
        channel.publish(ProgressEvent(KEY, "/a", 10, 10, done=True))
        assert [e.bytes_transferred for e in channel.drain()] == [1, 10]
        assert channel.drain() == []

    def test_closed_channel_drops_events(self) -> None:
        channel = ProgressChannel()
        channel.close()
        channel.publish(ProgressEvent(KEY, "/a", 1, 10))
        assert channel.closed
        assert channel.drain() == []
        assert list(channel) == []

    def test_iteration_ends_on_close(self) -> None:
        channel = ProgressChannel()
        channel.publish(ProgressEvent(KEY, "/a", 1, 1))
        channel.close()
        assert len(list(channel)) == 1

    def test_dispatcher_delivers_and_survives_callback_errors(self) -> None:
        channel = ProgressChannel()
        seen: list[int] = []

        def callback(key: str, transferred: int, total: int) -> None:
            seen.append(transferred)
            if transferred == 1:
                raise RuntimeError("ui went away")

        dispatcher = ProgressDispatcher(channel, callback).start()
        for n in (1, 2, 3):
            channel.publish(ProgressEvent(KEY, "/a", n, 3))
        channel.close()
        dispatcher.join(5)
        assert seen == [1, 2, 3]


class TestTracker:
    def test_events_are_throttled(self) -> None:
        clock = FakeClock(0.0)
        channel = ProgressChannel()
        throttle = ProgressThrottle(channel, interval=0.1, clock=clock)
        tracker = throttle.tracker(KEY, "/a", 300)

        tracker.add(100)
        tracker.add(100)
        clock.advance(0.2)
        tracker.add(100)
        tracker.finish()

        events = channel.drain()
        assert [e.bytes_transferred for e in events] == [100, 300, 300]
        assert events[-1].done
        assert not events[0].done

    def test_explicit_channel_wins(self) -> None:
        own, batch = ProgressChannel(), ProgressChannel()
        tracker = ProgressThrottle(own).tracker(KEY, "/a", 1, channel=batch)
        tracker.finish()
        assert own.drain() == []
        assert len(batch.drain()) == 1

    def test_unknown_total_reports_transferred(self) -> None:
        channel = ProgressChannel()
        tracker = ProgressThrottle(channel).tracker(KEY, "/a", 0)
        tracker.add(42)
        tracker.finish()
        assert channel.drain()[-1].total_bytes == 42

    def test_wrapped_stream_counts_reads(self) -> None:
        throttle = ProgressThrottle()
        tracker = throttle.tracker(KEY, "/a", 6)
        stream = tracker.wrap(io.BytesIO(b"abcdef"))
        assert stream.read(4) == b"abcd"
        assert stream.read() == b"ef"
        assert tracker.transferred == 6
        assert stream.tell() == 6

    def test_finish_records_throughput(self) -> None:
        clock = FakeClock(0.0)
        throttle = ProgressThrottle(clock=clock)
        tracker = throttle.tracker(KEY, "/a", 1000)
        tracker.add(1000)
        clock.advance(2.0)
        tracker.finish()
        assert throttle.average_rate(KEY) == 500.0

    def test_concurrent_adds(self) -> None:
        tracker = ProgressThrottle().tracker(KEY, "/a", 0)
        threads = [threading.Thread(target=lambda: [tracker.add(1) for _ in range(1000)]) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert tracker.transferred == 8000


class TestBufferSize:
    def test_default_without_history(self) -> None:
        assert ProgressThrottle().buffer_size(KEY) == DEFAULT_CHUNK_SIZE

    def test_grows_with_throughput(self) -> None:
        throttle = ProgressThrottle()
        throttle.record(KEY, 8 * 1024 * 1024, 1.0)
        assert throttle.buffer_size(KEY) == 2 * 1024 * 1024

    @pytest.mark.parametrize(("nbytes", "expected"), [(1, MIN_CHUNK_SIZE), (10**12, MAX_CHUNK_SIZE)])
    def test_clamped(self, nbytes: int, expected: int) -> None:
        throttle = ProgressThrottle()
        throttle.record(KEY, nbytes, 1.0)
        assert throttle.buffer_size(KEY) == expected

    def test_recommended_size_pinned(self) -> None:
        throttle = ProgressThrottle()
        throttle.record(KEY, 10**9, 1.0)
        throttle.set_recommended_buffer_size(KEY, 128 * 1024)
        assert throttle.buffer_size(KEY) == 128 * 1024

    def test_history_is_per_resource_and_bounded(self) -> None:
        throttle = ProgressThrottle()
        for _ in range(100):
            throttle.record(KEY, 1, 1.0)
        assert len(throttle.history(KEY)) == 32
        assert throttle.history("smb://other:445/share") == ()


class TestConcurrencyLimits:
    def test_family_defaults(self) -> None:
        limits = ConcurrencyLimits()
        assert limits.limit("local", "file://") == 24
        assert limits.limit("smb", "smb://nas:445/media") == 2
        assert limits.limit("cloud:dropbox", "cloud://dropbox") == 8

    def test_override(self) -> None:
        assert ConcurrencyLimits({"sftp": 1}).limit("sftp", KEY) == 1

    def test_degrades_and_recovers(self) -> None:
        limits = ConcurrencyLimits({"sftp": 4})
        for _ in range(DEGRADE_AFTER_FAILURES):
            limits.record_failure("sftp", KEY)
        assert limits.limit("sftp", KEY) == 2
        for _ in range(RESTORE_AFTER_SUCCESSES):
            limits.record_success("sftp", KEY)
        assert limits.limit("sftp", KEY) == 3

    def test_never_below_one(self) -> None:
        limits = ConcurrencyLimits({"ftp": 1})
        for _ in range(DEGRADE_AFTER_FAILURES * 3):
            limits.record_failure("ftp", "ftp://f:21")
        assert limits.limit("ftp", "ftp://f:21") == 1

    def test_success_resets_failure_streak(self) -> None:
        limits = ConcurrencyLimits({"sftp": 4})
        for _ in range(DEGRADE_AFTER_FAILURES - 1):
            limits.record_failure("sftp", KEY)
        limits.record_success("sftp", KEY)
        limits.record_failure("sftp", KEY)
        assert limits.limit("sftp", KEY) == 4
