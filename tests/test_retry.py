"""Tests for the single retry of connection errors."""

from __future__ import annotations

import pytest

from mediaops._errors import NotFound, RemoteConnectionError
from mediaops._retry import retry_connection


def _counting(*outcomes: BaseException | str) -> tuple[object, list[int]]:
    calls: list[int] = []

    def fn() -> str:
        outcome = outcomes[len(calls)]
        calls.append(1)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return fn, calls


def test_success_needs_one_call() -> None:
    fn, calls = _counting("ok")
    assert retry_connection(fn, wait=0) == "ok"  # type: ignore[arg-type]
    assert len(calls) == 1


def test_one_retry_after_connection_error() -> None:
    fn, calls = _counting(RemoteConnectionError("reset"), "ok")
    assert retry_connection(fn, wait=0) == "ok"  # type: ignore[arg-type]
    assert len(calls) == 2


def test_second_failure_reraised() -> None:
    second = RemoteConnectionError("still down")
    fn, calls = _counting(RemoteConnectionError("down"), second, "never")
    with pytest.raises(RemoteConnectionError) as exc_info:
        retry_connection(fn, wait=0)  # type: ignore[arg-type]
    assert exc_info.value is second
    assert len(calls) == 2


def test_other_errors_not_retried() -> None:
    fn, calls = _counting(NotFound("gone"), "never")
    with pytest.raises(NotFound):
        retry_connection(fn, wait=0)  # type: ignore[arg-type]
    assert len(calls) == 1
