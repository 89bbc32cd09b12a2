"""Adapter-level retry of transient connection failures."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from mediaops._errors import RemoteConnectionError

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

log = logging.getLogger(__name__)

DEFAULT_RETRY_WAIT = 0.5


def retry_connection(fn: Callable[[], T], *, wait: float = DEFAULT_RETRY_WAIT) -> T:
    """Call ``fn``, retrying exactly once if it raises :class:`RemoteConnectionError`.

    Any other error propagates immediately. The second failure is re-raised as is.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(RemoteConnectionError),
        stop=stop_after_attempt(2),
        wait=wait_fixed(wait),
        before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
        reraise=True,
    )
    return retrying(fn)
