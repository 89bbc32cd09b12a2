"""Type aliases used throughout mediaops."""

from __future__ import annotations

from collections.abc import Callable
from typing import BinaryIO

WritableContent = BinaryIO | bytes
ProgressCallback = Callable[[str, int, int], None]
Clock = Callable[[], float]
