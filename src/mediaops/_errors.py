"""Errors raised by adapters and the orchestrator.

Every adapter translates its native failures (``OSError``, paramiko,
smbprotocol, ``ftplib`` and HTTP status codes) into this hierarchy, so the
orchestrator only ever decides on :class:`MediaOpsError` subclasses.
"""

from __future__ import annotations

from typing import Optional


class MediaOpsError(Exception):
    """Base class for all mediaops errors.

    :param message: Human-readable error description.
    :param path: The path involved in the error, if any.
    :param backend: The backend name involved, if any.
    """

    def __init__(self, message: str = "", *, path: Optional[str] = None, backend: Optional[str] = None) -> None:
        self.path = path
        self.backend = backend
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""

    def _context(self) -> list[tuple[str, object]]:
        """Name/value pairs appended to the message; ``None`` values are left out."""
        return [("path", self.path), ("backend", self.backend)]

    def _context_parts(self) -> list[str]:
        return [f"{key}={value!r}" for key, value in self._context() if value not in (None, "")]

    def __str__(self) -> str:
        return " | ".join(([self.message] if self.message else []) + self._context_parts())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join([repr(self.message), *self._context_parts()])})"


# region: path and resource errors
class InvalidPathError(MediaOpsError):
    """Raised for unparsable paths: unknown scheme, missing host, unsafe segments."""


class CredentialsNotFoundError(MediaOpsError):
    """Raised when no stored credentials match a locator."""


class NotFound(MediaOpsError):
    """Raised when a file or folder does not exist."""


class ConflictError(MediaOpsError):
    """Raised when a destination already exists and overwriting was not allowed."""


class PermissionDeniedError(MediaOpsError):
    """Raised when the backend refuses access to a path."""


class RemoteConnectionError(MediaOpsError):
    """Raised when a backend cannot be reached: timeout, refused or dropped connection."""


class CapabilityNotSupported(MediaOpsError):
    """The adapter lacks a primitive the operation needs.

    :param capability: Value of the missing :class:`~mediaops._capabilities.Capability`.
    """

    def __init__(self, message: str = "", *, capability: str = "", **kwargs: Optional[str]) -> None:
        self.capability = capability
        super().__init__(message, **kwargs)

    def _context(self) -> list[tuple[str, object]]:
        return [*super()._context(), ("capability", self.capability)]


# endregion


# region: authentication
class AuthenticationExpired(MediaOpsError):
    """Signal raised by a cloud adapter when its access token was rejected.

    Consumed by :class:`~mediaops._auth.AuthRetryWrapper`; callers of the
    orchestrator never see it.

    :param provider: Cloud provider id whose token expired.
    """

    def __init__(self, message: str = "", *, provider: str, path: Optional[str] = None) -> None:
        self.provider = provider
        super().__init__(message or f"Access token expired for {provider}", path=path, backend=f"cloud:{provider}")


class AuthenticationRequiredError(MediaOpsError):
    """Raised when a silent token refresh failed and the user must reauthenticate."""

    def __init__(self, message: str = "", *, provider: str, path: Optional[str] = None) -> None:
        self.provider = provider
        super().__init__(message or f"Authentication required for {provider}", path=path, backend=f"cloud:{provider}")


# endregion


class UndoExpiredError(MediaOpsError):
    """Raised when a restore is attempted after the undo window closed."""


class NoPendingUndo(MediaOpsError):
    """Raised when a restore is attempted with no undo record present."""
