"""Exception types raised by the hustle client runtime."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hustle.plugins.security import VerificationOutcome


ABORT_TIMEOUT = "abort_timeout"


class HustleError(Exception):
    """Base class for all errors raised by this package."""


class PluginValidationError(HustleError, ValueError):
    """A plugin bundle is structurally invalid."""


class PluginConflictError(HustleError, ValueError):
    """A plugin or tool name is already taken."""


class PluginVerificationError(HustleError):
    """A plugin bundle failed trust verification."""

    def __init__(self, message: str, outcome: VerificationOutcome) -> None:
        super().__init__(message)
        self.outcome = outcome


class PluginNotFoundError(HustleError, KeyError):
    """No plugin with the given name is registered."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class TransportError(HustleError):
    """The underlying byte source failed (connection drop, non-success status)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamTimeoutError(TransportError):
    """The transport was aborted because the request timed out."""

    def __init__(self, message: str = ABORT_TIMEOUT) -> None:
        super().__init__(message)


def is_timeout_error(exc: BaseException) -> bool:
    """Return True if *exc* is the transport timeout sentinel."""
    return isinstance(exc, StreamTimeoutError) or str(exc) == ABORT_TIMEOUT
