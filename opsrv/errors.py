"""Lifecycle errors raised by :class:`opsrv.lifecycle.Lifecycle`.

None of these are retried internally; retry policy belongs to the caller.
"""

from __future__ import annotations


class ServerError(Exception):
    """Base class for server lifecycle failures."""


class AlreadyRunning(ServerError):
    """``run()`` was called while the server is already running."""

    def __init__(self, message: str = "opsrv: server already running") -> None:
        super().__init__(message)


class NotRunning(ServerError):
    """``shutdown()`` was called while the server is stopped."""

    def __init__(self, message: str = "opsrv: server not running") -> None:
        super().__init__(message)


class ListenFailure(ServerError):
    """Binding or serving on the requested address failed."""


class ShutdownTimeout(ServerError):
    """In-flight requests outlived the graceful drain deadline and were cancelled."""
