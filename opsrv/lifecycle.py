"""Listener lifecycle: start, graceful drain, and stop-signal handling.

``Lifecycle`` owns the listening socket and a uvicorn server running on it.
State moves Stopped -> Running only through ``run()`` and back only through
``shutdown()`` (explicit or triggered by the stop event) or a listener
failure. All state transitions happen without an intervening ``await``, so
two concurrent callers on one event loop can never both pass a guard.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import socket
from collections.abc import Iterator

import structlog
import uvicorn
from starlette.types import ASGIApp

from opsrv.errors import AlreadyRunning, ListenFailure, NotRunning, ShutdownTimeout
from opsrv.signals import stop_on_signals

log = structlog.get_logger()

# Seconds to wait for in-flight requests before they are cancelled.
GRACEFUL_TIMEOUT = 30.0

# Extra time allowed after the deadline for cancelled requests to unwind.
_FORCE_CLOSE_GRACE = 5.0


class ServerState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to its owner."""

    def install_signal_handlers(self) -> None:
        # uvicorn < 0.29
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` / ``:port`` / ``[v6]:port`` into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ListenFailure(f"opsrv: invalid address {address!r}: missing port")
    try:
        port_number = int(port)
    except ValueError:
        raise ListenFailure(f"opsrv: invalid address {address!r}: bad port") from None
    if not 0 <= port_number <= 65535:
        raise ListenFailure(f"opsrv: invalid address {address!r}: port out of range")
    return host.strip("[]"), port_number


def bind_socket(address: str, backlog: int = 2048) -> socket.socket:
    """Bind and listen on *address*, raising ``ListenFailure`` on any OS error."""
    host, port = parse_address(address)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    if not host:
        host = "0.0.0.0"

    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as exc:
        sock.close()
        raise ListenFailure(f"opsrv: failed to start server: {exc}") from exc
    sock.set_inheritable(True)
    return sock


class Lifecycle:
    """Start/stop state machine around a single HTTP listener."""

    def __init__(self, app: ASGIApp, grace_period: float = GRACEFUL_TIMEOUT) -> None:
        self._app = app
        self._grace_period = grace_period
        self._state = ServerState.STOPPED
        self._server: _EmbeddedServer | None = None
        self._serving: asyncio.Task[None] | None = None
        self._address: tuple[str, int] | None = None

    @property
    def state(self) -> ServerState:
        return self._state

    def is_running(self) -> bool:
        """Advisory snapshot; the state may change right after the call."""
        return self._state is ServerState.RUNNING

    @property
    def started(self) -> bool:
        """True once the listener has finished startup and accepts requests."""
        server = self._server
        return server is not None and server.started

    @property
    def address(self) -> tuple[str, int] | None:
        """The bound ``(host, port)`` of the current or most recent listener."""
        return self._address

    async def run(self, address: str, stop: asyncio.Event | None = None) -> None:
        """Serve on *address* until stopped.

        Returns once the server has stopped. With no *stop* event the process
        stop signals trigger the shutdown instead.
        """
        if self._state is ServerState.RUNNING:
            raise AlreadyRunning()
        self._state = ServerState.RUNNING

        try:
            sock = bind_socket(address)
        except ListenFailure:
            self._state = ServerState.STOPPED
            raise

        self._address = sock.getsockname()[:2]
        server = _EmbeddedServer(
            uvicorn.Config(
                self._app,
                log_config=None,
                access_log=False,
                lifespan="auto",
            )
        )
        self._server = server
        serving = asyncio.create_task(server.serve(sockets=[sock]))
        self._serving = serving
        log.info("http_server_starting", host=self._address[0], port=self._address[1])

        if stop is None:
            stop = asyncio.Event()
            signals = stop_on_signals(stop)
        else:
            signals = contextlib.nullcontext()

        with signals:
            stopping = asyncio.create_task(stop.wait())
            try:
                done, _ = await asyncio.wait(
                    {serving, stopping}, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                if self._server is server:
                    await self.shutdown()
                raise
            finally:
                stopping.cancel()

        if self._server is not server:
            # An explicit shutdown() claimed the listener; its caller gets the result.
            await asyncio.wait({serving})
            return

        if serving in done:
            self._server = None
            self._serving = None
            self._state = ServerState.STOPPED
            sock.close()
            exc = None if serving.cancelled() else serving.exception()
            log.error("http_server_failed", error=str(exc) if exc else "exited")
            if exc is not None:
                raise ListenFailure(f"opsrv: failed to start server: {exc}") from exc
            raise ListenFailure("opsrv: server exited before shutdown was requested")

        await self.shutdown()

    async def shutdown(self) -> None:
        """Stop accepting connections and drain in-flight requests.

        Requests still running after the grace period are cancelled and
        ``ShutdownTimeout`` is raised. The state is Stopped either way.
        """
        server, serving = self._server, self._serving
        if self._state is not ServerState.RUNNING or server is None or serving is None:
            raise NotRunning()
        # Claim the listener so a racing shutdown or stop signal is a no-op.
        self._server = None

        log.info("http_server_shutting_down", grace_period=self._grace_period)
        server.should_exit = True
        timed_out = False
        try:
            done, _ = await asyncio.wait({serving}, timeout=self._grace_period)
            if not done:
                timed_out = True
                pending = list(server.server_state.tasks)
                log.error("http_server_drain_timeout", cancelled=len(pending))
                server.force_exit = True
                for task in pending:
                    task.cancel()
                done, _ = await asyncio.wait({serving}, timeout=_FORCE_CLOSE_GRACE)
                if not done:
                    serving.cancel()
                    await asyncio.wait({serving})
        finally:
            self._serving = None
            self._state = ServerState.STOPPED

        if timed_out:
            raise ShutdownTimeout(
                f"opsrv: requests still running after {self._grace_period:g}s were cancelled"
            )
        if not serving.cancelled() and serving.exception() is not None:
            raise ListenFailure("opsrv: server failed while shutting down") from serving.exception()
        log.info("http_server_stopped")
