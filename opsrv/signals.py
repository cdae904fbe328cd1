"""Process signal wiring for graceful shutdown.

Signals are process-wide, so the lifecycle only ever sees an
``asyncio.Event``; this module is the adapter that sets it.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

log = structlog.get_logger()

STOP_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name)
    for name in ("SIGHUP", "SIGINT", "SIGQUIT", "SIGTERM")
    if hasattr(signal, name)
)


@contextmanager
def stop_on_signals(
    event: asyncio.Event,
    signals: tuple[signal.Signals, ...] = STOP_SIGNALS,
) -> Iterator[None]:
    """Set *event* when any of *signals* arrives while the block is active."""
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def _on_signal(sig: signal.Signals) -> None:
        log.info("stop_signal_received", signal=sig.name)
        event.set()

    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Windows, or not running in the main thread
            continue
        installed.append(sig)

    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
