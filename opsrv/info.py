"""Runtime information for ``/_system/info``."""

from __future__ import annotations

import asyncio
import gc
import inspect
import os
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import psutil
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from opsrv.registry import CheckRegistry, InfoCheck

_BYTE_UNITS = ("B", "K", "M", "G", "T", "P", "E")


class _CollectorTimer:
    """Accumulates time spent inside garbage collector passes."""

    def __init__(self) -> None:
        self.pause_total = 0.0
        self._started: float | None = None
        self._lock = threading.Lock()
        self._installed = False

    def install(self) -> None:
        with self._lock:
            if not self._installed:
                gc.callbacks.append(self._on_gc)
                self._installed = True

    def _on_gc(self, phase: str, info: dict[str, Any]) -> None:
        if phase == "start":
            self._started = time.perf_counter()
        elif phase == "stop" and self._started is not None:
            self.pause_total += time.perf_counter() - self._started
            self._started = None


_collector_timer = _CollectorTimer()


def byte_size(num: int) -> str:
    """Format a byte count the short way: ``512B``, ``1.5K``, ``12M``."""
    if num < 1024:
        return f"{int(num)}B"
    value = float(num)
    for unit in _BYTE_UNITS[1:]:
        value /= 1024
        text = f"{value:.1f}"
        # 1023.96K rounds to "1024.0"; report it as the next unit
        if float(text) < 1024 or unit == _BYTE_UNITS[-1]:
            return text.rstrip("0").rstrip(".") + unit
    return f"{num}B"


def format_duration(seconds: float) -> str:
    """Format *seconds* as ``1h2m3.5s`` (sub-second values use ``ms``/``µs``)."""
    if seconds < 1:
        if seconds < 0.001:
            return f"{seconds * 1_000_000:.0f}µs"
        return f"{seconds * 1000:.3f}".rstrip("0").rstrip(".") + "ms"

    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    text = f"{secs:.3f}".rstrip("0").rstrip(".") + "s"
    if hours:
        return f"{int(hours)}h{int(minutes)}m{text}"
    if minutes:
        return f"{int(minutes)}m{text}"
    return text


@dataclass
class GCInfo:
    enabled: bool
    runs: int
    next_run: int
    cpu_usage: str
    time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "runs": self.runs,
            "nextRun": self.next_run,
            "cpuUsage": self.cpu_usage,
            "time": self.time,
        }


@dataclass
class InfoResponse:
    threads: int
    tasks: int
    uptime: str
    num_cpu: int
    mem_used: str
    gc: GCInfo
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threads": self.threads,
            "tasks": self.tasks,
            "uptime": self.uptime,
            "numCpu": self.num_cpu,
            "memUsed": self.mem_used,
            "gc": self.gc.to_dict(),
            "metrics": self.metrics,
        }


def _gc_info(uptime: float) -> GCInfo:
    runs = sum(generation["collections"] for generation in gc.get_stats())
    threshold = gc.get_threshold()[0]
    pending = gc.get_count()[0]
    pause = _collector_timer.pause_total
    share = (pause / uptime * 100) if uptime > 0 else 0.0
    return GCInfo(
        enabled=gc.isenabled(),
        runs=runs,
        next_run=max(threshold - pending, 0),
        cpu_usage=f"{share:.2f}%",
        time=format_duration(pause),
    )


def _running_tasks() -> int:
    try:
        return len(asyncio.all_tasks())
    except RuntimeError:
        return 0


async def run_info(checks: Iterable[InfoCheck]) -> dict[str, Any]:
    """Evaluate info checks one after another, in registration order.

    Plain callables run in a worker thread. A raising check aborts the whole
    collection.
    """
    metrics: dict[str, Any] = {}
    for check in checks:
        if inspect.iscoroutinefunction(check.handler):
            value = await check.handler()
        else:
            value = await asyncio.to_thread(check.handler)
            if inspect.isawaitable(value):
                value = await value
        metrics[check.name] = value
    return metrics


class InfoEndpoint:
    """``/_system/info`` handler.

    Uptime counts from when this handler is constructed, not from when the
    server starts listening.
    """

    def __init__(self, registry: CheckRegistry[InfoCheck]) -> None:
        self._registry = registry
        self._num_cpu = os.cpu_count() or 1
        self._started = time.monotonic()
        self._process = psutil.Process()
        _collector_timer.install()

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    async def collect(self) -> InfoResponse:
        uptime = self.uptime
        return InfoResponse(
            threads=threading.active_count(),
            tasks=_running_tasks(),
            uptime=format_duration(uptime),
            num_cpu=self._num_cpu,
            mem_used=byte_size(self._process.memory_info().rss),
            gc=_gc_info(uptime),
            metrics=await run_info(self._registry.snapshot()),
        )

    async def handle(self) -> JSONResponse:
        info = await self.collect()
        return JSONResponse(jsonable_encoder(info.to_dict()))
