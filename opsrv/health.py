"""Concurrent health-check aggregation.

Backs ``/_system/liveness`` and ``/_system/readiness``. Every registered check
runs as its own task; the overall status is reduced from the collected
results once all tasks have finished.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

import structlog
from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from opsrv.registry import CheckRegistry, HealthCheck

logger = structlog.get_logger()

STATUS_OK = "ok"
STATUS_NOT_OK = "not ok"
STATUS_CHECK_FAILED = "check failed"


@dataclass
class HealthResult:
    """Outcome of a single health check.

    ``ok`` decides the overall status and is never serialised. ``status``
    defaults to ``"ok"`` / ``"not ok"`` when left empty; ``info`` carries any
    extra detail (latency, versions, ...).
    """

    ok: bool
    status: str = ""
    info: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status}
        if self.info:
            body["info"] = self.info
        return body


@dataclass
class HealthResponse:
    status: str = STATUS_OK
    metrics: dict[str, HealthResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def http_status(self) -> int:
        if self.ok:
            return status.HTTP_200_OK
        return status.HTTP_500_INTERNAL_SERVER_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "metrics": {name: result.to_dict() for name, result in self.metrics.items()},
        }


def normalize(result: HealthResult | bool) -> HealthResult:
    """Return a copy of *result* with the default status filled in."""
    if isinstance(result, bool):
        result = HealthResult(ok=result)
    elif not isinstance(result, HealthResult):
        raise TypeError(f"health check returned {type(result).__name__}, expected HealthResult")

    if result.status:
        return replace(result)
    return replace(result, status=STATUS_OK if result.ok else STATUS_NOT_OK)


async def _invoke(check: HealthCheck) -> HealthResult | bool:
    if inspect.iscoroutinefunction(check.handler):
        return await check.handler()
    value = await asyncio.to_thread(check.handler)
    if inspect.isawaitable(value):
        value = await value
    return value


async def _run_one(check: HealthCheck) -> HealthResult:
    # A raising check is isolated from its siblings.
    try:
        return normalize(await _invoke(check))
    except Exception:
        logger.exception("health_check_failed", check=check.name)
        return HealthResult(ok=False, status=STATUS_CHECK_FAILED)


async def run_health(checks: Iterable[HealthCheck]) -> HealthResponse:
    """Run *checks* concurrently and aggregate them into a ``HealthResponse``.

    No timeout is applied: a check that never returns stalls the response.
    """
    checks = tuple(checks)
    if not checks:
        return HealthResponse()

    results = await asyncio.gather(*(_run_one(check) for check in checks))

    metrics: dict[str, HealthResult] = {}
    for check, result in zip(checks, results):
        metrics[check.name] = result

    # Reduced over every result, including ones shadowed by a duplicate name.
    overall = STATUS_OK if all(result.ok for result in results) else STATUS_NOT_OK
    return HealthResponse(status=overall, metrics=metrics)


def health_endpoint(registry: CheckRegistry[HealthCheck]):
    """Build a FastAPI endpoint serving the aggregated health of *registry*."""

    async def health() -> JSONResponse:
        response = await run_health(registry.snapshot())
        if not response.ok:
            logger.warning(
                "health_not_ok",
                failing=sorted(name for name, result in response.metrics.items() if not result.ok),
            )
        return JSONResponse(jsonable_encoder(response.to_dict()), status_code=response.http_status)

    return health
