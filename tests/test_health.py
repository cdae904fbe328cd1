"""Tests for concurrent health-check aggregation."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone

import pytest

from opsrv.health import (
    STATUS_CHECK_FAILED,
    HealthResponse,
    HealthResult,
    normalize,
    run_health,
)
from opsrv.registry import HealthCheck, health_registry


def _check(name: str, result) -> HealthCheck:
    return HealthCheck(name, lambda: result)


class TestNormalize:
    def test_ok_without_status_becomes_ok(self):
        assert normalize(HealthResult(ok=True)).status == "ok"

    def test_not_ok_without_status_becomes_not_ok(self):
        assert normalize(HealthResult(ok=False)).status == "not ok"

    def test_custom_status_is_kept(self):
        assert normalize(HealthResult(ok=False, status="degraded")).status == "degraded"

    def test_bool_is_accepted(self):
        result = normalize(True)
        assert result.ok is True
        assert result.status == "ok"

    def test_returns_a_copy(self):
        original = HealthResult(ok=True)
        normalize(original)
        assert original.status == ""

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            normalize({"ok": True})


class TestRunHealth:
    @pytest.mark.asyncio
    async def test_no_checks_is_ok(self):
        response = await run_health([])
        assert response.status == "ok"
        assert response.metrics == {}
        assert response.http_status == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("result", "want_overall", "want_status"),
        [
            (HealthResult(ok=True), "ok", "ok"),
            (HealthResult(ok=True, status="awesome"), "ok", "awesome"),
            (HealthResult(ok=False), "not ok", "not ok"),
            (HealthResult(ok=False, status="not good at all"), "not ok", "not good at all"),
        ],
    )
    async def test_single_check(self, result, want_overall, want_status):
        response = await run_health([_check("testing", result)])
        assert response.status == want_overall
        assert response.metrics["testing"].status == want_status

    @pytest.mark.asyncio
    async def test_info_is_passed_through(self):
        info = {"test": "testdata"}
        response = await run_health([_check("testing", HealthResult(ok=True, info=info))])
        assert response.to_dict()["metrics"]["testing"] == {"status": "ok", "info": info}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_index", [0, 3, 9])
    async def test_any_failure_makes_overall_not_ok(self, failing_index):
        checks = [
            _check(f"check{i}", HealthResult(ok=i != failing_index)) for i in range(10)
        ]
        response = await run_health(checks)
        assert response.status == "not ok"
        assert response.http_status == 500
        assert len(response.metrics) == 10

    @pytest.mark.asyncio
    async def test_all_ok(self):
        response = await run_health([_check(f"check{i}", True) for i in range(5)])
        assert response.status == "ok"
        assert response.http_status == 200

    @pytest.mark.asyncio
    async def test_async_checks_run_concurrently(self):
        first_started = asyncio.Event()
        second_started = asyncio.Event()

        async def first():
            first_started.set()
            await second_started.wait()
            return HealthResult(ok=True)

        async def second():
            second_started.set()
            await first_started.wait()
            return HealthResult(ok=True)

        response = await asyncio.wait_for(
            run_health([HealthCheck("first", first), HealthCheck("second", second)]),
            timeout=2,
        )
        assert response.status == "ok"

    @pytest.mark.asyncio
    async def test_blocking_checks_run_in_parallel_threads(self):
        barrier = threading.Barrier(2, timeout=2)

        def blocking():
            barrier.wait()
            return HealthResult(ok=True)

        response = await run_health([HealthCheck("a", blocking), HealthCheck("b", blocking)])
        assert response.metrics["a"].status == "ok"
        assert response.metrics["b"].status == "ok"

    @pytest.mark.asyncio
    async def test_raising_check_is_isolated(self):
        def broken():
            raise RuntimeError("connection refused")

        response = await run_health(
            [HealthCheck("broken", broken), _check("fine", HealthResult(ok=True))]
        )
        assert response.status == "not ok"
        assert response.metrics["broken"].status == STATUS_CHECK_FAILED
        assert response.metrics["fine"].status == "ok"
        assert "connection refused" not in str(response.to_dict())

    @pytest.mark.asyncio
    async def test_duplicate_names_later_wins(self):
        response = await run_health(
            [
                _check("db", HealthResult(ok=True, status="first")),
                _check("db", HealthResult(ok=True, status="second")),
            ]
        )
        assert list(response.metrics) == ["db"]
        assert response.metrics["db"].status == "second"

    @pytest.mark.asyncio
    async def test_shadowed_failure_still_fails_overall(self):
        response = await run_health(
            [_check("db", HealthResult(ok=False)), _check("db", HealthResult(ok=True))]
        )
        assert response.metrics["db"].status == "ok"
        assert response.status == "not ok"


class TestHealthResponse:
    def test_ok_is_never_serialised(self):
        response = HealthResponse(
            status="not ok",
            metrics={"db": HealthResult(ok=False, status="degraded")},
        )
        assert response.to_dict() == {"status": "not ok", "metrics": {"db": {"status": "degraded"}}}


class TestRegistry:
    def test_registration_order_is_kept(self):
        registry = health_registry()
        registry.add("b", lambda: True)
        registry.add("a", lambda: True)
        assert [check.name for check in registry] == ["b", "a"]

    def test_snapshot_is_not_affected_by_later_registrations(self):
        registry = health_registry()
        registry.add("first", lambda: True)
        snapshot = registry.snapshot()
        registry.add("second", lambda: True)
        assert len(snapshot) == 1
        assert len(registry) == 2


class TestHealthEndpoints:
    def test_readiness_scenario(self, server, client):
        server.add_readiness_check("db", lambda: HealthResult(ok=False, status="degraded"))

        resp = client.get("/_system/readiness")

        assert resp.status_code == 500
        assert resp.json() == {"status": "not ok", "metrics": {"db": {"status": "degraded"}}}

    def test_liveness_check(self, server, client):
        server.add_liveness_check("testCheck", lambda: HealthResult(ok=True))

        resp = client.get("/_system/liveness")

        assert resp.status_code == 200
        assert resp.json()["metrics"]["testCheck"]["status"] == "ok"

    def test_liveness_and_readiness_are_separate(self, server, client):
        server.add_readiness_check("db", lambda: False)

        assert client.get("/_system/liveness").json() == {"status": "ok", "metrics": {}}
        assert client.get("/_system/readiness").status_code == 500

    def test_async_readiness_check(self, server, client):
        async def cache():
            return HealthResult(ok=True, info={"latencyMs": 3})

        server.add_readiness_check("cache", cache)

        body = client.get("/_system/readiness").json()
        assert body["metrics"]["cache"] == {"status": "ok", "info": {"latencyMs": 3}}

    def test_check_added_after_first_request_is_included_next_time(self, server, client):
        assert client.get("/_system/readiness").json()["metrics"] == {}

        server.add_readiness_check("late", lambda: True)

        assert "late" in client.get("/_system/readiness").json()["metrics"]

    def test_check_info_is_json_encoded(self, server, client):
        checked_at = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
        server.add_readiness_check(
            "db", lambda: HealthResult(ok=True, info={"checkedAt": checked_at, "replicas": {"a"}})
        )

        resp = client.get("/_system/readiness")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "metrics": {"db": {"status": "ok", "info": {"checkedAt": "2024-01-01T12:30:00+00:00", "replicas": ["a"]}}},
        }
