"""Server facade: router registration, system endpoints and lifecycle.

A ``Server`` wraps a FastAPI application (the router and middleware chain)
and a :class:`~opsrv.lifecycle.Lifecycle`. Construction registers the
``/_system`` endpoints under the optional context path::

    server = Server(context_path="/api", app_env="dev")
    server.add_readiness_check("db", check_database)

    @server.get("/widgets")
    async def list_widgets():
        return []

    server.serve(":8000")
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import FastAPI, status
from starlette.routing import Match
from starlette.types import ASGIApp, Receive, Scope, Send

from opsrv.config import ServerSettings, is_development_env
from opsrv.health import health_endpoint
from opsrv.info import InfoEndpoint
from opsrv.lifecycle import GRACEFUL_TIMEOUT, Lifecycle
from opsrv.middleware import RecoveryMiddleware, RequestContextMiddleware
from opsrv.registry import health_registry, info_registry
from opsrv.routes import (
    SYSTEM_PREFIX,
    RouteInfo,
    method_not_allowed,
    not_found,
    routes_endpoint,
    server_error,
)

Endpoint = Callable[..., Any]


class Server:
    """HTTP server with health, info and route-listing endpoints.

    ``app_env`` of ``"dev"`` or ``"test"`` adds ``/_system/routes`` and turns
    off the panic-recovery boundary so failures surface with their
    traceback. The server object is itself an ASGI application.
    """

    def __init__(
        self,
        context_path: str = "",
        app_env: str = "",
        *,
        title: str = "opsrv",
        grace_period: float = GRACEFUL_TIMEOUT,
    ) -> None:
        self.context_path = context_path.rstrip("/")
        self.app_env = app_env
        self.development = is_development_env(app_env)

        self.app = FastAPI(
            title=title,
            debug=self.development,
            docs_url="/docs" if self.development else None,
            redoc_url="/redoc" if self.development else None,
            openapi_url="/openapi.json" if self.development else None,
        )
        self.app.add_exception_handler(status.HTTP_404_NOT_FOUND, not_found)
        self.app.add_exception_handler(status.HTTP_405_METHOD_NOT_ALLOWED, method_not_allowed)
        self.app.add_middleware(RequestContextMiddleware)

        self._handler: ASGIApp = self.app
        if not self.development:
            self.app.add_exception_handler(Exception, server_error)
            self._handler = RecoveryMiddleware(self.app)

        self._routes: list[RouteInfo] = []
        self.readiness_checks = health_registry()
        self.liveness_checks = health_registry()
        self.info_metrics = info_registry()

        if self.development:
            self.get(f"{SYSTEM_PREFIX}/routes", routes_endpoint(self._routes))
        self.get(f"{SYSTEM_PREFIX}/readiness", health_endpoint(self.readiness_checks))
        self.get(f"{SYSTEM_PREFIX}/liveness", health_endpoint(self.liveness_checks))
        self.get(f"{SYSTEM_PREFIX}/info", InfoEndpoint(self.info_metrics).handle)

        self.lifecycle = Lifecycle(self, grace_period=grace_period)

    @classmethod
    def from_settings(cls, settings: ServerSettings, **kwargs: Any) -> Server:
        return cls(
            context_path=settings.context_path,
            app_env=settings.app_env,
            title=settings.service_name,
            grace_period=settings.graceful_timeout,
            **kwargs,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._handler(scope, receive, send)

    # ── Checks ────────────────────────────────

    def add_liveness_check(self, name: str, handler: Callable[..., Any]) -> None:
        """Register a check for ``/_system/liveness``.

        Liveness failing means the process is broken and can only recover by
        being restarted. ``name`` should be camel-case.
        """
        self.liveness_checks.add(name, handler)

    def add_readiness_check(self, name: str, handler: Callable[..., Any]) -> None:
        """Register a check for ``/_system/readiness``.

        Readiness failing means the process cannot serve traffic right now
        but should not be restarted for it. ``name`` should be camel-case.
        """
        self.readiness_checks.add(name, handler)

    def add_info_metric(self, name: str, handler: Callable[[], Any]) -> None:
        """Register a value reported under ``metrics`` at ``/_system/info``."""
        self.info_metrics.add(name, handler)

    # ── Routing ───────────────────────────────

    def handle(self, method: str, path: str, endpoint: Endpoint, **route_options: Any) -> None:
        """Register *endpoint* for *method* at ``context_path + path``.

        To register outside the context path, add the route to ``self.app``
        directly; such routes are not listed by ``/_system/routes``.
        """
        full_path = self.context_path + path
        method = method.upper()
        self._routes.append(RouteInfo(method=method, path=full_path))
        self.app.add_api_route(full_path, endpoint, methods=[method], **route_options)

    def _shortcut(self, method: str, path: str, endpoint: Endpoint | None, route_options: dict[str, Any]):
        if endpoint is not None:
            self.handle(method, path, endpoint, **route_options)
            return endpoint

        def decorator(func: Endpoint) -> Endpoint:
            self.handle(method, path, func, **route_options)
            return func

        return decorator

    def get(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("GET", path, endpoint, route_options)

    def post(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("POST", path, endpoint, route_options)

    def put(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("PUT", path, endpoint, route_options)

    def patch(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("PATCH", path, endpoint, route_options)

    def delete(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("DELETE", path, endpoint, route_options)

    def head(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("HEAD", path, endpoint, route_options)

    def options(self, path: str, endpoint: Endpoint | None = None, **route_options: Any):
        return self._shortcut("OPTIONS", path, endpoint, route_options)

    def lookup(self, method: str, path: str) -> Endpoint | None:
        """Return the endpoint serving *method* at the absolute *path*, if any."""
        scope = {"type": "http", "method": method.upper(), "path": path, "root_path": ""}
        for route in self.app.router.routes:
            match, _ = route.matches(scope)
            if match is Match.FULL:
                return getattr(route, "endpoint", None)
        return None

    @property
    def routes(self) -> Sequence[RouteInfo]:
        return tuple(self._routes)

    # ── Middleware ────────────────────────────

    def use(self, middleware_class: type, **options: Any) -> None:
        """Add a Starlette middleware; the last one added runs first."""
        self.app.add_middleware(middleware_class, **options)

    # ── Lifecycle ─────────────────────────────

    async def run(self, address: str, stop: asyncio.Event | None = None) -> None:
        await self.lifecycle.run(address, stop=stop)

    def serve(self, address: str) -> None:
        """Blocking ``run()`` for scripts; returns after a stop signal."""
        asyncio.run(self.run(address))

    async def shutdown(self) -> None:
        await self.lifecycle.shutdown()

    def is_running(self) -> bool:
        return self.lifecycle.is_running()

    @property
    def address(self) -> tuple[str, int] | None:
        return self.lifecycle.address
