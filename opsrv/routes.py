"""Route introspection and JSON fallback responses."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

SYSTEM_PREFIX = "/_system"


@dataclass(frozen=True)
class RouteInfo:
    method: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def routes_endpoint(routes: Sequence[RouteInfo]):
    """Build the ``/_system/routes`` endpoint over a live route list."""

    async def list_routes() -> JSONResponse:
        return JSONResponse([route.to_dict() for route in routes])

    return list_routes


async def not_found(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"detail": exc.detail or "Not Found"},
        status_code=status.HTTP_404_NOT_FOUND,
        headers=getattr(exc, "headers", None),
    )


async def method_not_allowed(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"detail": exc.detail or "Method Not Allowed"},
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        headers=getattr(exc, "headers", None),
    )


async def server_error(request: Request, exc: Exception) -> JSONResponse:
    # Never leak exception detail to the client.
    return JSONResponse(
        {"detail": "Internal Server Error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
