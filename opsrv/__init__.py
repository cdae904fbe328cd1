"""opsrv: operational HTTP server toolkit.

Health, readiness, liveness, info and route-listing endpoints plus a
graceful-shutdown lifecycle around a FastAPI application.
"""

from opsrv.config import ServerSettings
from opsrv.errors import AlreadyRunning, ListenFailure, NotRunning, ServerError, ShutdownTimeout
from opsrv.health import HealthResponse, HealthResult, run_health
from opsrv.info import InfoResponse
from opsrv.lifecycle import GRACEFUL_TIMEOUT, Lifecycle, ServerState
from opsrv.logging import setup_logging
from opsrv.routes import RouteInfo
from opsrv.server import Server

__version__ = "0.1.0"

__all__ = [
    "AlreadyRunning",
    "GRACEFUL_TIMEOUT",
    "HealthResponse",
    "HealthResult",
    "InfoResponse",
    "Lifecycle",
    "ListenFailure",
    "NotRunning",
    "RouteInfo",
    "Server",
    "ServerError",
    "ServerSettings",
    "ServerState",
    "ShutdownTimeout",
    "run_health",
    "setup_logging",
]
