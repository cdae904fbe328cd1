"""structlog setup for opsrv processes.

Events from structlog and from stdlib loggers (uvicorn included) go through
one ``ProcessorFormatter`` on a single stream handler: JSON lines in
production, coloured console output under dev/test.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

# Loggers owned by uvicorn; their records are re-rendered by our formatter.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error")


class _ServiceStamp:
    """Processor adding ``service`` to every event."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", self.service_name)
        return event_dict


def _pre_chain(service_name: str, json_logs: bool) -> list[structlog.types.Processor]:
    chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _ServiceStamp(service_name),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        chain.append(structlog.processors.format_exc_info)
    return chain


def _renderer(json_logs: bool) -> structlog.types.Processor:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def _route_server_loggers() -> None:
    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True
    # RequestContextMiddleware writes the access line
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def setup_logging(
    *,
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "opsrv",
    stream: IO[str] | None = None,
) -> None:
    """Install the process-wide logging configuration.

    Replaces any handlers already on the root logger. ``stream`` defaults to
    stdout.
    """
    pre_chain = _pre_chain(service_name, json_logs)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_logs),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level.upper())

    _route_server_loggers()
