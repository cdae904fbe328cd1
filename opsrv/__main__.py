"""opsrv standalone entry point.

Runs a bare server exposing only the ``/_system`` endpoints, configured from
the environment (``APP_ENV``, ``ADDRESS``, ``CONTEXT_PATH``, ``LOG_LEVEL``).
"""

from __future__ import annotations

import structlog

from opsrv.config import ServerSettings
from opsrv.errors import ServerError
from opsrv.logging import setup_logging
from opsrv.server import Server

log = structlog.get_logger()


def main() -> None:
    settings = ServerSettings()
    setup_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        service_name=settings.service_name,
    )

    server = Server.from_settings(settings)
    log.info(
        "opsrv starting",
        address=settings.address,
        app_env=settings.app_env,
        context_path=settings.context_path or "/",
    )

    try:
        server.serve(settings.address)
    except ServerError as exc:
        log.error("opsrv stopped with error", error=str(exc))
        raise SystemExit(1) from exc

    log.info("opsrv shut down")


if __name__ == "__main__":
    main()
