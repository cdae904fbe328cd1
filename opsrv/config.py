"""Server configuration using Pydantic Settings.

Values are loaded from environment variables and .env files; the resulting
options are fixed once a :class:`opsrv.server.Server` is built from them.
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from opsrv.lifecycle import GRACEFUL_TIMEOUT

DEVELOPMENT_ENVS = frozenset({"dev", "test"})


def is_development_env(app_env: str) -> bool:
    """``dev`` and ``test`` expose ``/_system/routes`` and disable panic recovery."""
    return app_env in DEVELOPMENT_ENVS


class ServerSettings(BaseSettings):
    """Settings for an opsrv-based service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── General ───────────────────────────────
    app_env: str = "prod"
    log_level: str = "INFO"
    service_name: str = "opsrv"

    # ── HTTP ──────────────────────────────────
    address: str = ":8000"
    context_path: str = ""
    graceful_timeout: float = GRACEFUL_TIMEOUT

    @field_validator("context_path")
    @classmethod
    def _trim_context_path(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_development(self) -> bool:
        return is_development_env(self.app_env)

    @property
    def json_logs(self) -> bool:
        return not self.is_development
