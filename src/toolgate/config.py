"""
Toolgate Settings

Runtime settings read from the environment:

    TOOLGATE_DATABASE_URL    SQLite path, ``:memory:`` or ``postgresql://`` URL.
                             Unset means the in-memory store.
    TOOLGATE_LOG_LEVEL       DEBUG / INFO / WARNING / ERROR (default INFO)
    TOOLGATE_LOG_JSON        1/true/yes for JSON log lines
    TOOLGATE_EFFECT_TIMEOUT  default effect deadline in seconds (unset: none)
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

_TRUTHY = {"1", "true", "yes", "on"}


class ToolgateSettings(BaseModel):
    """Settings for building a ToolGate."""

    model_config = ConfigDict(frozen=True)

    database_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False
    effect_timeout: float | None = Field(None, gt=0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ToolgateSettings:
        env = os.environ if environ is None else environ
        timeout = env.get("TOOLGATE_EFFECT_TIMEOUT")
        return cls(
            database_url=env.get("TOOLGATE_DATABASE_URL") or None,
            log_level=env.get("TOOLGATE_LOG_LEVEL", "INFO"),
            log_json=env.get("TOOLGATE_LOG_JSON", "").strip().lower() in _TRUTHY,
            effect_timeout=float(timeout) if timeout else None,
        )
