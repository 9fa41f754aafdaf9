"""Startup configuration for esqlwatch."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = ["ENV_PREFIX", "LOG_LEVELS", "Settings", "coerce_log_level"]

ENV_PREFIX = "ESQLWATCH_"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

DEFAULT_MAX_BODY_BYTES = 4 * 1024 * 1024


def coerce_log_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if isinstance(value, int):
        return value
    raise ValueError(f"Unknown log level '{level}'")


class Settings(BaseModel):
    """Immutable process settings, fixed for the lifetime of the process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = Field(33433, ge=0, le=65535)
    path: str = "/data"
    tick_interval: float = Field(0.25, gt=0.0, le=5.0)
    max_body_bytes: int = Field(DEFAULT_MAX_BODY_BYTES, ge=1)
    quit_key: str = Field("q", min_length=1, max_length=1)
    log_level: str = "WARNING"
    log_file: Optional[Path] = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalised = value.upper()
        if normalised not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return normalised

    @property
    def listen(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: object,
    ) -> "Settings":
        """Build settings from ``ESQLWATCH_*`` variables, then ``overrides``."""

        env = os.environ if environ is None else environ
        values: Dict[str, object] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
