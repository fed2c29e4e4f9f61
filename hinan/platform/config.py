"""
Process configuration from the environment (and an optional .env file).
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

ENV_PREFIX = "HINAN_"


class Settings(BaseModel):
    """Runtime settings shared by the Coordinator, Backend and Agent."""

    backend_url: str = "ws://localhost:3000"
    """Where the Coordinator reaches the Backend."""

    regeneration_interval: float = Field(default=10.0, gt=0)
    """Seconds between route regeneration ticks."""

    backend_timeout: Optional[float] = Field(default=None, gt=0)
    """Optional limit on one Backend fetch; None waits indefinitely."""

    max_closed_sessions: int = Field(default=100, ge=0)
    log_level: str = "INFO"
    coordinator_host: str = "localhost"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from HINAN_* variables.

        Loads a .env file into the process environment first when reading
        os.environ. Unset or blank optional values fall back to defaults.

        Raises
        ------
        ValueError
            If a value is present but invalid
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name != "backend_url" and not raw.strip():
                continue
            values[name] = raw.strip()

        try:
            return cls(**values)
        except ValidationError as exc:
            raise ValueError(f"invalid configuration: {exc}") from exc


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide log format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
