"""
Configuration for docmodel.

Settings come from environment variables prefixed ``DOCMODEL_`` and apply
to every model that does not pass explicit options.

Invariants:
    - All settings have sensible defaults for local development
    - Explicit ModelOptions always win over settings
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docmodel configuration."""

    # Storage
    data_dir: str = Field(default="data", description="Directory holding one datafile per model")
    in_memory_only: bool = Field(default=False)
    autocompaction_interval_ms: int | None = Field(default=None, ge=0)
    busy_timeout_ms: int = Field(default=5000, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    model_config = SettingsConfigDict(env_prefix="DOCMODEL_")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()


def setup_logging(settings: Settings | None = None) -> None:
    """Configure root logging from settings.

    Args:
        settings: Settings to use; defaults to get_settings()
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
