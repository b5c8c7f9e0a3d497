"""
Configuration for tablemap.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with a TABLEMAP_ prefixed variable, e.g.
TABLEMAP_STORE_BACKEND=sqlite.

Invariants:
    - All settings have sensible defaults for local development
    - max_batch_size never exceeds the store's transaction limit

How to change safely:
    - Add new settings with defaults that keep existing behavior
"""

from __future__ import annotations

import logging
from enum import Enum

import json_log_formatter
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StoreBackend(Enum):
    """Supported row-store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """Library configuration loaded from environment."""

    # Row store
    store_backend: str = Field(default="memory", description="Row store backend (memory, sqlite)")
    data_dir: str = Field(default="./tabledata", description="Directory for SQLite table files")
    busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal mode")

    # Bulk writes
    max_batch_size: int = Field(default=100, description="Rows per transaction (1..100)")
    batch_threshold: int = Field(
        default=5, description="Below this many rows, writes are sent one by one"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="text", description="Log format (text, json)")

    model_config = {"env_prefix": "TABLEMAP_"}

    @field_validator("max_batch_size")
    @classmethod
    def _check_batch_size(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("max_batch_size must be between 1 and 100")
        return value

    @property
    def backend(self) -> StoreBackend:
        """Configured backend.

        Raises:
            ValueError: If store_backend names no known backend
        """
        name = self.store_backend.lower()
        try:
            return StoreBackend(name)
        except ValueError:
            raise ValueError(
                f"Invalid store backend '{self.store_backend}'. Must be one of: memory, sqlite"
            ) from None

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "tablemap configuration loaded",
            extra={
                "store_backend": self.store_backend,
                "data_dir": self.data_dir if self.store_backend == "sqlite" else None,
                "max_batch_size": self.max_batch_size,
                "batch_threshold": self.batch_threshold,
                "log_level": self.log_level,
            },
        )


def setup_logging(settings: Settings | None = None) -> None:
    """Configure logging based on settings.

    Args:
        settings: Library settings (defaults loaded from the environment)
    """
    settings = settings or Settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
