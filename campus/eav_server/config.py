"""
Configuration management for the Campus EAV server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit database path
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        database_path: Path of the SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    database_path: str = "/var/lib/campus/campus.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("EAV_DATABASE_PATH", "/var/lib/campus/campus.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class SeedConfig:
    """Attribute catalog seeding.

    Attributes:
        seed_on_startup: Upsert the predefined attribute catalog when the server starts
    """

    seed_on_startup: bool = False

    @classmethod
    def from_env(cls) -> SeedConfig:
        """Load configuration from environment variables."""
        return cls(
            seed_on_startup=os.getenv("EAV_SEED_ON_STARTUP", "false").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: SQLite storage configuration
        seed: Catalog seeding configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    seed: SeedConfig = field(default_factory=SeedConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            seed=SeedConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.database_path:
            raise ValueError("EAV_DATABASE_PATH must not be empty")

        if self.storage.busy_timeout_ms < 0:
            raise ValueError(
                f"SQLITE_BUSY_TIMEOUT_MS must be >= 0, got {self.storage.busy_timeout_ms}"
            )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        parent = Path(self.storage.database_path).parent
        if not parent.exists():
            logger.warning(
                f"Database directory does not exist: {parent}. "
                "It will be created on first connection."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "database_path": self.storage.database_path,
                "wal_mode": self.storage.wal_mode,
                "seed_on_startup": self.seed.seed_on_startup,
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
            },
        )
