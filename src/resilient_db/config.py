"""
Configuration management for resilient database access.
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = ("mysql", "sqlite")
SUPPORTED_STRATEGIES = ("pool", "single")

# camelCase keys accepted when loading from a mapping or JSON file
_ALIASES = {
    "maxAttempts": "max_attempts",
    "connectionLimit": "connection_limit",
    "acquireTimeout": "acquire_timeout",
    "waitForConnections": "wait_for_connections",
    "queueLimit": "queue_limit",
    "queryLog": "query_log",
    "retryBackoffMs": "retry_backoff_ms",
    "uidMaxDraws": "uid_max_draws",
    "db": "database",
}


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Connection and retry parameters.

    Created once at startup and read-only afterwards. Timeouts and backoff
    are expressed in milliseconds.
    """

    host: str = "localhost"
    port: int = 3306
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    driver: str = "mysql"
    strategy: str = "pool"
    max_attempts: int = 5
    connection_limit: int = 10
    acquire_timeout: int = 10000
    wait_for_connections: bool = True
    queue_limit: int = 0
    query_log: bool = False
    retry_backoff_ms: int = 100
    uid_max_draws: int = 1000
    charset: str = "utf8mb4"

    @property
    def acquire_timeout_seconds(self) -> float:
        return self.acquire_timeout / 1000.0

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DatabaseConfig":
        """
        Build a configuration from a plain mapping.

        Unset fields take their defaults. camelCase aliases are accepted and
        unknown keys are ignored with a warning.

        Args:
            data: Field name to value mapping

        Returns:
            DatabaseConfig instance
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}

        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name in known:
                values[name] = value
            else:
                logger.warning(f"Ignoring unknown database config key: {key}")

        return cls(**values)

    @classmethod
    def from_file(cls, path: str = "config/database.json") -> "DatabaseConfig":
        """
        Load configuration from JSON file.
        Falls back to defaults if file missing or invalid.

        Pool tunables may sit in a nested "connection_pool" object.

        Args:
            path: Path to configuration file

        Returns:
            DatabaseConfig instance with loaded or default values
        """
        config_path = Path(path)

        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    data = json.load(f)

                pool_section = data.pop("connection_pool", {})
                merged = dict(data)
                merged.update(pool_section)

                config = cls.from_dict(merged)
                logger.info(f"Loaded database configuration from {path}")
                return config

            except (json.JSONDecodeError, AttributeError, TypeError) as e:
                logger.error(
                    f"Failed to load configuration from {path}: {e}. Using defaults.",
                    exc_info=True
                )
        else:
            logger.info(f"Configuration file {path} not found. Using defaults.")

        return cls()

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If parameters are invalid
        """
        errors = []

        if self.driver not in SUPPORTED_DRIVERS:
            errors.append(f"driver must be one of {', '.join(SUPPORTED_DRIVERS)}")

        if self.strategy not in SUPPORTED_STRATEGIES:
            errors.append(f"strategy must be one of {', '.join(SUPPORTED_STRATEGIES)}")

        if self.max_attempts <= 0:
            errors.append("max_attempts must be positive")

        if self.connection_limit <= 0:
            errors.append("connection_limit must be positive")

        if self.acquire_timeout <= 0:
            errors.append("acquire_timeout must be positive")

        if self.queue_limit < 0:
            errors.append("queue_limit must be non-negative")

        if self.retry_backoff_ms < 0:
            errors.append("retry_backoff_ms must be non-negative")

        if self.uid_max_draws <= 0:
            errors.append("uid_max_draws must be positive")

        if errors:
            error_msg = "; ".join(errors)
            logger.error(f"Invalid database configuration: {error_msg}")
            raise ValueError(f"Invalid database configuration: {error_msg}")
