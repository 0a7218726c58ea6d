"""
Configuration loader with environment variable mapping.

Reads ``POSTGRES_*`` connection settings and ``SQLLOAD_*`` loading settings,
optionally from a ``.env`` file, into typed models.
"""

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .models import AppConfig, DatabaseConfig, Environment, LoadingConfig

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")

# environment variable suffix -> LoadingConfig field
_LOADING_VARIABLES = {
    "FORMAT": "format",
    "HEADER": "header",
    "TARGET": "target",
    "THREADS": "threads",
    "COMMIT": "commit_frequency",
    "MAX_RETRIES": "max_retries",
    "RETRY_BACKOFF_SECONDS": "retry_backoff_seconds",
    "CONSTRAINT_CHECK_TIME": "constraint_check_time",
    "ENCODING": "encoding",
    "BULK_COPY": "bulk_copy",
    "QUIET": "quiet",
}

_BOOLEAN_FIELDS = ("header", "bulk_copy", "quiet")


class ConfigLoader:
    """Configuration loader with environment variable mapping and validation."""

    def __init__(self, env_file: Optional[str] = None):
        """
        Args:
            env_file: Path to .env file (defaults to .env in current directory)
        """
        self.env_file = env_file or ".env"
        self._loaded_config: Optional[AppConfig] = None

    def load_configuration(self) -> AppConfig:
        """Load configuration from environment variables."""
        self._load_env_file()

        config = AppConfig(
            environment=Environment(os.getenv("ENVIRONMENT", Environment.DEVELOPMENT.value)),
            database=self._load_database_config("POSTGRES"),
            loading=self._load_loading_config("SQLLOAD"),
        )
        self._loaded_config = config
        return config

    def get_loaded_config(self) -> Optional[AppConfig]:
        """Get the currently loaded configuration."""
        return self._loaded_config

    def _load_env_file(self):
        """Load environment variables from .env file."""
        if os.path.exists(self.env_file):
            load_dotenv(self.env_file, override=False)
            logger.debug(f"Loaded environment variables from {self.env_file}")
        else:
            logger.debug(f"Environment file {self.env_file} not found")

    def _load_database_config(self, prefix: str) -> DatabaseConfig:
        """Load database configuration with given prefix."""
        values: Dict[str, Any] = {
            "host": os.getenv(f"{prefix}_HOST"),
            "port": os.getenv(f"{prefix}_PORT"),
            "user": os.getenv(f"{prefix}_USER"),
            "password": os.getenv(f"{prefix}_PASSWORD"),
            "database_name": os.getenv(f"{prefix}_DBNAME"),
            "schema_name": os.getenv(f"{prefix}_SCHEMA"),
        }
        return DatabaseConfig(**{key: value for key, value in values.items() if value is not None})

    def _load_loading_config(self, prefix: str) -> LoadingConfig:
        """Load loading configuration with given prefix."""
        values: Dict[str, Any] = {}
        for suffix, field_name in _LOADING_VARIABLES.items():
            raw = os.getenv(f"{prefix}_{suffix}")
            if raw is None or raw == "":
                continue
            if field_name in _BOOLEAN_FIELDS:
                values[field_name] = raw.strip().lower() in _TRUE_VALUES
            else:
                values[field_name] = raw.strip()
        return LoadingConfig(**values)


def load_config(env_file: Optional[str] = None, **overrides) -> AppConfig:
    """
    Load configuration from the environment and apply explicit overrides
    (CLI options, for instance) on top.
    """
    config = ConfigLoader(env_file).load_configuration()
    if overrides:
        config = config.with_overrides(**overrides)
    return config
