"""
Typed configuration for sqlload.
"""

from .models import (
    Environment,
    DatabaseConfig,
    LoadingConfig,
    AppConfig,
)
from .loader import ConfigLoader, load_config


__all__ = [
    "Environment",
    "DatabaseConfig",
    "LoadingConfig",
    "AppConfig",
    "ConfigLoader",
    "load_config",
]
