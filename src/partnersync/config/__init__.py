"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, optional_env, require_env_vars
from .errors import ConfigurationError, InvalidConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .northpass import NorthpassConfig, get_northpass_config
from .reconciliation import ReconciliationConfig, get_reconciliation_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidConfigurationError",
    "MissingConfigurationError",
    "NorthpassConfig",
    "RateLimit",
    "ReconciliationConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "get_database_config",
    "get_northpass_config",
    "get_reconciliation_config",
    "get_storage_config",
    "optional_env",
    "require_env_vars",
]
