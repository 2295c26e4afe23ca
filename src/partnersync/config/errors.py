"""Configuration errors raised while reading the environment."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration value cannot be used."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required environment variables are absent or blank."""


class InvalidConfigurationError(ConfigurationError):
    """Raised when an environment variable is set but cannot be parsed."""

    def __init__(self, name: str, value: str, expected: str) -> None:
        super().__init__(f"Invalid value for {name}: {value!r} (expected {expected})")
        self.name = name
        self.value = value
