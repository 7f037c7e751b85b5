"""Configuration loading and validation module."""

from orchid_modules.config.errors import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    PlaceholderResolutionError,
)
from orchid_modules.config.loader import deep_merge, load_config, settings_from_mapping
from orchid_modules.config.models import (
    AppSettings,
    LoggingSettings,
    MetricsSettings,
    RuntimeSettings,
    ServiceSettings,
)

__all__ = [
    "AppSettings",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    "LoggingSettings",
    "MetricsSettings",
    "PlaceholderResolutionError",
    "RuntimeSettings",
    "ServiceSettings",
    "deep_merge",
    "load_config",
    "settings_from_mapping",
]
