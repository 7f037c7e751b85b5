"""Configuration loader with hierarchical merge and validation."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from orchid_modules.config.errors import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)
from orchid_modules.config.models import AppSettings
from orchid_modules.config.placeholders import resolve_placeholders

DEFAULT_CONFIG_DIR = Path("config")
DEFAULT_BASE_FILE = "appsettings.json"
ENV_VAR_NAME = "ORCHID_ENV"
DEFAULT_ENV = "development"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries. Override values take precedence.

    Returns a new dictionary; neither input is mutated.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any]:
    """Load and parse a JSON configuration file.

    Raises:
        ConfigFileNotFoundError: If the file does not exist.
    """
    if not path.exists():
        raise ConfigFileNotFoundError(str(path))

    with path.open(encoding="utf-8") as f:
        return json.load(f)


def settings_from_mapping(
    data: Mapping[str, Any],
    *,
    strict_placeholders: bool = True,
) -> AppSettings:
    """Resolve placeholders in an in-memory document and validate it."""
    resolved = resolve_placeholders(dict(data), strict=strict_placeholders)
    try:
        return AppSettings.model_validate(resolved)
    except ValidationError as e:
        errors = [
            {"loc": " -> ".join(str(loc) for loc in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ConfigValidationError(errors) from e


def load_config(
    *,
    config_dir: Path | str | None = None,
    env: str | None = None,
    strict_placeholders: bool = True,
) -> AppSettings:
    """Load runtime configuration with hierarchical merging.

    Sources, later ones override earlier ones:
    1. config/appsettings.json (base configuration)
    2. config/appsettings.<environment>.json (environment-specific overrides)
    3. Environment variable placeholder resolution

    Args:
        config_dir: Directory containing configuration files. Defaults to "config".
        env: Environment name. Defaults to ORCHID_ENV or "development".
        strict_placeholders: If True, raise error for unresolved placeholders.

    Raises:
        ConfigFileNotFoundError: If base configuration file is not found.
        ConfigValidationError: If configuration validation fails.
        PlaceholderResolutionError: If strict_placeholders=True and a placeholder
            cannot be resolved.
    """
    config_dir = DEFAULT_CONFIG_DIR if config_dir is None else Path(config_dir)

    if env is None:
        env = os.environ.get(ENV_VAR_NAME, DEFAULT_ENV)

    config = load_json_file(config_dir / DEFAULT_BASE_FILE)

    env_path = config_dir / f"appsettings.{env}.json"
    if env_path.exists():
        config = deep_merge(config, load_json_file(env_path))

    return settings_from_mapping(config, strict_placeholders=strict_placeholders)
