"""Typed configuration models with Pydantic validation."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MODULE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class ServiceSettings(BaseModel):
    """Identification of the host application embedding the runtime."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Service name")
    version: str = Field(default="0.0.0", min_length=1, description="Service version")


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    format: Literal["json", "text"] = Field(default="json", description="Log output format")
    sampling: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Optional sampling ratio for low-severity logs",
    )


class MetricsSettings(BaseModel):
    """Prometheus metrics configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Record runtime metrics with Prometheus")
    prefix: str = Field(
        default="orchid_modules",
        min_length=1,
        description="Metric name prefix",
    )


class RuntimeSettings(BaseModel):
    """Module runtime behaviour."""

    model_config = ConfigDict(frozen=True)

    eager_load: bool = Field(
        default=False,
        description=(
            "Load every discovered module before matching handlers. "
            "By default a module is loaded only once a handler pattern matches it."
        ),
    )
    stop_on_exit: bool = Field(
        default=False,
        description="Register Runtime.stop with the interpreter exit hook",
    )
    packages: list[str] = Field(
        default_factory=list,
        description="Importable packages whose submodules are discovered at bootstrap",
    )

    @field_validator("packages")
    @classmethod
    def _validate_packages(cls, value: list[str]) -> list[str]:
        invalid = [name for name in value if not _MODULE_NAME.match(name)]
        if invalid:
            raise ValueError(f"invalid package names: {', '.join(invalid)}")
        return value


class AppSettings(BaseModel):
    """Root settings document (``appsettings.json``)."""

    model_config = ConfigDict(frozen=True)

    service: ServiceSettings
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
