"""Dynamic module-binding runtime with priority handlers and tracked cleanup."""

from orchid_modules.config import AppSettings, load_config
from orchid_modules.errors import (
    CleanupError,
    HandlerError,
    InvalidStateError,
    LoadError,
    MissingDependencyError,
    OrchidModulesError,
    StartupError,
)
from orchid_modules.observability import (
    bootstrap_logging,
    bootstrap_logging_from_app_settings,
    configure_prometheus_metrics,
)
from orchid_modules.runtime import (
    NO_BIND,
    VETO,
    Cleanup,
    ModuleRef,
    ModuleRuntime,
    NoBind,
    Node,
    NodeTree,
    PackageTree,
    ResourceTree,
    RuntimeState,
    StartSignal,
    Veto,
)

__version__ = "0.1.0"

__all__ = [
    "NO_BIND",
    "VETO",
    "AppSettings",
    "Cleanup",
    "CleanupError",
    "HandlerError",
    "InvalidStateError",
    "LoadError",
    "MissingDependencyError",
    "ModuleRef",
    "ModuleRuntime",
    "NoBind",
    "Node",
    "NodeTree",
    "OrchidModulesError",
    "PackageTree",
    "ResourceTree",
    "RuntimeState",
    "StartSignal",
    "Veto",
    "__version__",
    "bootstrap_logging",
    "bootstrap_logging_from_app_settings",
    "configure_prometheus_metrics",
    "load_config",
]
