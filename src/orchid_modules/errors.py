"""Custom exceptions for the orchid module runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class OrchidModulesError(Exception):
    """Base exception for this package."""


class MissingDependencyError(OrchidModulesError):
    """Raised when an optional dependency is required but not installed."""


class InvalidStateError(OrchidModulesError):
    """Raised when a runtime operation is not allowed in its current lifecycle state."""


class LoadError(OrchidModulesError):
    """Raised when the module loader fails for a discovered resource."""

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to load module '{path}': {cause}")


class HandlerError(OrchidModulesError):
    """Raised when a bind callback fails for a discovered resource."""

    def __init__(self, path: str, pattern: str, cause: BaseException) -> None:
        self.path = path
        self.pattern = pattern
        self.cause = cause
        super().__init__(f"Handler '{pattern}' failed for module '{path}': {cause}")


class CleanupError(OrchidModulesError):
    """Reported when a cleanup action fails while the disposer bag is flushed."""

    def __init__(self, cause: Exception, action: Callable[..., Any] | None = None) -> None:
        self.cause = cause
        self.action = action
        name = getattr(action, "__qualname__", None) or repr(action)
        super().__init__(f"Cleanup {name} failed: {type(cause).__name__}: {cause}")


class StartupError(OrchidModulesError):
    """Raised when one or more start callbacks fail while the runtime starts."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = errors
        kinds = ", ".join(type(error).__name__ for error in errors)
        super().__init__(f"Start callbacks failed: {kinds}")
