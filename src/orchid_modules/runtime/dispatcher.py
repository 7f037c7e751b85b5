"""Match discovered modules against the handler table and bind at most one handler."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from orchid_modules.errors import HandlerError, LoadError
from orchid_modules.observability.logging import binding_scope
from orchid_modules.runtime.handlers import BindResult, Cleanup, Handler, HandlerTable, Veto

if TYPE_CHECKING:
    from orchid_modules.runtime.tree import ModuleLoader, ResourceTree

logger = logging.getLogger(__name__)

_UNLOADED = object()


@dataclass(frozen=True, slots=True)
class Binding:
    """The handler that took ownership of a module."""

    path: str
    handler: Handler
    cleanup: Callable[[], Any] | None = None


class Dispatcher:
    """Resolves modules to their binding handler.

    Handlers are tried in table order. The first handler whose pattern
    matches the module path and whose result is not a veto binds the module
    and ends the scan. The module value is loaded at most once per
    resolution, right before the first matching callback runs, unless
    ``eager_load`` asks for it before any pattern is tested.
    """

    def __init__(
        self,
        handlers: HandlerTable,
        tree: ResourceTree,
        loader: ModuleLoader,
        *,
        eager_load: bool = False,
    ) -> None:
        self._handlers = handlers
        self._tree = tree
        self._loader = loader
        self._eager_load = eager_load

    def resolve(self, resource: Any) -> Callable[[], Any] | None:
        """Return the cleanup action of the binding handler, if it registered one."""
        binding = self.bind(resource)
        return None if binding is None else binding.cleanup

    def bind(self, resource: Any) -> Binding | None:
        """Run the match-and-bind scan for ``resource``.

        Raises:
            LoadError: The loader failed for this module.
            HandlerError: The binding callback raised.
        """
        if not self._tree.is_module(resource):
            return None

        path = self._tree.full_path(resource)
        value = self._load(resource, path) if self._eager_load else _UNLOADED

        with binding_scope(resource_path=path):
            for handler in self._handlers:
                if not handler.matches(path):
                    continue
                if value is _UNLOADED:
                    value = self._load(resource, path)

                with binding_scope(handler_pattern=handler.source):
                    result = self._invoke(handler, resource, value, path)
                    if isinstance(result, Veto):
                        logger.debug("Handler vetoed module %s", path)
                        continue
                    cleanup = result.action if isinstance(result, Cleanup) else None
                    logger.debug(
                        "Handler bound module %s",
                        path,
                        extra={"has_cleanup": cleanup is not None},
                    )
                return Binding(path=path, handler=handler, cleanup=cleanup)

            logger.debug("No handler bound module %s", path)
        return None

    def _load(self, resource: Any, path: str) -> Any:
        try:
            return self._loader(resource)
        except Exception as exc:
            raise LoadError(path, exc) from exc

    def _invoke(self, handler: Handler, resource: Any, value: Any, path: str) -> BindResult:
        try:
            return handler.invoke(resource, value)
        except Exception as exc:
            raise HandlerError(path, handler.source, exc) from exc
