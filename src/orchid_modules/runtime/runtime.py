"""Module runtime: binds discovered modules to pattern handlers and owns their cleanup."""

from __future__ import annotations

import atexit
import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from types import TracebackType
from typing import TYPE_CHECKING, Any

from orchid_modules.errors import CleanupError, HandlerError, InvalidStateError, LoadError
from orchid_modules.observability._observable import ObservableMixin
from orchid_modules.runtime.dispatcher import Dispatcher
from orchid_modules.runtime.disposer import DisposerBag
from orchid_modules.runtime.handlers import HandlerCallback, HandlerTable, Priority
from orchid_modules.runtime.signal import StartSignal
from orchid_modules.runtime.tree import (
    LoadableTree,
    ModuleLoader,
    ModuleRef,
    NodeTree,
    PackageTree,
    ResourceTree,
)

if TYPE_CHECKING:
    from orchid_modules.config.models import AppSettings
    from orchid_modules.observability.metrics import MetricsRecorder

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Any, Exception], Any]
ShutdownHook = Callable[[Callable[[], Any]], Any]


class RuntimeState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class RuntimeStatus:
    """Point-in-time view of a runtime."""

    name: str
    state: RuntimeState
    handlers: int
    bindings_total: int
    pending_cleanups: int
    started: bool

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "state": self.state.value,
            "handlers": self.handlers,
            "bindings_total": self.bindings_total,
            "pending_cleanups": self.pending_cleanups,
            "started": self.started,
        }


class ModuleRuntime(ObservableMixin):
    """Discovers modules, binds each to at most one handler and tracks cleanups.

    A runtime is used once: it accepts handlers while idle, starts once, and
    once stopped every mutating call raises :class:`InvalidStateError`.
    Build a new runtime instead of restarting an old one.

    Example usage::

        runtime = ModuleRuntime(NodeTree())

        @runtime.handler(r"Service$", priority=10)
        def bind_service(node, service):
            runtime.on_start.after(service.start)
            return service.stop

        runtime.add_descendants(server_folder)
        runtime.start()
        ...
        runtime.stop()

    Handler callbacks receive ``(resource, value)`` and return a cleanup
    callable, ``False`` to veto, ``None`` to bind without cleanup, or one of
    the explicit :data:`~orchid_modules.runtime.handlers.BindResult` values.
    """

    def __init__(
        self,
        tree: ResourceTree | None = None,
        loader: ModuleLoader | None = None,
        *,
        eager_load: bool = False,
        name: str = "runtime",
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._tree: ResourceTree = NodeTree() if tree is None else tree
        self._resource_name = name
        self._metrics = metrics
        self._lock = threading.RLock()
        self._state = RuntimeState.IDLE
        self._handlers = HandlerTable()
        self._disposer = DisposerBag()
        self._on_start = StartSignal()
        self._dispatcher = Dispatcher(
            self._handlers,
            self._tree,
            self._resolve_loader(loader),
            eager_load=eager_load,
        )
        self._packages: tuple[str, ...] = ()
        self._bindings_total = 0
        self._exit_hooked = False

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        *,
        tree: ResourceTree | None = None,
        loader: ModuleLoader | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> ModuleRuntime:
        """Build a runtime from typed appsettings.

        Without an explicit tree the runtime discovers importable packages
        (``runtime.packages``) through :class:`PackageTree`.
        """
        if metrics is None and settings.metrics.enabled:
            from orchid_modules.observability.metrics import PrometheusMetricsRecorder

            metrics = PrometheusMetricsRecorder(prefix=settings.metrics.prefix)

        runtime = cls(
            PackageTree() if tree is None else tree,
            loader,
            eager_load=settings.runtime.eager_load,
            name=settings.service.name,
            metrics=metrics,
        )
        runtime._packages = tuple(settings.runtime.packages)
        if settings.runtime.stop_on_exit:
            runtime.stop_on_exit()
        return runtime

    def _resolve_loader(self, loader: ModuleLoader | None) -> ModuleLoader:
        if loader is not None:
            return loader
        if isinstance(self._tree, LoadableTree):
            return self._tree.load
        raise TypeError("a module loader is required for trees without a load() method")

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is RuntimeState.RUNNING

    @property
    def on_start(self) -> StartSignal:
        """One-shot signal resolved by :meth:`start`, rejected by an early :meth:`stop`."""
        return self._on_start

    @property
    def handlers(self) -> HandlerTable:
        return self._handlers

    def status(self) -> RuntimeStatus:
        with self._lock:
            return RuntimeStatus(
                name=self._resource_name,
                state=self._state,
                handlers=len(self._handlers),
                bindings_total=self._bindings_total,
                pending_cleanups=self._disposer.pending_actions,
                started=self._on_start.resolved,
            )

    def handle(
        self,
        pattern: str | re.Pattern[str],
        callback: HandlerCallback | None = None,
        priority: Priority | None = None,
    ) -> Callable[[], None]:
        """Register a handler for module paths matching ``pattern``.

        Only one handler binds a module: the first, in priority order, whose
        pattern matches and which does not veto. Handlers may not be added
        or removed once the runtime has started.

        Returns a function removing the handler again; calling it twice is a
        no-op.
        """
        with self._lock:
            self._ensure_not_stopped()
            remove = self._handlers.register(pattern, callback, priority)

        def remove_handler() -> None:
            with self._lock:
                remove()

        return remove_handler

    def handler(
        self,
        pattern: str | re.Pattern[str],
        *,
        priority: Priority | None = None,
    ) -> Callable[[HandlerCallback], HandlerCallback]:
        """Decorator form of :meth:`handle`."""

        def decorator(callback: HandlerCallback) -> HandlerCallback:
            self.handle(pattern, callback, priority)
            return callback

        return decorator

    def add(self, resource: Any) -> Callable[[], None] | None:
        """Offer one resource to the handlers.

        When the binding handler returns a cleanup, it runs on :meth:`stop`,
        or earlier when the resource leaves the tree. The returned function
        runs it right away instead.

        Raises:
            InvalidStateError: The runtime is stopped.
            LoadError: The module could not be loaded.
            HandlerError: The binding callback raised.
        """
        with self._lock:
            self._ensure_not_stopped()
            return self._add(resource)

    def add_descendants(
        self,
        root: Any,
        *,
        on_error: ErrorCallback | None = None,
    ) -> Callable[[], None]:
        """Offer every current and future descendant of ``root`` to the handlers.

        A module that fails to load or bind does not stop its siblings: the
        error goes to ``on_error(resource, exc)``, or to the log when no
        callback is given.

        The returned function stops watching for new descendants. Cleanups
        already registered stay in place until removal or :meth:`stop`.
        """
        with self._lock:
            self._ensure_not_stopped()

            def on_added(resource: Any) -> None:
                with self._lock:
                    if self._state is RuntimeState.STOPPED:
                        return
                    try:
                        self._add(resource)
                    except (LoadError, HandlerError) as exc:
                        if on_error is None:
                            logger.exception("Discovery failed for module %s", exc.path)
                        else:
                            on_error(resource, exc)

            token = self._disposer.connect(
                lambda callback: self._tree.observe_descendants(root, callback),
                on_added,
            )

        def stop_observing() -> None:
            self._disposer.remove(token, run=True)

        return stop_observing

    def discover_packages(self) -> list[Callable[[], None]]:
        """Call :meth:`add_descendants` for every package listed in ``runtime.packages``."""
        if not isinstance(self._tree, PackageTree):
            raise TypeError("package discovery requires a PackageTree")
        return [
            self.add_descendants(ModuleRef(package, is_package=True))
            for package in self._packages
        ]

    def start(self) -> None:
        """Freeze the handlers and resolve :attr:`on_start`. Call it once.

        Modules may still be added after the runtime has started.
        """
        with self._lock:
            if self._state is RuntimeState.STOPPED:
                raise InvalidStateError("The runtime is destroyed.")
            if self._state is RuntimeState.RUNNING:
                raise InvalidStateError("The runtime is already running.")

            with self._observed("start"):
                self._handlers.freeze()
                self._state = RuntimeState.RUNNING
                logger.info(
                    "Module runtime started",
                    extra={"runtime": self._resource_name, "handlers": len(self._handlers)},
                )
                self._on_start.resolve()

    def stop(self) -> list[CleanupError]:
        """Run every pending cleanup once and make the runtime immutable.

        Cleanups run in registration order; a failing cleanup is logged and
        returned, and does not keep the others from running. Stopping an
        already stopped runtime does nothing.
        """
        with self._lock:
            if self._state is RuntimeState.STOPPED:
                return []

            with self._observed("stop"):
                was_running = self._state is RuntimeState.RUNNING
                self._state = RuntimeState.STOPPED
                self._handlers.freeze()
                self._on_start.reject("The runtime was stopped before it started.")
                errors = self._disposer.flush_all()
                for error in errors:
                    self._metrics_recorder().observe_error(
                        resource=self._resource_name,
                        operation="cleanup",
                        error_type=type(error.cause).__name__,
                    )
                self._observe_pending(0)

            logger.info(
                "Module runtime stopped",
                extra={
                    "runtime": self._resource_name,
                    "was_running": was_running,
                    "cleanup_errors": len(errors),
                },
            )
            return errors

    def destroy(self) -> None:
        """Alias of :meth:`stop`."""
        self.stop()

    def stop_on_exit(self, hook: ShutdownHook | None = None) -> None:
        """Register :meth:`stop` with the host's shutdown hook (``atexit`` by default)."""
        with self._lock:
            self._ensure_not_stopped()
            if self._exit_hooked:
                return
            (atexit.register if hook is None else hook)(self.stop)
            self._exit_hooked = True

    def __enter__(self) -> ModuleRuntime:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.destroy()

    def _ensure_not_stopped(self) -> None:
        if self._state is RuntimeState.STOPPED:
            raise InvalidStateError("The runtime is destroyed.")

    def _add(self, resource: Any) -> Callable[[], None] | None:
        if not self._tree.is_module(resource):
            return None

        watch = _RemovalWatch()
        disconnect = self._tree.on_removed(resource, watch)
        try:
            with self._observed("add"):
                binding = self._dispatcher.bind(resource)
        except Exception:
            disconnect()
            raise

        if binding is not None:
            self._bindings_total += 1
        if binding is None or binding.cleanup is None:
            disconnect()
            return None
        return self._track(binding.path, binding.cleanup, watch, disconnect)

    def _track(
        self,
        path: str,
        cleanup: Callable[[], Any],
        watch: _RemovalWatch,
        disconnect: Callable[[], None],
    ) -> Callable[[], None]:
        disposer = self._disposer
        cleanup_token = disposer.add(cleanup, label=path)
        removal_token = disposer.add(disconnect, label=f"disconnect {path}", subscription=True)

        def release() -> None:
            disposer.remove(removal_token, run=True)
            if disposer.remove(cleanup_token):
                self._observe_pending(disposer.pending_actions)
                cleanup()

        def on_removed() -> None:
            try:
                release()
            except Exception as exc:
                logger.exception("Cleanup failed for removed module %s", path)
                self._metrics_recorder().observe_error(
                    resource=self._resource_name,
                    operation="cleanup",
                    error_type=type(exc).__name__,
                )

        self._observe_pending(disposer.pending_actions)
        if not watch.attach(on_removed):
            # left the tree while its handler was binding it
            on_removed()
        return release


class _RemovalWatch:
    """Removal listener connected before a resource is dispatched.

    Removals seen before :meth:`attach` are remembered; later ones are
    forwarded to the attached handler.
    """

    __slots__ = ("_fired", "_handler", "_lock")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired = False
        self._handler: Callable[[], None] | None = None

    def __call__(self) -> None:
        with self._lock:
            self._fired = True
            handler = self._handler
        if handler is not None:
            handler()

    def attach(self, handler: Callable[[], None]) -> bool:
        """Forward later removals to ``handler``. False if one already happened."""
        with self._lock:
            if self._fired:
                return False
            self._handler = handler
            return True
