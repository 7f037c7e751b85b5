"""Runtime primitives: handlers, dispatch, cleanup and lifecycle."""

from orchid_modules.errors import (
    CleanupError,
    HandlerError,
    InvalidStateError,
    LoadError,
    MissingDependencyError,
    OrchidModulesError,
    StartupError,
)
from orchid_modules.runtime.dispatcher import Binding, Dispatcher
from orchid_modules.runtime.disposer import DisposalToken, DisposerBag
from orchid_modules.runtime.handlers import (
    NO_BIND,
    VETO,
    BindResult,
    Cleanup,
    Handler,
    HandlerCallback,
    HandlerTable,
    NoBind,
    Veto,
    coerce_bind_result,
)
from orchid_modules.runtime.runtime import ModuleRuntime, RuntimeState, RuntimeStatus
from orchid_modules.runtime.signal import SignalState, StartSignal
from orchid_modules.runtime.tree import (
    LoadableTree,
    ModuleLoader,
    ModuleRef,
    Node,
    NodeKind,
    NodeTree,
    PackageTree,
    ResourceTree,
    import_module_resource,
    load_node,
)

__all__ = [
    "NO_BIND",
    "VETO",
    "BindResult",
    "Binding",
    "Cleanup",
    "CleanupError",
    "Dispatcher",
    "DisposalToken",
    "DisposerBag",
    "Handler",
    "HandlerCallback",
    "HandlerError",
    "HandlerTable",
    "InvalidStateError",
    "LoadError",
    "LoadableTree",
    "MissingDependencyError",
    "ModuleLoader",
    "ModuleRef",
    "ModuleRuntime",
    "NoBind",
    "Node",
    "NodeKind",
    "NodeTree",
    "OrchidModulesError",
    "PackageTree",
    "ResourceTree",
    "RuntimeState",
    "RuntimeStatus",
    "SignalState",
    "StartSignal",
    "StartupError",
    "Veto",
    "coerce_bind_result",
    "import_module_resource",
    "load_node",
]
