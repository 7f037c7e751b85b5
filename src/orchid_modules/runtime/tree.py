"""Resource trees the runtime discovers modules from.

The runtime only relies on the :class:`ResourceTree` protocol. Two
implementations ship with the package:

* :class:`NodeTree` over an in-memory tree of :class:`Node` objects, whose
  membership can change at any time;
* :class:`PackageTree` over an importable Python package, where every
  submodule found by :mod:`pkgutil` is a resource.
"""

from __future__ import annotations

import importlib
import pkgutil
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

Unsubscribe = Callable[[], None]
ModuleLoader = Callable[[Any], Any]


@runtime_checkable
class ResourceTree(Protocol):
    """Provider of resources, their paths and their membership events."""

    def is_module(self, resource: Any) -> bool:
        """Whether ``resource`` is a loadable module."""
        ...

    def full_path(self, resource: Any) -> str:
        """Stable hierarchical path handler patterns are matched against."""
        ...

    def on_removed(self, resource: Any, callback: Callable[[], None]) -> Unsubscribe:
        """Call ``callback`` once ``resource`` leaves the tree."""
        ...

    def observe_descendants(self, root: Any, on_added: Callable[[Any], None]) -> Unsubscribe:
        """Call ``on_added`` for every current and future descendant of ``root``."""
        ...


@runtime_checkable
class LoadableTree(ResourceTree, Protocol):
    """A tree that also knows how to load its modules."""

    def load(self, resource: Any) -> Any:
        ...


def _noop() -> None:
    return None


class Signal:
    """Minimal synchronous event: listeners run in connection order."""

    __slots__ = ("_listeners", "_lock")

    def __init__(self) -> None:
        self._listeners: list[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._listeners)

    def connect(self, listener: Callable[..., Any]) -> Unsubscribe:
        with self._lock:
            self._listeners.append(listener)

        def disconnect() -> None:
            with self._lock:
                for index, existing in enumerate(self._listeners):
                    if existing is listener:
                        del self._listeners[index]
                        return

        return disconnect

    def fire(self, *args: Any) -> None:
        with self._lock:
            listeners = tuple(self._listeners)
        for listener in listeners:
            listener(*args)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()


class NodeKind(StrEnum):
    FOLDER = "folder"
    MODULE = "module"


_MISSING = object()


class Node:
    """A named node in an in-memory resource tree.

    Module nodes carry either a ``value`` or a zero-argument ``factory``
    producing it on first load. Moving a node to another parent counts as a
    removal followed by an addition.
    """

    def __init__(
        self,
        name: str,
        *,
        kind: NodeKind = NodeKind.FOLDER,
        value: Any = _MISSING,
        factory: Callable[[], Any] | None = None,
        children: Iterable[Node] = (),
    ) -> None:
        if not name or "." in name:
            raise ValueError(f"invalid node name: {name!r}")
        self.name = name
        self.kind = kind
        self.parent: Node | None = None
        self.descendant_added = Signal()
        self.removed = Signal()
        self._children: list[Node] = []
        self._value = value
        self._factory = factory
        self._load_lock = threading.Lock()
        for child in children:
            self.add_child(child)

    @classmethod
    def module(cls, name: str, value: Any = _MISSING, *, factory: Callable[[], Any] | None = None) -> Node:
        return cls(name, kind=NodeKind.MODULE, value=value, factory=factory)

    @classmethod
    def folder(cls, name: str, *children: Node) -> Node:
        return cls(name, children=children)

    def __repr__(self) -> str:
        return f"Node({self.full_name!r}, kind={self.kind.value!r})"

    @property
    def children(self) -> tuple[Node, ...]:
        return tuple(self._children)

    @property
    def full_name(self) -> str:
        names: list[str] = []
        node: Node | None = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return ".".join(reversed(names))

    def descendants(self) -> Iterator[Node]:
        """Depth-first, parents before their children."""
        for child in tuple(self._children):
            yield child
            yield from child.descendants()

    def is_descendant_of(self, ancestor: Node) -> bool:
        node = self.parent
        while node is not None:
            if node is ancestor:
                return True
            node = node.parent
        return False

    def find_first_child(self, name: str) -> Node | None:
        return next((child for child in self._children if child.name == name), None)

    def add_child(self, child: Node) -> Node:
        """Attach ``child`` (and its subtree) below this node."""
        if child is self or self.is_descendant_of(child):
            raise ValueError("a node cannot be attached below itself")
        if child.parent is not None:
            child.remove()

        child.parent = self
        self._children.append(child)

        for node in (child, *child.descendants()):
            ancestor = node.parent
            while ancestor is not None:
                ancestor.descendant_added.fire(node)
                ancestor = ancestor.parent
        return child

    def remove(self) -> None:
        """Detach this node from its parent; the whole subtree counts as removed."""
        parent = self.parent
        if parent is None:
            return
        parent._children.remove(self)
        self.parent = None
        for node in (*self.descendants(), self):
            node.removed.fire()

    def destroy(self) -> None:
        """Remove the subtree and drop every listener attached to it."""
        self.remove()
        for node in (self, *self.descendants()):
            node.descendant_added.clear()
            node.removed.clear()

    def load(self) -> Any:
        """Return the module value, building it from ``factory`` once."""
        if self.kind is not NodeKind.MODULE:
            raise TypeError(f"{self.full_name} is not a module")
        with self._load_lock:
            if self._value is _MISSING:
                if self._factory is None:
                    raise LookupError(f"module {self.full_name} has no value")
                self._value = self._factory()
            return self._value


class NodeTree:
    """:class:`ResourceTree` over :class:`Node` objects."""

    def is_module(self, resource: Any) -> bool:
        return isinstance(resource, Node) and resource.kind is NodeKind.MODULE

    def full_path(self, resource: Node) -> str:
        return resource.full_name

    def on_removed(self, resource: Node, callback: Callable[[], None]) -> Unsubscribe:
        return resource.removed.connect(callback)

    def observe_descendants(self, root: Node, on_added: Callable[[Any], None]) -> Unsubscribe:
        disconnect = root.descendant_added.connect(on_added)
        for node in list(root.descendants()):
            # an earlier callback may have detached it
            if node.is_descendant_of(root):
                on_added(node)
        return disconnect

    def load(self, resource: Node) -> Any:
        return resource.load()


def load_node(resource: Node) -> Any:
    """Module loader for :class:`NodeTree` resources."""
    return resource.load()


@dataclass(frozen=True, slots=True)
class ModuleRef:
    """An importable module, identified by its dotted name."""

    name: str
    is_package: bool = False


class PackageTree:
    """:class:`ResourceTree` over the submodules of importable packages.

    Imported modules never leave the tree, so removal callbacks never fire.
    The descendant stream is the snapshot found by :func:`pkgutil.walk_packages`.
    """

    def __init__(self, *, include_packages: bool = True) -> None:
        self._include_packages = include_packages

    def is_module(self, resource: Any) -> bool:
        return isinstance(resource, ModuleRef) and (
            self._include_packages or not resource.is_package
        )

    def full_path(self, resource: ModuleRef) -> str:
        return resource.name

    def on_removed(self, resource: ModuleRef, callback: Callable[[], None]) -> Unsubscribe:
        del resource, callback
        return _noop

    def observe_descendants(
        self,
        root: ModuleRef | str,
        on_added: Callable[[Any], None],
    ) -> Unsubscribe:
        name = root.name if isinstance(root, ModuleRef) else root
        package = importlib.import_module(name)
        search_path = getattr(package, "__path__", None)
        if search_path is None:
            return _noop

        for info in pkgutil.walk_packages(search_path, prefix=f"{package.__name__}."):
            on_added(ModuleRef(info.name, is_package=info.ispkg))
        return _noop

    def load(self, resource: ModuleRef) -> Any:
        return importlib.import_module(resource.name)


def import_module_resource(resource: ModuleRef) -> Any:
    """Module loader for :class:`PackageTree` resources."""
    return importlib.import_module(resource.name)
