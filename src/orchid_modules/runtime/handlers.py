"""Pattern handlers and the priority-ordered handler table."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Final, TypeAlias

from orchid_modules.errors import InvalidStateError


@dataclass(frozen=True, slots=True)
class NoBind:
    """The handler bound the module and has nothing to clean up."""


@dataclass(frozen=True, slots=True)
class Veto:
    """The handler matched but refuses to bind; the scan continues."""


@dataclass(frozen=True, slots=True)
class Cleanup:
    """The handler bound the module; ``action`` runs when the binding ends."""

    action: Callable[[], Any]


BindResult: TypeAlias = NoBind | Veto | Cleanup

NO_BIND: Final = NoBind()
VETO: Final = Veto()

HandlerCallback = Callable[[Any, Any], Any]
"""``callback(resource, value)`` returning a :data:`BindResult`, a callable, ``False`` or ``None``."""

Priority: TypeAlias = int | float


def coerce_bind_result(result: object) -> BindResult:
    """Map a handler's return value onto :data:`BindResult`.

    Explicit results pass through. A callable becomes :class:`Cleanup`, the
    literal ``False`` becomes :class:`Veto`, and anything else binds without
    cleanup.
    """
    if isinstance(result, (NoBind, Veto, Cleanup)):
        return result
    if result is False:
        return VETO
    if callable(result):
        return Cleanup(result)
    return NO_BIND


@dataclass(eq=False, slots=True)
class Handler:
    """A registered ``(pattern, callback, priority)`` entry.

    Handlers compare by identity: two entries with the same pattern and
    priority are still distinct registrations.
    """

    pattern: re.Pattern[str]
    callback: HandlerCallback | None = None
    priority: Priority | None = None

    @property
    def source(self) -> str:
        return self.pattern.pattern

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None

    def invoke(self, resource: Any, value: Any) -> BindResult:
        if self.callback is None:
            return NO_BIND
        return coerce_bind_result(self.callback(resource, value))


def compile_pattern(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    """Compile a handler pattern, rejecting anything that is not a valid regex."""
    if isinstance(pattern, re.Pattern):
        return pattern
    if not isinstance(pattern, str):
        raise TypeError(f"handler pattern must be a string, got {type(pattern).__name__}")
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid handler pattern {pattern!r}: {exc}") from exc


class HandlerTable:
    """Handlers in evaluation order.

    Entries without a priority are appended. An entry with priority ``P`` is
    inserted before the first prioritised entry whose priority is strictly
    lower than ``P``, so higher priorities are evaluated first and equal
    priorities keep their registration order.

    The table is mutable until :meth:`freeze` is called; afterwards both
    registration and removal raise :class:`InvalidStateError`.
    """

    __slots__ = ("_frozen", "_handlers")

    def __init__(self) -> None:
        self._handlers: list[Handler] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def handlers(self) -> tuple[Handler, ...]:
        """Snapshot of the handlers in evaluation order."""
        return tuple(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[Handler]:
        return iter(tuple(self._handlers))

    def __contains__(self, handler: object) -> bool:
        return any(existing is handler for existing in self._handlers)

    def register(
        self,
        pattern: str | re.Pattern[str],
        callback: HandlerCallback | None = None,
        priority: Priority | None = None,
    ) -> Callable[[], None]:
        """Insert a handler and return a function that removes it again."""
        if self._frozen:
            raise InvalidStateError("The runtime cannot have any more handlers added.")
        if callback is not None and not callable(callback):
            raise TypeError("handler callback must be callable or None")

        handler = Handler(pattern=compile_pattern(pattern), callback=callback, priority=priority)
        self._handlers.insert(self._insertion_index(priority), handler)

        def remove_handler() -> None:
            self.remove(handler)

        return remove_handler

    def remove(self, handler: Handler) -> bool:
        """Remove ``handler`` if present. Returns whether it was removed."""
        for index, existing in enumerate(self._handlers):
            if existing is handler:
                break
        else:
            return False

        if self._frozen:
            raise InvalidStateError("Handlers cannot be removed once the runtime has started.")
        del self._handlers[index]
        return True

    def freeze(self) -> None:
        self._frozen = True

    def _insertion_index(self, priority: Priority | None) -> int:
        if priority is None:
            return len(self._handlers)
        for index, existing in enumerate(self._handlers):
            if existing.priority is not None and existing.priority < priority:
                return index
        return len(self._handlers)
