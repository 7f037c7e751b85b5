"""Scoped cleanup registry used by the runtime."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from orchid_modules.errors import CleanupError

logger = logging.getLogger(__name__)

Disposer = Callable[[], Any]
Subscribe = Callable[[Callable[..., Any]], Disposer]


@dataclass(eq=False, slots=True)
class DisposalToken:
    """Handle returned by :meth:`DisposerBag.add`; compares by identity.

    ``subscription`` marks entries that only disconnect an event listener.
    """

    label: str
    subscription: bool = False


def _describe(action: Disposer) -> str:
    return getattr(action, "__qualname__", None) or type(action).__name__


class DisposerBag:
    """Collects cleanup actions and runs each of them at most once.

    Actions run in registration order on :meth:`flush_all`. A failing action
    is logged and reported, and never prevents the remaining ones from
    running. The bag can be reused after a flush.

    Example usage::

        bag = DisposerBag()
        token = bag.add(connection.close)
        bag.connect(node.removed.connect, on_removed)

        bag.remove(token, run=True)  # close early
        errors = bag.flush_all()     # everything else
    """

    __slots__ = ("_entries", "_lock")

    def __init__(self) -> None:
        self._entries: dict[DisposalToken, Disposer] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._entries

    @property
    def pending_actions(self) -> int:
        """Number of held entries that are not event subscriptions."""
        with self._lock:
            return sum(1 for token in self._entries if not token.subscription)

    def add(
        self,
        action: Disposer,
        *,
        label: str | None = None,
        subscription: bool = False,
    ) -> DisposalToken:
        """Register ``action`` to run on flush."""
        if not callable(action):
            raise TypeError("cleanup action must be callable")
        token = DisposalToken(label or _describe(action), subscription=subscription)
        with self._lock:
            self._entries[token] = action
        return token

    def connect(self, subscribe: Subscribe, handler: Callable[..., Any]) -> DisposalToken:
        """Subscribe ``handler`` to an event and track the unsubscribe action.

        ``subscribe(handler)`` must return the function that disconnects it.
        """
        unsubscribe = subscribe(handler)
        return self.add(
            unsubscribe,
            label=f"disconnect {_describe(handler)}",
            subscription=True,
        )

    def remove(self, token: DisposalToken, *, run: bool = False) -> bool:
        """Forget ``token``; with ``run=True`` its action runs now.

        Returns False when the token was already removed or flushed. Errors
        raised by the action propagate to the caller.
        """
        with self._lock:
            action = self._entries.pop(token, None)
        if action is None:
            return False
        if run:
            action()
        return True

    def flush_all(self) -> list[CleanupError]:
        """Run every pending action once, in registration order.

        Actions registered while flushing run in the same flush.
        """
        errors: list[CleanupError] = []
        while True:
            with self._lock:
                batch = list(self._entries.items())
                self._entries.clear()
            if not batch:
                return errors
            for token, action in batch:
                try:
                    action()
                except Exception as exc:
                    logger.exception("Cleanup %s failed", token.label)
                    errors.append(CleanupError(exc, action))
