"""One-shot start notification."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Generator
from enum import StrEnum
from typing import Any

from orchid_modules.errors import InvalidStateError, StartupError

logger = logging.getLogger(__name__)


class SignalState(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class StartSignal:
    """Settles exactly once: resolved when the runtime starts, rejected when it
    stops without having started.

    The outcome is remembered, so late subscribers see it immediately.
    Three ways to consume it::

        runtime.on_start.after(service.start)  # chain a callback
        await runtime.on_start                 # from asyncio code
        runtime.on_start.wait(timeout=5.0)     # from a plain thread

    Awaiting or waiting on a rejected signal raises :class:`InvalidStateError`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._state = SignalState.PENDING
        self._reason = ""
        self._callbacks: list[Callable[[], Any]] = []
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def state(self) -> SignalState:
        return self._state

    @property
    def resolved(self) -> bool:
        return self._state is SignalState.RESOLVED

    @property
    def rejected(self) -> bool:
        return self._state is SignalState.REJECTED

    @property
    def done(self) -> bool:
        return self._state is not SignalState.PENDING

    def after(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once the signal resolves, or now if it already has."""
        with self._lock:
            if self._state is SignalState.PENDING:
                self._callbacks.append(callback)
                return
            if self._state is SignalState.REJECTED:
                raise self._rejection()
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until settled. Returns False if ``timeout`` elapsed first."""
        if not self._settled.wait(timeout):
            return False
        if self._state is SignalState.REJECTED:
            raise self._rejection()
        return True

    def __await__(self) -> Generator[Any, None, None]:
        return self._wait_async().__await__()

    async def _wait_async(self) -> None:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._state is SignalState.RESOLVED:
                return
            if self._state is SignalState.REJECTED:
                raise self._rejection()
            future: asyncio.Future[None] = loop.create_future()
            self._waiters.append((loop, future))
        await future

    def resolve(self) -> bool:
        """Settle successfully and run queued callbacks in registration order.

        Every callback runs even if an earlier one fails; failures are raised
        together as :class:`StartupError` afterwards. Returns False when the
        signal had already settled.
        """
        with self._lock:
            if self._state is not SignalState.PENDING:
                return False
            self._state = SignalState.RESOLVED
            callbacks, self._callbacks = self._callbacks, []
            waiters, self._waiters = self._waiters, []
            self._settled.set()

        self._wake(waiters)

        errors: list[Exception] = []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                logger.exception("Start callback failed")
                errors.append(exc)
        if errors:
            raise StartupError(errors)
        return True

    def reject(self, reason: str) -> bool:
        """Settle as failed; queued callbacks are dropped."""
        with self._lock:
            if self._state is not SignalState.PENDING:
                return False
            self._state = SignalState.REJECTED
            self._reason = reason
            self._callbacks.clear()
            waiters, self._waiters = self._waiters, []
            self._settled.set()

        self._wake(waiters)
        return True

    def _rejection(self) -> InvalidStateError:
        return InvalidStateError(self._reason)

    def _wake(self, waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]]) -> None:
        error = self._rejection() if self._state is SignalState.REJECTED else None
        for loop, future in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_settle_future, future, error)


def _settle_future(future: asyncio.Future[None], error: Exception | None) -> None:
    if future.done():
        return
    if error is None:
        future.set_result(None)
    else:
        future.set_exception(error)
