"""Observability mixin shared by runtime components."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from time import perf_counter
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orchid_modules.observability.metrics import MetricsRecorder


class ObservableMixin:
    """Adds timed operation recording on top of the metrics recorder.

    Subclasses set ``_resource_name`` and may provide ``_metrics`` (instance
    attribute) to override the process-level recorder.

    Example::

        with self._observed("add"):
            self._dispatch(resource)
    """

    _resource_name: str
    _metrics: MetricsRecorder | None

    def _metrics_recorder(self) -> MetricsRecorder:
        from orchid_modules.observability.metrics import get_metrics_recorder

        return get_metrics_recorder() if self._metrics is None else self._metrics

    @contextmanager
    def _observed(self, operation: str) -> Iterator[None]:
        """Record latency for the wrapped block, and its error type when it raises."""
        started = perf_counter()
        try:
            yield
        except Exception as exc:
            self._observe_error(operation, started, exc)
            raise
        self._observe_operation(operation, started, success=True)

    def _observe_operation(self, operation: str, started: float, *, success: bool) -> None:
        self._metrics_recorder().observe_operation(
            resource=self._resource_name,
            operation=operation,
            duration_seconds=perf_counter() - started,
            success=success,
        )

    def _observe_error(self, operation: str, started: float, exc: Exception) -> None:
        self._observe_operation(operation, started, success=False)
        self._metrics_recorder().observe_error(
            resource=self._resource_name,
            operation=operation,
            error_type=type(exc).__name__,
        )

    def _observe_pending(self, count: int) -> None:
        self._metrics_recorder().observe_pending_cleanups(
            runtime=self._resource_name,
            count=count,
        )
