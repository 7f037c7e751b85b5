"""Tests for ObservableMixin."""

from __future__ import annotations

from time import perf_counter
from typing import Any
from unittest.mock import MagicMock

import pytest

from orchid_modules.observability._observable import ObservableMixin
from orchid_modules.observability.metrics import (
    NoopMetricsRecorder,
    get_metrics_recorder,
    set_metrics_recorder,
)


class Component(ObservableMixin):
    _resource_name = "component"

    def __init__(self, *, metrics: Any = None) -> None:
        self._metrics = metrics


@pytest.fixture()
def recorder() -> MagicMock:
    return MagicMock(spec=NoopMetricsRecorder)


class TestMetricsRecorder:
    def test_returns_injected_recorder(self, recorder: MagicMock) -> None:
        assert Component(metrics=recorder)._metrics_recorder() is recorder

    def test_falls_back_to_process_recorder(self, recorder: MagicMock) -> None:
        set_metrics_recorder(recorder)

        assert Component()._metrics_recorder() is recorder

    def test_default_process_recorder_is_noop(self) -> None:
        assert isinstance(get_metrics_recorder(), NoopMetricsRecorder)


class TestObserved:
    def test_success_records_operation(self, recorder: MagicMock) -> None:
        component = Component(metrics=recorder)

        with component._observed("add"):
            pass

        kwargs = recorder.observe_operation.call_args.kwargs
        assert kwargs["resource"] == "component"
        assert kwargs["operation"] == "add"
        assert kwargs["success"] is True
        assert kwargs["duration_seconds"] >= 0
        recorder.observe_error.assert_not_called()

    def test_failure_records_error_and_reraises(self, recorder: MagicMock) -> None:
        component = Component(metrics=recorder)

        with pytest.raises(KeyError):
            with component._observed("stop"):
                raise KeyError("missing")

        assert recorder.observe_operation.call_args.kwargs["success"] is False
        recorder.observe_error.assert_called_once_with(
            resource="component", operation="stop", error_type="KeyError"
        )

    def test_observe_error_with_explicit_start(self, recorder: MagicMock) -> None:
        component = Component(metrics=recorder)

        component._observe_error("add", perf_counter(), ValueError("x"))

        recorder.observe_error.assert_called_once_with(
            resource="component", operation="add", error_type="ValueError"
        )

    def test_observe_pending(self, recorder: MagicMock) -> None:
        Component(metrics=recorder)._observe_pending(3)

        recorder.observe_pending_cleanups.assert_called_once_with(runtime="component", count=3)
