"""Observability helpers: structured logging and runtime metrics."""

from orchid_modules.observability.logging import (
    BindingContext,
    binding_scope,
    bootstrap_logging,
    bootstrap_logging_from_app_settings,
    get_binding_context,
)
from orchid_modules.observability.metrics import (
    MetricsRecorder,
    NoopMetricsRecorder,
    PrometheusMetricsRecorder,
    configure_prometheus_metrics,
    get_metrics_recorder,
    render_prometheus_metrics,
    reset_metrics_recorder,
    set_metrics_recorder,
)

__all__ = [
    "BindingContext",
    "MetricsRecorder",
    "NoopMetricsRecorder",
    "PrometheusMetricsRecorder",
    "binding_scope",
    "bootstrap_logging",
    "bootstrap_logging_from_app_settings",
    "configure_prometheus_metrics",
    "get_binding_context",
    "get_metrics_recorder",
    "render_prometheus_metrics",
    "reset_metrics_recorder",
    "set_metrics_recorder",
]
