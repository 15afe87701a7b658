"""Observability utilities for structured logging, metrics, and tracing."""

from .logging import bind_global_context, configure_logging
from .metrics import metrics_registry, record_command, record_task_outcome
from .tracing import configure_tracer, get_tracer

__all__ = [
    "bind_global_context",
    "configure_logging",
    "configure_tracer",
    "get_tracer",
    "metrics_registry",
    "record_command",
    "record_task_outcome",
]
