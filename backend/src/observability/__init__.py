"""Observability module for the retention engine.

Provides structured logging, task id correlation and Prometheus metrics.
"""

from .logging_config import configure_logging, JSONFormatter, TaskIDFilter
from .metrics import (
    candidates_found_total,
    entity_failures_total,
    record_failure,
    record_outcome,
    rows_backed_up_total,
    rows_deleted_total,
    rows_reinstated_total,
    run_duration_seconds,
)
from .task_context import task_id_var, get_task_id, generate_task_id

__all__ = [
    # Logging
    "configure_logging",
    "JSONFormatter",
    "TaskIDFilter",
    # Metrics
    "candidates_found_total",
    "entity_failures_total",
    "record_failure",
    "record_outcome",
    "rows_backed_up_total",
    "rows_deleted_total",
    "rows_reinstated_total",
    "run_duration_seconds",
    # Task ID
    "task_id_var",
    "get_task_id",
    "generate_task_id",
]
