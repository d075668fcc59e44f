"""Prometheus metrics for the retention engine.

Counters are labelled by entity name only; task ids are never used as labels.
"""

from prometheus_client import Counter, Histogram

candidates_found_total = Counter(
    "retention_candidates_found_total",
    "Total number of retention candidates selected",
    ["entity", "mode"]  # mode: analysis|dry_run|execute|distributed
)

rows_backed_up_total = Counter(
    "retention_rows_backed_up_total",
    "Total rows copied to backup tables before deletion",
    ["entity"]
)

rows_deleted_total = Counter(
    "retention_rows_deleted_total",
    "Total rows deleted from entity tables (cascades excluded)",
    ["entity"]
)

rows_reinstated_total = Counter(
    "retention_rows_reinstated_total",
    "Total rows restored from backup tables",
    ["entity"]
)

entity_failures_total = Counter(
    "retention_entity_failures_total",
    "Total per-entity retention failures",
    ["entity", "mode"]  # mode: analysis|dry_run|execute|distributed|reinstate
)

run_duration_seconds = Histogram(
    "retention_run_duration_seconds",
    "Wall-clock duration of retention runs in seconds",
    ["task_type"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0]
)


def record_outcome(outcome, mode: str) -> None:
    """Record counters for one entity outcome.

    Args:
        outcome: PartialOutcome of one entity
        mode: analysis, dry_run, execute or distributed
    """
    entity = outcome.entity_name
    if outcome.error is not None:
        record_failure(entity, mode)
        return

    candidates_found_total.labels(entity=entity, mode=mode).inc(len(outcome.candidate_ids))
    if outcome.backed_up_count:
        rows_backed_up_total.labels(entity=entity).inc(outcome.backed_up_count)
    if outcome.deleted_count:
        rows_deleted_total.labels(entity=entity).inc(outcome.deleted_count)


def record_failure(entity: str, mode: str) -> None:
    """Count one entity failure (an errored outcome or an aborted call)."""
    entity_failures_total.labels(entity=entity, mode=mode).inc()
