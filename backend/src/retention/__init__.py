"""Criteria-driven data retention engine.

This module provides:
- Declarative per-entity retention rules (schemas, configuration)
- Candidate selection, backup, delete and reinstate statement building
- Sequential and distributed execution with per-entity result merging
- Backup inspection and purge

Service and tasks are imported lazily to avoid pulling in settings and Celery
on import:
    from retention.service import RetentionService
    from retention.tasks import retention_execute_task
"""

from .exceptions import (
    ConfigurationError,
    PartialEntityFailure,
    QueryExecutionError,
    ReinstateValidationError,
    RetentionError,
)
from .results import AggregateResult, PartialOutcome
from .schemas import (
    BackupConfig,
    BackupRetentionSettings,
    Combinator,
    Criterion,
    DistributionSettings,
    EntityConfig,
    JoinKind,
    RelatedEntityConfig,
    RetentionConfiguration,
    TaskLoggingSettings,
)

__all__ = [
    # Configuration model
    "BackupConfig",
    "BackupRetentionSettings",
    "Combinator",
    "Criterion",
    "DistributionSettings",
    "EntityConfig",
    "JoinKind",
    "RelatedEntityConfig",
    "RetentionConfiguration",
    "TaskLoggingSettings",
    # Results
    "AggregateResult",
    "PartialOutcome",
    # Errors
    "ConfigurationError",
    "PartialEntityFailure",
    "QueryExecutionError",
    "ReinstateValidationError",
    "RetentionError",
]
