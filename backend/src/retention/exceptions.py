"""Exceptions raised by the retention engine."""

from typing import Optional


class RetentionError(Exception):
    """Base class for retention engine errors."""
    pass


class ConfigurationError(RetentionError):
    """Raised when the retention configuration cannot support an operation.

    Examples: backup requested without a backup table, reinstatement for an
    unknown entity, unreadable configuration file.
    """
    pass


class QueryExecutionError(RetentionError):
    """Raised when the store rejects a selection, backup, delete or reinstate statement.

    Always tagged with the entity the statement was generated for; the native
    driver exception is kept as ``cause`` and chained via ``__cause__``.
    """

    def __init__(self, entity_name: str, operation: str, cause: Exception):
        self.entity_name = entity_name
        self.operation = operation
        self.cause = cause
        super().__init__(f"Error during {operation} for entity {entity_name}: {cause}")


class ReinstateValidationError(RetentionError):
    """Raised when requested backup ids are missing or already reinstated."""

    def __init__(self, entity_name: str, requested: int, eligible: int):
        self.entity_name = entity_name
        self.requested = requested
        self.eligible = eligible
        super().__init__(
            f"Some backup IDs do not exist or are already reinstated for entity "
            f"{entity_name}: requested {requested}, eligible {eligible}"
        )


class PartialEntityFailure(RetentionError):
    """One entity's failure inside a distributed run.

    Never raised to the caller of a distributed run; the orchestrator captures
    it and records its message in that entity's PartialOutcome.
    """

    def __init__(self, entity_name: str, cause: Optional[Exception] = None):
        self.entity_name = entity_name
        self.cause = cause
        super().__init__(f"Error processing entity {entity_name}: {cause}")
