"""Per-entity outcomes and the aggregate result of a retention run."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class PartialOutcome:
    """Result of one retention attempt for one entity.

    deleted_count and backed_up_count are None when the step was not attempted
    (dry run, analysis, backup disabled), which callers can tell apart from an
    attempted step that matched zero rows.
    """
    entity_name: str
    candidate_ids: tuple = ()
    deleted_count: Optional[int] = None
    backed_up_count: Optional[int] = None
    error: Optional[str] = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def failed(cls, entity_name: str, error: str, candidate_ids: Sequence = ()) -> "PartialOutcome":
        return cls(entity_name=entity_name, candidate_ids=tuple(candidate_ids), error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class AggregateResult:
    """Merged result of an analysis or execution call.

    Populated only through merge(); complete() stamps the end time, after
    which the result is read-only.
    """
    task_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    candidates: dict[str, list] = field(default_factory=dict)
    deleted_counts: dict[str, int] = field(default_factory=dict)
    backed_up_counts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    warnings: dict[str, list[str]] = field(default_factory=dict)

    def merge(self, outcome: PartialOutcome) -> None:
        """Fold one entity outcome into this result."""
        if self.is_completed:
            raise RuntimeError(f"Result for task {self.task_id} is already completed")

        name = outcome.entity_name
        self.candidates.setdefault(name, []).extend(outcome.candidate_ids)

        if outcome.deleted_count is not None:
            self.deleted_counts[name] = self.deleted_counts.get(name, 0) + outcome.deleted_count
        if outcome.backed_up_count is not None:
            self.backed_up_counts[name] = self.backed_up_counts.get(name, 0) + outcome.backed_up_count
        if outcome.error is not None:
            self.errors[name] = outcome.error
        if outcome.warnings:
            self.warnings.setdefault(name, []).extend(outcome.warnings)

    def complete(self) -> None:
        if self.is_completed:
            raise RuntimeError(f"Result for task {self.task_id} is already completed")
        self.completed_at = datetime.now(timezone.utc)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def get_candidate_ids(self, entity_name: str) -> list:
        return list(self.candidates.get(entity_name, []))

    def get_deleted_count(self, entity_name: str) -> int:
        return self.deleted_counts.get(entity_name, 0)

    def get_backed_up_count(self, entity_name: str) -> int:
        return self.backed_up_counts.get(entity_name, 0)

    @property
    def total_candidate_count(self) -> int:
        return sum(len(ids) for ids in self.candidates.values())

    @property
    def total_deleted_count(self) -> int:
        return sum(self.deleted_counts.values())

    @property
    def total_backed_up_count(self) -> int:
        return sum(self.backed_up_counts.values())

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (candidate ids are stringified)."""
        return {
            "task_id": self.task_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "candidates": {
                name: [str(candidate) for candidate in ids]
                for name, ids in self.candidates.items()
            },
            "deleted_counts": dict(self.deleted_counts),
            "backed_up_counts": dict(self.backed_up_counts),
            "errors": dict(self.errors),
            "warnings": {name: list(items) for name, items in self.warnings.items()},
            "total_candidates": self.total_candidate_count,
            "total_deleted": self.total_deleted_count,
            "total_backed_up": self.total_backed_up_count,
            "has_errors": self.has_errors,
        }
