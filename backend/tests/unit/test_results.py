"""Unit tests for partial outcomes and the aggregate result."""

import pytest

from retention.results import AggregateResult, PartialOutcome


class TestPartialOutcome:
    """Test per-entity outcome semantics."""

    def test_not_attempted_counts_are_none(self):
        outcome = PartialOutcome(entity_name="Order", candidate_ids=("o1",))

        assert outcome.deleted_count is None
        assert outcome.backed_up_count is None
        assert outcome.succeeded

    def test_failed(self):
        outcome = PartialOutcome.failed("Order", "boom")

        assert outcome.error == "boom"
        assert outcome.candidate_ids == ()
        assert not outcome.succeeded

    def test_immutable(self):
        outcome = PartialOutcome(entity_name="Order")

        with pytest.raises(AttributeError):
            outcome.deleted_count = 5


class TestAggregateResult:
    """Test merging and completion."""

    def test_merge_conservation(self):
        """Test that totals equal the sum of merged outcomes, errors contributing zero."""
        outcomes = [
            PartialOutcome("Order", ("o1", "o2"), deleted_count=2, backed_up_count=2),
            PartialOutcome("Customer", ("c1",), deleted_count=1, backed_up_count=None),
            PartialOutcome.failed("Shipment", "Error processing entity Shipment: locked"),
        ]
        result = AggregateResult(task_id="t-1")
        for outcome in outcomes:
            result.merge(outcome)
        result.complete()

        assert result.total_candidate_count == 3
        assert result.total_deleted_count == 3
        assert result.total_backed_up_count == 2
        assert result.get_deleted_count("Shipment") == 0
        assert result.get_backed_up_count("Customer") == 0
        assert result.errors == {"Shipment": "Error processing entity Shipment: locked"}
        assert result.has_errors

    def test_dry_run_outcome_leaves_counts_absent(self):
        result = AggregateResult(task_id="t-1")
        result.merge(PartialOutcome("Order", ("o1",)))

        assert result.deleted_counts == {}
        assert result.backed_up_counts == {}
        assert result.get_candidate_ids("Order") == ["o1"]
        assert not result.has_errors

    def test_attempted_zero_is_recorded(self):
        result = AggregateResult(task_id="t-1")
        result.merge(PartialOutcome("Order", (), deleted_count=0, backed_up_count=0))

        assert result.deleted_counts == {"Order": 0}
        assert result.backed_up_counts == {"Order": 0}

    def test_batches_accumulate(self):
        result = AggregateResult(task_id="t-1")
        result.merge(PartialOutcome("Order", ("o1",), deleted_count=1))
        result.merge(PartialOutcome("Order", ("o2",), deleted_count=1, warnings=("w",)))

        assert result.get_candidate_ids("Order") == ["o1", "o2"]
        assert result.get_deleted_count("Order") == 2
        assert result.warnings == {"Order": ["w"]}

    def test_no_mutation_after_complete(self):
        result = AggregateResult(task_id="t-1")
        result.complete()

        assert result.is_completed
        assert result.duration_seconds >= 0

        with pytest.raises(RuntimeError):
            result.merge(PartialOutcome("Order"))
        with pytest.raises(RuntimeError):
            result.complete()

    def test_duration_unknown_until_complete(self):
        assert AggregateResult(task_id="t-1").duration_seconds is None

    def test_to_dict(self):
        result = AggregateResult(task_id="t-1")
        result.merge(PartialOutcome("Customer", (7, 8), deleted_count=2))
        result.complete()

        data = result.to_dict()

        assert data["task_id"] == "t-1"
        assert data["candidates"] == {"Customer": ["7", "8"]}
        assert data["total_deleted"] == 2
        assert data["has_errors"] is False
        assert data["completed_at"] is not None
