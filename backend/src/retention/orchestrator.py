"""Distributed retention: one task per entity on a bounded worker pool.

Run lifecycle:
    STARTED -> AWAITING_ALL -> MERGING -> COMPLETE
                          \\-> FAILED (dispatch or merge itself raised)

A failing entity never fails the run. Its exception is captured inside the
entity's task as a PartialEntityFailure and reported through that entity's
PartialOutcome; sibling tasks keep running and commit independently.
"""

import logging
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from contextvars import copy_context
from enum import Enum
from typing import Iterable, Optional

from observability.metrics import record_outcome
from .exceptions import PartialEntityFailure
from .executor import RetentionExecutor
from .results import AggregateResult, PartialOutcome
from .schemas import EntityConfig

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    STARTED = "STARTED"
    AWAITING_ALL = "AWAITING_ALL"
    MERGING = "MERGING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class DistributedOrchestrator:
    """Fans per-entity retention out over a fixed-size thread pool.

    The pool size is fixed for the run; entities beyond capacity queue. The
    barrier has no timeout, so a hung entity stalls the whole run.

    Usage:
        orchestrator = DistributedOrchestrator(executor, worker_count=4)
        result = orchestrator.run(configuration.entities, task_id)
    """

    def __init__(self, executor: RetentionExecutor, worker_count: int):
        if worker_count < 1:
            raise ValueError(f"worker_count must be positive, got {worker_count}")
        self.executor = executor
        self.worker_count = worker_count
        self.state: Optional[RunState] = None

    def _transition(self, state: RunState, task_id: str) -> None:
        self.state = state
        logger.debug(f"Distributed run {task_id} -> {state.value}")

    def _run_entity(self, entity: EntityConfig, task_id: str, dry_run: bool) -> PartialOutcome:
        """Worker body; always returns an outcome, never raises."""
        try:
            return self.executor.run(entity, task_id, dry_run=dry_run)
        except Exception as e:
            failure = PartialEntityFailure(entity.name, e)
            logger.error(str(failure), exc_info=True, extra={"entity": entity.name})
            return PartialOutcome.failed(entity.name, str(failure))

    def run(
        self,
        entities: Iterable[EntityConfig],
        task_id: str,
        dry_run: bool = False,
    ) -> AggregateResult:
        """Process every entity concurrently and merge their outcomes.

        Returns:
            Completed AggregateResult; check has_errors for entity failures

        Raises:
            Exception: Only if dispatching or merging itself fails
        """
        entities = list(entities)
        result = AggregateResult(task_id=task_id)
        self._transition(RunState.STARTED, task_id)

        logger.info(
            f"Starting distributed retention over {len(entities)} entities",
            extra={"worker_count": self.worker_count, "dry_run": dry_run}
        )

        try:
            with ThreadPoolExecutor(
                max_workers=self.worker_count,
                thread_name_prefix="retention-worker",
            ) as pool:
                futures: list[tuple[EntityConfig, Future]] = [
                    (
                        entity,
                        # Each task gets its own copy so the task id context follows it
                        pool.submit(copy_context().run, self._run_entity, entity, task_id, dry_run),
                    )
                    for entity in entities
                ]

                self._transition(RunState.AWAITING_ALL, task_id)
                wait([future for _, future in futures], return_when=ALL_COMPLETED)

            self._transition(RunState.MERGING, task_id)
            for entity, future in futures:
                outcome = future.result()
                record_outcome(outcome, "dry_run" if dry_run else "distributed")
                result.merge(outcome)

            result.complete()
        except Exception:
            self._transition(RunState.FAILED, task_id)
            logger.error(f"Distributed retention run {task_id} failed", exc_info=True)
            raise

        self._transition(RunState.COMPLETE, task_id)

        failed = sorted(result.errors)
        logger.info(
            f"Distributed retention completed: candidates={result.total_candidate_count}, "
            f"deleted={result.total_deleted_count}, failed_entities={failed}",
            extra={"worker_count": self.worker_count}
        )
        return result
