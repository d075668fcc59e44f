"""Retention service: the operations exposed to callers.

This service ties the retention components together:
- analyze: read-only candidate selection for every configured entity
- execute: find, back up and delete; sequential or distributed
- reinstate: all-or-nothing restore of backed-up rows
- purge_expired_backups: apply the backup retention policy
- task history queries

Every call is recorded in the task log. Sequential execution is fail-fast:
the first failing entity aborts the call and marks the task FAILED.
Distributed execution isolates failures per entity and returns normally;
callers must check result.has_errors.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy.engine import Engine

from config import Settings, get_settings
from database import build_engine, build_session_factory
from models.backup_record import ensure_backup_tables
from models.task_log import RetentionTaskType
from observability.metrics import (
    record_failure,
    record_outcome,
    rows_reinstated_total,
    run_duration_seconds,
)
from observability.task_context import task_id_var
from task_log import TaskLogService
from .backup import BackupService
from .configuration import load_retention_configuration
from .dialects import get_dialect
from .exceptions import QueryExecutionError
from .executor import RetentionExecutor
from .orchestrator import DistributedOrchestrator
from .query_builder import CandidateQueryBuilder
from .reinstatement import ReinstatementEngine
from .results import AggregateResult, PartialOutcome
from .schemas import RetentionConfiguration

logger = logging.getLogger(__name__)


class RetentionService:
    """Service for executing configured retention against one store.

    The configuration snapshot is fixed for the lifetime of the service; to
    pick up new rules, build a new service.

    Usage:
        service = RetentionService.from_settings()
        result = service.execute(initiator="scheduler", dry_run=False)
        if result.has_errors:
            ...
    """

    def __init__(
        self,
        engine: Engine,
        configuration: RetentionConfiguration,
        task_log: Optional[TaskLogService] = None,
    ):
        """Initialize retention service.

        Args:
            engine: Engine of the store being cleaned up
            configuration: Immutable retention configuration snapshot
            task_log: Task history writer (defaults to one on the same store)
        """
        self.engine = engine
        self.configuration = configuration
        self.session_factory = build_session_factory(engine)
        self.builder = CandidateQueryBuilder(configuration, get_dialect(engine.dialect.name))
        self.executor = RetentionExecutor(
            self.session_factory,
            self.builder,
            batch_size=configuration.distribution.batch_size,
        )
        self.reinstatement = ReinstatementEngine(self.session_factory, self.builder)
        self.backup_service = BackupService(self.session_factory, configuration)
        self.task_log = task_log or TaskLogService(
            self.session_factory,
            enabled=configuration.task_logging.enabled,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetentionService":
        """Build a service from environment settings and the YAML rules file.

        Missing backup tables are created.
        """
        settings = settings or get_settings()
        configuration = load_retention_configuration(settings.RETENTION_CONFIG_PATH)
        service = cls(build_engine(settings.DATABASE_URL), configuration)
        ensure_backup_tables(service.engine, service.backup_service.backup_tables())
        return service

    @property
    def entity_names(self) -> list[str]:
        return self.configuration.entity_names

    def analyze(self, initiator: str) -> AggregateResult:
        """Select candidates for every entity without modifying anything.

        Raises:
            QueryExecutionError: If a selection fails (task marked FAILED)
        """
        logger.info("Starting retention analysis", extra={"initiator": initiator})

        task_id = self.task_log.log_task_start(
            RetentionTaskType.ANALYSIS, initiator, self.entity_names, True
        )
        token = task_id_var.set(task_id)
        result = AggregateResult(task_id=task_id)

        try:
            for entity in self.configuration.entities:
                candidates = self.executor.find_candidates(entity)
                outcome = PartialOutcome(entity_name=entity.name, candidate_ids=tuple(candidates))
                record_outcome(outcome, "analysis")
                result.merge(outcome)

                logger.info(
                    f"Found {len(candidates)} retention candidates for entity {entity.name}",
                    extra={"entity": entity.name}
                )

            result.complete()
            self.task_log.log_task_completion(task_id, result.total_candidate_count, 0)
            self._observe_duration(RetentionTaskType.ANALYSIS, result)
            return result

        except Exception as e:
            if isinstance(e, QueryExecutionError):
                record_failure(e.entity_name, "analysis")
            error_msg = f"Error during retention analysis: {e}"
            logger.error(error_msg, exc_info=True)
            self.task_log.log_task_error(task_id, error_msg)
            raise
        finally:
            task_id_var.reset(token)

    def execute(self, initiator: str, dry_run: bool = False) -> AggregateResult:
        """Run retention for every entity.

        Distributed over the worker pool when worker_count > 1 and not a dry
        run; otherwise entities are processed one at a time on this thread.

        Raises:
            QueryExecutionError: Sequential mode only, first failing entity
        """
        distributed = self.configuration.distribution.worker_count > 1 and not dry_run
        task_type = RetentionTaskType.DISTRIBUTED_CLEANUP if distributed else RetentionTaskType.CLEANUP

        logger.info(
            f"Starting retention execution (distributed={distributed})",
            extra={"initiator": initiator, "dry_run": dry_run}
        )

        task_id = self.task_log.log_task_start(task_type, initiator, self.entity_names, dry_run)
        token = task_id_var.set(task_id)

        try:
            if distributed:
                result = self._execute_distributed(task_id)
            else:
                result = self._execute_sequential(task_id, dry_run)

            self.task_log.log_task_completion(
                task_id, result.total_candidate_count, result.total_deleted_count
            )
            self._observe_duration(task_type, result)
            return result

        except Exception as e:
            # Distributed runs record failures per outcome and do not raise them
            if isinstance(e, QueryExecutionError):
                record_failure(e.entity_name, "dry_run" if dry_run else "execute")
            error_msg = f"Error during retention execution: {e}"
            logger.error(error_msg, exc_info=True)
            self.task_log.log_task_error(task_id, error_msg)
            raise
        finally:
            task_id_var.reset(token)

    def _execute_sequential(self, task_id: str, dry_run: bool) -> AggregateResult:
        result = AggregateResult(task_id=task_id)
        mode = "dry_run" if dry_run else "execute"

        for entity in self.configuration.entities:
            outcome = self.executor.run(entity, task_id, dry_run=dry_run)
            record_outcome(outcome, mode)
            result.merge(outcome)

        result.complete()
        return result

    def _execute_distributed(self, task_id: str) -> AggregateResult:
        orchestrator = DistributedOrchestrator(
            self.executor,
            worker_count=self.configuration.distribution.worker_count,
        )
        result = orchestrator.run(self.configuration.entities, task_id)

        if result.has_errors:
            logger.warning(
                f"Distributed retention finished with errors in {len(result.errors)} entities: "
                f"{', '.join(sorted(result.errors))}"
            )
        return result

    def reinstate(self, entity_name: str, backup_ids: Sequence[str], initiator: str) -> int:
        """Restore backed-up rows; fails as a whole if any id is ineligible.

        Returns:
            Number of rows restored (0 for an empty id list)

        Raises:
            ConfigurationError: Unknown entity or backup not configured
            ReinstateValidationError: Some ids missing or already reinstated
            QueryExecutionError: Store failure
        """
        logger.info(
            f"Reinstating {len(backup_ids)} backup records for entity {entity_name}",
            extra={"entity": entity_name, "initiator": initiator}
        )

        self.reinstatement.resolve_entity(entity_name)
        if not backup_ids:
            return 0

        task_id = self.task_log.log_task_start(
            RetentionTaskType.REINSTATE, initiator, [entity_name], False
        )
        token = task_id_var.set(task_id)

        try:
            reinstated = self.reinstatement.reinstate(entity_name, backup_ids, initiator)
            rows_reinstated_total.labels(entity=entity_name).inc(reinstated)
            self.task_log.log_task_completion(task_id, len(backup_ids), reinstated)
            return reinstated

        except Exception as e:
            record_failure(entity_name, "reinstate")
            error_msg = f"Error reinstating backups: {e}"
            logger.error(error_msg, exc_info=True, extra={"entity": entity_name})
            self.task_log.log_task_error(task_id, error_msg)
            raise
        finally:
            task_id_var.reset(token)

    def purge_expired_backups(self, initiator: str = "system") -> dict[str, int]:
        """Delete backup rows older than the configured backup retention.

        Returns:
            Entity name -> purged row count (empty when the policy is disabled)
        """
        policy = self.configuration.backup_retention
        if not policy.enabled:
            logger.info("Backup retention policy disabled; nothing to purge")
            return {}

        entities = [
            entity for entity in self.configuration.entities
            if entity.backup_enabled and entity.backup.table
        ]
        task_id = self.task_log.log_task_start(
            RetentionTaskType.BACKUP_PURGE, initiator, [entity.name for entity in entities], False
        )
        token = task_id_var.set(task_id)

        try:
            purged = {
                entity.name: self.backup_service.purge_old_backups(entity.name, policy.retention_days)
                for entity in entities
            }
            self.task_log.log_task_completion(task_id, 0, sum(purged.values()))
            return purged

        except Exception as e:
            error_msg = f"Error purging expired backups: {e}"
            logger.error(error_msg, exc_info=True)
            self.task_log.log_task_error(task_id, error_msg)
            raise
        finally:
            task_id_var.reset(token)

    def get_recent_tasks(self, limit: int = 10) -> list[dict[str, Any]]:
        return self.task_log.get_recent_tasks(limit)

    def get_task(self, task_id: str) -> Optional[dict[str, Any]]:
        return self.task_log.get_task(task_id)

    def _observe_duration(self, task_type: RetentionTaskType, result: AggregateResult) -> None:
        if result.duration_seconds is not None:
            run_duration_seconds.labels(task_type=task_type.value).observe(result.duration_seconds)
