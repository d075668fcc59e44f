"""Task log service for retention runs.

Records one row per analysis, cleanup, reinstatement or backup purge in the
retention_task_log table. Every write runs in its own short transaction,
independent of the retention unit of work it describes, so a failed cleanup
can still be marked FAILED.

Writes never raise into the caller: a task log outage is logged locally and
the retention run continues.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from database import session_scope
from models.task_log import RetentionTaskLog, RetentionTaskStatus, RetentionTaskType
from observability.task_context import generate_task_id

logger = logging.getLogger(__name__)


class TaskLogService:
    """Start/complete/fail logging for retention tasks.

    Usage:
        task_log = TaskLogService(SessionLocal)
        task_id = task_log.log_task_start(RetentionTaskType.CLEANUP, "scheduler", ["Order"], False)
        ...
        task_log.log_task_completion(task_id, candidate_count=3, deleted_count=3)
    """

    def __init__(self, session_factory: sessionmaker, enabled: bool = True):
        self.session_factory = session_factory
        self.enabled = enabled

    def log_task_start(
        self,
        task_type: RetentionTaskType | str,
        initiator: str,
        entity_names: Sequence[str],
        dry_run: bool,
    ) -> str:
        """Record the start of a task and return its id.

        The id is generated here and returned even when logging is disabled or
        the insert fails, so backup rows can still be tagged with it.
        """
        task_id = generate_task_id()
        if not self.enabled:
            return task_id

        try:
            with session_scope(self.session_factory) as session:
                session.add(RetentionTaskLog(
                    task_id=task_id,
                    task_type=RetentionTaskType(task_type).value,
                    initiator=initiator,
                    entities=list(entity_names),
                    started_at=datetime.now(timezone.utc),
                    status=RetentionTaskStatus.STARTED.value,
                    dry_run=dry_run,
                ))
        except Exception as e:
            logger.error(f"Failed to log start of task {task_id}: {e}", exc_info=True)

        return task_id

    def log_task_completion(self, task_id: str, candidate_count: int, deleted_count: int) -> None:
        self._finish(
            task_id,
            status=RetentionTaskStatus.COMPLETED,
            candidates_count=candidate_count,
            deleted_count=deleted_count,
        )

    def log_task_error(self, task_id: str, message: str) -> None:
        self._finish(task_id, status=RetentionTaskStatus.FAILED, error_message=message)

    def _finish(self, task_id: str, status: RetentionTaskStatus, **values: Any) -> None:
        if not self.enabled:
            return

        try:
            with session_scope(self.session_factory) as session:
                entry = session.get(RetentionTaskLog, task_id)
                if entry is None:
                    logger.warning(f"Task {task_id} not found in task log; cannot mark {status.value}")
                    return
                entry.status = status.value
                entry.completed_at = datetime.now(timezone.utc)
                for key, value in values.items():
                    setattr(entry, key, value)
        except Exception as e:
            logger.error(f"Failed to log {status.value} for task {task_id}: {e}", exc_info=True)

    def get_recent_tasks(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently started tasks first."""
        with session_scope(self.session_factory) as session:
            entries = session.execute(
                select(RetentionTaskLog)
                .order_by(RetentionTaskLog.started_at.desc())
                .limit(limit)
            ).scalars().all()
            return [entry.to_dict() for entry in entries]

    def get_task(self, task_id: str) -> Optional[dict[str, Any]]:
        with session_scope(self.session_factory) as session:
            entry = session.get(RetentionTaskLog, task_id)
            return entry.to_dict() if entry is not None else None
