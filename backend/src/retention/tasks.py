"""Celery tasks for background retention runs.

Each task wraps one RetentionService operation and returns a JSON-safe dict
for the Celery result backend. Scheduling (cron, Celery Beat) is configured
by the deployment, e.g.:

    from celery.schedules import crontab

    celery_app.conf.beat_schedule = {
        'retention-execute-nightly': {
            'task': 'retention.execute',
            'schedule': crontab(hour=2, minute=0),
            'kwargs': {'initiator': 'scheduler'},
        },
        'retention-purge-backups-weekly': {
            'task': 'retention.purge_backups',
            'schedule': crontab(hour=3, minute=0, day_of_week=0),
        },
    }
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List

from celery import shared_task
from celery.signals import setup_logging

from config import get_settings
from observability.logging_config import configure_logging
from .exceptions import RetentionError
from .service import RetentionService

logger = logging.getLogger(__name__)


@setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Replace Celery's logging setup with the JSON task-id aware one."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)


@lru_cache(maxsize=1)
def get_retention_service() -> RetentionService:
    """Service built from settings, shared by tasks of this worker process.

    Call get_retention_service.cache_clear() to reload the rules file.
    """
    return RetentionService.from_settings()


@shared_task(name="retention.analyze", bind=True)
def retention_analyze_task(self, initiator: str = "scheduler") -> Dict[str, Any]:
    """Select retention candidates without modifying data.

    Returns:
        Dict with status and the serialized AggregateResult
    """
    logger.info("Retention analysis task started", extra={"initiator": initiator})

    try:
        result = get_retention_service().analyze(initiator)
    except RetentionError as e:
        logger.error("Retention analysis task failed", exc_info=True)
        return {'status': 'failed', 'error': str(e)}

    return {'status': 'completed', **result.to_dict()}


@shared_task(name="retention.execute", bind=True)
def retention_execute_task(self, initiator: str = "scheduler", dry_run: bool = False) -> Dict[str, Any]:
    """Run retention for every configured entity.

    Entity-level failures of a distributed run are reported with
    status 'completed_with_errors'; a fail-fast sequential run that aborts
    returns status 'failed'. No retry is attempted.
    """
    logger.info(
        "Retention execute task started",
        extra={"initiator": initiator, "dry_run": dry_run}
    )

    try:
        result = get_retention_service().execute(initiator, dry_run=dry_run)
    except RetentionError as e:
        logger.error("Retention execute task failed", exc_info=True)
        return {'status': 'failed', 'error': str(e), 'total_deleted': 0}

    status = 'completed_with_errors' if result.has_errors else 'completed'
    logger.info(
        f"Retention execute task finished: {status}, deleted={result.total_deleted_count}"
    )
    return {'status': status, **result.to_dict()}


@shared_task(name="retention.reinstate", bind=True)
def retention_reinstate_task(
    self,
    entity_name: str,
    backup_ids: List[str],
    initiator: str,
) -> Dict[str, Any]:
    """Restore backed-up rows of one entity (all or nothing)."""
    try:
        reinstated = get_retention_service().reinstate(entity_name, backup_ids, initiator)
    except RetentionError as e:
        logger.error(
            f"Reinstatement failed for entity {entity_name}",
            exc_info=True,
            extra={"entity": entity_name}
        )
        return {'status': 'failed', 'entity': entity_name, 'error': str(e), 'reinstated': 0}

    return {'status': 'completed', 'entity': entity_name, 'reinstated': reinstated}


@shared_task(name="retention.purge_backups", bind=True)
def retention_purge_backups_task(self, initiator: str = "scheduler") -> Dict[str, Any]:
    """Apply the backup retention policy to every entity with backups."""
    try:
        purged = get_retention_service().purge_expired_backups(initiator)
    except RetentionError as e:
        logger.error("Backup purge task failed", exc_info=True)
        return {'status': 'failed', 'error': str(e)}

    return {'status': 'completed', 'purged': purged, 'total_purged': sum(purged.values())}
