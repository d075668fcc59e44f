"""Structured JSON logging configuration.

Provides centralized logging setup with retention task id correlation and
JSON formatting.
"""

import logging
import json
import sys
from datetime import datetime, timezone

from .task_context import get_task_id

# Extra attributes copied into the JSON payload when a log call provides them
CONTEXT_FIELDS = ("entity", "referenced_entity", "initiator", "dry_run", "batch", "worker_count")


class TaskIDFilter(logging.Filter):
    """Add task_id to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add task_id attribute to log record.

        Args:
            record: Log record to enhance

        Returns:
            bool: Always True (don't filter out records)
        """
        if not hasattr(record, "task_id"):
            record.task_id = get_task_id()
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "task_id": getattr(record, "task_id", "no-task-id"),
            "logger": record.name,
            "function": record.funcName,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["error"] = str(record.exc_info[1])
            log_data["traceback"] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, use JSON formatter; otherwise use simple format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(task_id)s - %(threadName)s - %(name)s - %(message)s'
        )

    handler.setFormatter(formatter)
    handler.addFilter(TaskIDFilter())
    root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.app.trace").setLevel(logging.WARNING)
