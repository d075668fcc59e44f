"""SQLAlchemy models for the retention engine"""

from .base import Base, PortableJSONB
from .task_log import RetentionTaskLog, RetentionTaskType, RetentionTaskStatus
from .backup_record import (
    backup_metadata,
    build_backup_table,
    ensure_backup_tables,
    qualified_name,
)

__all__ = [
    "Base",
    "PortableJSONB",
    "RetentionTaskLog",
    "RetentionTaskType",
    "RetentionTaskStatus",
    "backup_metadata",
    "build_backup_table",
    "ensure_backup_tables",
    "qualified_name",
]
