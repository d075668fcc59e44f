"""RetentionTaskLog model - durable history of retention runs"""

from enum import Enum as PyEnum

from sqlalchemy import Column, Text, Integer, Boolean, DateTime, Index, text

from .base import Base, PortableJSONB


class RetentionTaskType(str, PyEnum):
    """Kind of run recorded in the task log"""
    ANALYSIS = "ANALYSIS"
    CLEANUP = "CLEANUP"
    DISTRIBUTED_CLEANUP = "DISTRIBUTED_CLEANUP"
    REINSTATE = "REINSTATE"
    BACKUP_PURGE = "BACKUP_PURGE"


class RetentionTaskStatus(str, PyEnum):
    """Lifecycle status of a logged run"""
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RetentionTaskLog(Base):
    """
    One row per analysis, cleanup, reinstatement or purge run.

    Written through task_log.service.TaskLogService only. The task_id is also
    stamped on every backup row produced by the run, which makes it the
    provenance key for later reinstatement.
    """
    __tablename__ = "retention_task_log"
    __table_args__ = (
        Index("ix_retention_task_log_started_at", "started_at"),
    )

    task_id = Column(Text, primary_key=True)
    task_type = Column(Text, nullable=False)
    initiator = Column(Text, nullable=False)
    entities = Column(PortableJSONB, nullable=False)  # list of entity names
    started_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP")
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, nullable=False, default=RetentionTaskStatus.STARTED.value)
    dry_run = Column(Boolean, nullable=False, default=False)
    candidates_count = Column(Integer, nullable=True)
    deleted_count = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    def to_dict(self):
        """Convert task log entry to dictionary representation"""
        return {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "initiator": self.initiator,
            "entities": list(self.entities or []),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status,
            "dry_run": self.dry_run,
            "candidates_count": self.candidates_count,
            "deleted_count": self.deleted_count,
            "error_message": self.error_message,
        }
