"""Retention task id propagation for log correlation.

The task id of the running retention call is kept in a context variable so
every log line emitted while processing it (including from worker threads,
which receive a copy of the dispatching context) carries the same id.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for the current retention task id
task_id_var: ContextVar[Optional[str]] = ContextVar("retention_task_id", default=None)


def generate_task_id() -> str:
    """Generate a new unique task ID.

    Returns:
        str: UUID v4 task ID
    """
    return str(uuid.uuid4())


def get_task_id() -> str:
    """Get current task ID from context.

    Returns:
        str: Current task ID or "no-task-id" if not set
    """
    return task_id_var.get() or "no-task-id"
