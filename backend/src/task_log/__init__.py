"""Durable retention task history."""

from .service import TaskLogService

__all__ = ["TaskLogService"]
