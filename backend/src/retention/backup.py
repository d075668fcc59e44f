"""Backup table inspection and purge.

Backup rows are written by the executor's INSERT ... SELECT statements; this
service only reads them back and removes expired ones. It works on the Core
tables from models.backup_record, so the layout is shared across entities.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql.schema import Table

from database import session_scope
from models.backup_record import build_backup_table
from .exceptions import ConfigurationError, QueryExecutionError
from .schemas import EntityConfig, RetentionConfiguration

logger = logging.getLogger(__name__)

# Upper bound for get_backup_metadata listings
MAX_METADATA_LIMIT = 1000


class BackupService:
    """Read and purge backup records for configured entities."""

    def __init__(self, session_factory: sessionmaker, configuration: RetentionConfiguration):
        self.session_factory = session_factory
        self.configuration = configuration

    def backup_table_for(self, entity_name: str) -> Table:
        """Core table of an entity's backup destination, or ConfigurationError."""
        return self._table(self._entity(entity_name))

    def _entity(self, entity_name: str) -> EntityConfig:
        entity = self.configuration.get_entity(entity_name)
        if entity is None:
            raise ConfigurationError(f"Entity not found: {entity_name}")
        return entity

    @staticmethod
    def _table(entity: EntityConfig) -> Table:
        if not entity.backup_enabled:
            raise ConfigurationError(f"Backup not enabled for entity {entity.name}")
        if not entity.backup.table:
            raise ConfigurationError(f"No backup table specified for entity {entity.name}")
        return build_backup_table(entity.backup.table, entity.backup.schema_name)

    def backup_tables(self) -> list[Table]:
        """Backup tables of every entity with a usable backup configuration."""
        tables = []
        for entity in self.configuration.entities:
            if entity.backup_enabled and entity.backup.table:
                tables.append(self._table(entity))
        return tables

    def get_backup_metadata(
        self,
        entity_name: str,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List backup records (without snapshots), most recent first.

        Only rows taken from the entity's own table are listed; several
        entities may share one backup table.

        Args:
            entity_name: Configured entity
            task_id: Only records written by this task
            limit: Maximum rows returned (capped at MAX_METADATA_LIMIT)
        """
        entity = self._entity(entity_name)
        table = self._table(entity)
        limit = max(1, min(limit, MAX_METADATA_LIMIT))

        query = select(
            table.c.backup_id,
            table.c.task_id,
            table.c.entity_id,
            table.c.backup_time,
            table.c.reinstated,
            table.c.reinstated_time,
            table.c.reinstated_by,
            table.c.original_table,
        ).where(
            table.c.original_table == entity.table
        ).order_by(table.c.backup_time.desc(), table.c.backup_id).limit(limit)

        if task_id is not None:
            query = query.where(table.c.task_id == task_id)

        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise QueryExecutionError(entity_name, "backup metadata", e) from e

        return [dict(row) for row in rows]

    def get_backup_data(self, entity_name: str, backup_id: str) -> Optional[dict[str, Any]]:
        """Decoded row snapshot of one backup, or None for an unknown id."""
        entity = self._entity(entity_name)
        table = self._table(entity)

        try:
            with session_scope(self.session_factory) as session:
                data = session.execute(
                    select(table.c.backup_data).where(
                        table.c.backup_id == backup_id,
                        table.c.original_table == entity.table,
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise QueryExecutionError(entity_name, "backup data", e) from e

        # INSERT ... SELECT can leave the snapshot as JSON text on some dialects
        if isinstance(data, str):
            data = json.loads(data)
        return data

    def purge_old_backups(self, entity_name: str, retention_days: int) -> int:
        """Delete backup rows captured more than retention_days ago.

        Returns:
            Number of backup rows deleted
        """
        if retention_days < 1:
            raise ValueError(f"retention_days must be positive, got {retention_days}")

        entity = self._entity(entity_name)
        table = self._table(entity)
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

        try:
            with session_scope(self.session_factory) as session:
                purged = session.execute(
                    delete(table).where(
                        table.c.original_table == entity.table,
                        table.c.backup_time < cutoff,
                    )
                ).rowcount
        except SQLAlchemyError as e:
            raise QueryExecutionError(entity_name, "backup purge", e) from e

        logger.info(
            f"Purged {purged} backup records older than {retention_days} days for entity {entity_name}",
            extra={"entity": entity_name}
        )
        return purged
