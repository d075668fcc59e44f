"""Backup record layout shared by every configured backup table.

Backup tables are named per entity in the retention configuration, so they
are described with a Core Table factory instead of a single ORM class. All of
them share this layout:

    backup_id (unique), task_id, entity_id, backup_time, reinstated,
    reinstated_time, reinstated_by, original_table, backup_data
"""

import threading
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Engine

from .base import PortableJSONB

# Kept apart from Base.metadata so create_all() on the ORM models never
# creates backup tables implicitly.
backup_metadata = MetaData()

_lock = threading.Lock()


def qualified_name(table_name: str, schema: Optional[str] = None) -> str:
    """Return schema.table when a schema qualifier is configured."""
    return f"{schema}.{table_name}" if schema else table_name


def build_backup_table(
    table_name: str,
    schema: Optional[str] = None,
    metadata: Optional[MetaData] = None,
) -> Table:
    """Return the Core Table for a backup destination, creating it on first use.

    Args:
        table_name: Backup table name from BackupConfig.table
        schema: Optional schema qualifier from BackupConfig.schema
        metadata: MetaData to register the table in (defaults to backup_metadata)

    Returns:
        Table describing the backup record layout
    """
    metadata = metadata if metadata is not None else backup_metadata
    key = qualified_name(table_name, schema)

    with _lock:
        existing = metadata.tables.get(key)
        if existing is not None:
            return existing

        return Table(
            table_name,
            metadata,
            Column("backup_id", Text, primary_key=True),
            Column("task_id", Text, nullable=False),
            Column("entity_id", Text, nullable=False),
            Column(
                "backup_time",
                DateTime(timezone=True),
                nullable=False,
                server_default=text("CURRENT_TIMESTAMP"),
            ),
            Column("reinstated", Boolean, nullable=False, server_default=text("FALSE")),
            Column("reinstated_time", DateTime(timezone=True), nullable=True),
            Column("reinstated_by", Text, nullable=True),
            Column("original_table", Text, nullable=False),
            Column("backup_data", PortableJSONB, nullable=False),
            Index(f"ix_{table_name}_task_id", "task_id"),
            Index(f"ix_{table_name}_backup_time", "backup_time"),
            schema=schema,
        )


def ensure_backup_tables(engine: Engine, backup_tables: list[Table]) -> None:
    """Create any backup tables that do not exist yet.

    Args:
        engine: Engine bound to the store being cleaned up
        backup_tables: Tables returned by build_backup_table
    """
    for table in backup_tables:
        table.create(bind=engine, checkfirst=True)
