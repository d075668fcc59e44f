"""Declarative base and portable column types for retention models"""

from sqlalchemy.orm import declarative_base
from sqlalchemy import TypeDecorator, JSON
from sqlalchemy.dialects.postgresql import JSONB


class PortableJSONB(TypeDecorator):
    """JSON column stored as JSONB on PostgreSQL and JSON elsewhere.

    Used for row snapshots in backup tables and entity lists in the task log.
    Backup statements write snapshots with to_jsonb() on PostgreSQL and
    json_object() on SQLite; both read back as dicts through this type.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


# Only the task log is declared on Base; backup tables use backup_metadata
Base = declarative_base()
