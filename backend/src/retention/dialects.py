"""Dialect-specific SQL fragments used by the candidate query builder.

Generated statements target a single dialect per deployment. PostgreSQL is the
production target; SQLite is supported for development and tests (the same
split models.base.PortableJSONB makes for JSON columns).

Only the pieces that genuinely differ live here: backup id generation, the
row snapshot expression and restoring a row from its snapshot.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .exceptions import ConfigurationError


def quote_identifier(name: str) -> str:
    """Double-quote a column name taken from table reflection."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class SqlDialect(ABC):
    """Interface for dialect-specific fragments."""

    name = "generic"

    # True when snapshot/restore expressions need the table's column list
    requires_column_list = False

    # Appended to the reinstate eligibility selection to lock the backup rows
    row_lock_clause = ""

    @abstractmethod
    def backup_id_expression(self) -> str:
        pass

    @abstractmethod
    def snapshot_expression(self, alias: str, columns: Optional[Sequence[str]] = None) -> str:
        pass

    @abstractmethod
    def restore_projection(
        self,
        target_table: str,
        data_column: str,
        columns: Optional[Sequence[str]] = None,
    ) -> tuple[str, str]:
        """Return (insert column list, select list) restoring rows from snapshots."""
        pass

    def _require_columns(self, columns: Optional[Sequence[str]]) -> Sequence[str]:
        if not columns:
            raise ConfigurationError(
                f"The {self.name} dialect needs the table's column list to build snapshot statements"
            )
        return columns


class PostgresDialect(SqlDialect):
    """PostgreSQL: whole-row JSONB snapshots via to_jsonb / jsonb_populate_record."""

    name = "postgresql"
    row_lock_clause = " FOR UPDATE"

    def backup_id_expression(self) -> str:
        return "gen_random_uuid()::text"

    def snapshot_expression(self, alias: str, columns: Optional[Sequence[str]] = None) -> str:
        return f"to_jsonb({alias})"

    def restore_projection(self, target_table, data_column, columns=None):
        return "", f"(jsonb_populate_record(NULL::{target_table}, {data_column}::jsonb)).*"


class SqliteDialect(SqlDialect):
    """SQLite: json_object snapshots built from the reflected column list."""

    name = "sqlite"
    requires_column_list = True

    def backup_id_expression(self) -> str:
        return "lower(hex(randomblob(16)))"

    def snapshot_expression(self, alias: str, columns: Optional[Sequence[str]] = None) -> str:
        columns = self._require_columns(columns)
        pairs = ", ".join(
            f"{quote_literal(column)}, {alias}.{quote_identifier(column)}" for column in columns
        )
        return f"json_object({pairs})"

    def restore_projection(self, target_table, data_column, columns=None):
        columns = self._require_columns(columns)
        insert_columns = "(" + ", ".join(quote_identifier(column) for column in columns) + ")"
        select_list = ", ".join(
            f"json_extract({data_column}, {quote_literal('$.' + quote_identifier(column))})" for column in columns
        )
        return insert_columns, select_list


_DIALECTS = {
    "postgresql": PostgresDialect,
    "sqlite": SqliteDialect,
}


def get_dialect(name: str) -> SqlDialect:
    """Resolve the dialect for an engine's dialect name (engine.dialect.name)."""
    try:
        return _DIALECTS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unsupported dialect for retention statements: {name}. "
            f"Supported: {', '.join(sorted(_DIALECTS))}"
        ) from None
