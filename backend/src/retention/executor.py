"""Retention executor: find, back up and delete for one entity.

Each call to run() is one unit of work. Selection, backup and delete share a
single session/transaction opened through session_scope(), so a failing
delete also rolls back the backup rows written before it.
"""

import logging
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from .exceptions import ConfigurationError, QueryExecutionError
from .query_builder import CandidateQueryBuilder
from .results import PartialOutcome
from .schemas import EntityConfig

logger = logging.getLogger(__name__)

# Candidate sets larger than this are backed up and deleted in id batches
DEFAULT_BATCH_SIZE = 1000


def chunked(items: Sequence, size: int) -> Iterator[list]:
    """Yield successive slices of at most size items."""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def reflect_columns(session: Session, table: str) -> list[str]:
    """Column names of a (optionally schema-qualified) table, in table order."""
    schema, _, name = table.rpartition(".")
    inspector = inspect(session.connection())
    columns = [column["name"] for column in inspector.get_columns(name, schema=schema or None)]
    if not columns:
        raise ConfigurationError(f"Table {table} does not exist or has no columns")
    return columns


class RetentionExecutor:
    """Runs one entity's retention cycle against the store.

    Usage:
        executor = RetentionExecutor(SessionLocal, builder, batch_size=500)
        outcome = executor.run(entity, task_id, dry_run=False)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        builder: CandidateQueryBuilder,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.session_factory = session_factory
        self.builder = builder
        self.batch_size = batch_size

    def find_candidates(self, entity: EntityConfig) -> list:
        """Select the entity's current candidate ids in their own read transaction."""
        with session_scope(self.session_factory) as session:
            return self._find(session, entity)

    def run(self, entity: EntityConfig, task_id: str, dry_run: bool = False) -> PartialOutcome:
        """Find candidates and, unless dry_run, back them up and delete them.

        Args:
            entity: Entity to process
            task_id: Task id stamped on every backup row written by this run
            dry_run: If True, only the selection statement is executed

        Returns:
            PartialOutcome with candidate ids; counts are None when not attempted

        Raises:
            QueryExecutionError: If any statement fails (transaction rolled back)
        """
        with session_scope(self.session_factory) as session:
            candidates = self._find(session, entity)

            if dry_run:
                logger.info(
                    f"Dry run: found {len(candidates)} retention candidates for entity {entity.name}",
                    extra={"entity": entity.name, "dry_run": True}
                )
                return PartialOutcome(entity_name=entity.name, candidate_ids=tuple(candidates))

            by_ids = (
                len(candidates) > self.batch_size
                or self.builder.criteria_depend_on_cascade(entity)
            )
            warnings: list[str] = []

            backed_up = None
            if entity.backup_enabled:
                try:
                    self.builder.backup_table(entity)
                except ConfigurationError as e:
                    logger.error(
                        f"Skipping backup for entity {entity.name}: {e}",
                        extra={"entity": entity.name}
                    )
                    warnings.append(str(e))
                    backed_up = 0
                else:
                    backed_up = self._backup(session, entity, task_id, candidates, by_ids)

            deleted = self._delete(session, entity, candidates, by_ids)

            logger.info(
                f"Deleted {deleted} records for entity {entity.name} "
                f"(candidates={len(candidates)}, backed_up={backed_up})",
                extra={"entity": entity.name}
            )

            return PartialOutcome(
                entity_name=entity.name,
                candidate_ids=tuple(candidates),
                deleted_count=deleted,
                backed_up_count=backed_up,
                warnings=tuple(warnings),
            )

    def _execute(
        self,
        session: Session,
        entity: EntityConfig,
        operation: str,
        statement,
        params: Optional[dict[str, Any]] = None,
    ):
        try:
            return session.execute(statement, params or {})
        except SQLAlchemyError as e:
            raise QueryExecutionError(entity.name, operation, e) from e

    def _columns(self, session: Session, entity: EntityConfig) -> Optional[list[str]]:
        if not self.builder.dialect.requires_column_list:
            return None
        try:
            return reflect_columns(session, entity.table)
        except SQLAlchemyError as e:
            raise QueryExecutionError(entity.name, "reflection", e) from e

    def _find(self, session: Session, entity: EntityConfig) -> list:
        result = self._execute(session, entity, "selection", self.builder.selection_statement(entity))
        candidates = list(result.scalars().all())
        logger.debug(
            f"Found {len(candidates)} retention candidates for entity {entity.name}",
            extra={"entity": entity.name}
        )
        return candidates

    def _backup(
        self,
        session: Session,
        entity: EntityConfig,
        task_id: str,
        candidates: list,
        by_ids: bool,
    ) -> int:
        if not candidates:
            return 0

        columns = self._columns(session, entity)

        if not by_ids:
            statement = self.builder.backup_statement(entity, columns)
            result = self._execute(session, entity, "backup", statement, {"task_id": task_id})
            return result.rowcount

        statement = self.builder.backup_batch_statement(entity, columns)
        backed_up = 0
        for number, batch in enumerate(chunked(candidates, self.batch_size), start=1):
            result = self._execute(
                session, entity, "backup", statement,
                {"task_id": task_id, "candidate_ids": batch}
            )
            backed_up += result.rowcount
            logger.debug(
                f"Backed up batch {number} ({result.rowcount} rows) for entity {entity.name}",
                extra={"entity": entity.name, "batch": number}
            )
        return backed_up

    def _delete(self, session: Session, entity: EntityConfig, candidates: list, by_ids: bool) -> int:
        if not candidates:
            return 0

        if not by_ids:
            for relation, statement in self.builder.cascade_delete_statements(entity):
                result = self._execute(session, entity, "cascade delete", statement)
                logger.debug(
                    f"Cascade deleted {result.rowcount} {relation.entity} rows for entity {entity.name}",
                    extra={"entity": entity.name}
                )
            return self._execute(
                session, entity, "delete", self.builder.delete_statement(entity)
            ).rowcount

        cascades = self.builder.cascade_delete_statements(entity, by_ids=True)
        delete_statement = self.builder.delete_statement(entity, by_ids=True)
        deleted = 0
        for batch in chunked(candidates, self.batch_size):
            params = {"candidate_ids": batch}
            for _relation, statement in cascades:
                self._execute(session, entity, "cascade delete", statement, params)
            deleted += self._execute(session, entity, "delete", delete_statement, params).rowcount
        return deleted
