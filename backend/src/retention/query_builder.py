"""Candidate query builder.

Translates an EntityConfig (plus the full configuration set, for relationship
lookup) into the statements a retention run executes:

- selection: candidate ids matching the entity's criteria
- backup: INSERT ... SELECT of whole-row snapshots into the backup table
- delete: cascade deletes for related entities, then the owner delete
- reinstate: eligibility count, insert-back from snapshots, mark reinstated

Statement building is pure: nothing here touches the store. Table and column
identifiers come from validated configuration; criterion conditions are raw
predicate fragments of the deployment's dialect and are emitted verbatim.

Predicate composition rules:
- criteria are concatenated in configuration order
- criterion i's operator joins it to the previous emitted criterion
- no parentheses are inserted, so mixed AND/OR chains follow the dialect's
  native precedence
- no criteria (or all criteria dropped) gives the always-true predicate 1=1
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import bindparam, DateTime, text
from sqlalchemy.sql.elements import TextClause

from .dialects import SqlDialect
from .exceptions import ConfigurationError
from .schemas import (
    Combinator,
    Criterion,
    EntityConfig,
    JoinKind,
    RelatedEntityConfig,
    RetentionConfiguration,
)

logger = logging.getLogger(__name__)

OWNER_ALIAS = "e"
ALWAYS_TRUE = "1=1"

BACKUP_COLUMNS = (
    "backup_id, task_id, entity_id, backup_time, reinstated, original_table, backup_data"
)

# Backup rows a reinstate call may touch: requested, from this entity's table, not yet restored
REINSTATE_SCOPE = (
    "backup_id IN :backup_ids AND original_table = :original_table AND reinstated = FALSE"
)


@dataclass(frozen=True)
class Relationship:
    """A relationship edge found between two entities.

    owner_side is True when the edge was declared on the owning entity, False
    when it was declared on the referenced entity. Either way the declaring
    side contributes its join column and the other side its foreign_key
    column, or its id column when no foreign key is given.
    """
    relation: RelatedEntityConfig
    owner_side: bool


@dataclass(frozen=True)
class JoinClause:
    entity_name: str
    table: str
    alias: str
    kind: JoinKind
    on: str

    def render(self) -> str:
        return f"{self.kind.sql} {self.table} {self.alias} ON {self.on}"


@dataclass(frozen=True)
class SelectionPlan:
    """Joins and predicate derived from one entity's criteria."""
    entity: EntityConfig
    joins: tuple[JoinClause, ...]
    predicate: str
    dropped: tuple[Criterion, ...] = ()

    def from_clause(self) -> str:
        parts = [f"{self.entity.table} {OWNER_ALIAS}"]
        parts.extend(join.render() for join in self.joins)
        return " ".join(parts)


class CandidateQueryBuilder:
    """Builds retention statements for configured entities.

    Usage:
        builder = CandidateQueryBuilder(configuration, get_dialect("postgresql"))
        ids = session.execute(builder.selection_statement(entity)).scalars().all()
    """

    def __init__(
        self,
        configuration: Union[RetentionConfiguration, Iterable[EntityConfig]],
        dialect: Optional[SqlDialect] = None,
    ):
        """Initialize builder.

        Args:
            configuration: Full configuration set (used for relationship lookup)
            dialect: Dialect of the store the statements will run against
                (only needed for backup and reinstate statements)
        """
        entities = (
            configuration.entities
            if isinstance(configuration, RetentionConfiguration)
            else tuple(configuration)
        )
        self.entities: dict[str, EntityConfig] = {entity.name: entity for entity in entities}
        self.dialect = dialect

    # ------------------------------------------------------------------
    # Join resolution
    # ------------------------------------------------------------------

    def find_relationship(self, owner_name: str, referenced_name: str) -> Optional[Relationship]:
        """Find the first relationship connecting two entities, in either direction.

        The owner's relationship list is checked first, then the referenced
        entity's list.
        """
        owner = self.entities.get(owner_name)
        if owner is not None:
            for relation in owner.related:
                if relation.entity == referenced_name:
                    return Relationship(relation=relation, owner_side=True)

        referenced = self.entities.get(referenced_name)
        if referenced is not None:
            for relation in referenced.related:
                if relation.entity == owner_name:
                    return Relationship(relation=relation, owner_side=False)

        return None

    def _join_for(self, entity: EntityConfig, referenced_name: str, alias: str) -> Optional[JoinClause]:
        relationship = self.find_relationship(entity.name, referenced_name)
        if relationship is None:
            return None

        relation = relationship.relation
        referenced = self.entities.get(referenced_name)

        if relationship.owner_side:
            # owner.join = referenced.foreign_key (or the referenced id)
            table = referenced.table if referenced is not None else relation.table
            related_column = relation.foreign_key or (referenced.id_column if referenced is not None else "id")
            on = f"{OWNER_ALIAS}.{relation.join} = {alias}.{related_column}"
        else:
            # referenced.join = owner.foreign_key (or the owner id)
            table = referenced.table
            owner_column = relation.foreign_key or entity.id_column
            on = f"{OWNER_ALIAS}.{owner_column} = {alias}.{relation.join}"

        # Filter joins are always inner joins; join_type only describes the edge.
        return JoinClause(
            entity_name=referenced_name,
            table=table,
            alias=alias,
            kind=JoinKind.INNER,
            on=on,
        )

    def plan(self, entity: EntityConfig) -> SelectionPlan:
        """Resolve joins and compose the WHERE predicate for an entity."""
        joins: list[JoinClause] = []
        aliases: dict[str, str] = {entity.name: OWNER_ALIAS}
        unresolved: set[str] = set()
        terms: list[tuple[Combinator, str]] = []
        dropped: list[Criterion] = []

        for criterion in entity.criteria:
            referenced_name = criterion.referenced_entity

            if not criterion.references_other_entity(entity.name):
                column = (criterion.referenced_field if referenced_name else None) or criterion.field
                terms.append((criterion.operator, f"{OWNER_ALIAS}.{column} {criterion.condition}"))
                continue

            if referenced_name not in aliases and referenced_name not in unresolved:
                join = self._join_for(entity, referenced_name, f"r{len(joins)}")
                if join is None:
                    unresolved.add(referenced_name)
                    logger.warning(
                        f"No relationship found between {entity.name} and {referenced_name}; "
                        f"dropping criterion on {criterion.referenced_field or criterion.field}",
                        extra={"entity": entity.name, "referenced_entity": referenced_name},
                    )
                else:
                    joins.append(join)
                    aliases[referenced_name] = join.alias

            alias = aliases.get(referenced_name)
            if alias is None:
                dropped.append(criterion)
                continue

            column = criterion.referenced_field or criterion.field
            terms.append((criterion.operator, f"{alias}.{column} {criterion.condition}"))

        return SelectionPlan(
            entity=entity,
            joins=tuple(joins),
            predicate=self.compose_predicate(terms),
            dropped=tuple(dropped),
        )

    @staticmethod
    def compose_predicate(terms: Sequence[tuple[Combinator, str]]) -> str:
        """Concatenate predicate terms left to right without grouping.

        The first term's combinator is ignored; each following term is
        prefixed with its own combinator.
        """
        if not terms:
            return ALWAYS_TRUE

        parts = [terms[0][1]]
        for operator, predicate in terms[1:]:
            parts.append(f"{Combinator(operator).value} {predicate}")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def where_clause(self, entity: EntityConfig) -> str:
        return self.plan(entity).predicate

    def candidate_subquery(self, entity: EntityConfig, column: Optional[str] = None) -> str:
        """SELECT of candidate ids without ordering, for use inside IN (...).

        column selects another owner column of the candidate rows instead of the id.
        """
        plan = self.plan(entity)
        distinct = "DISTINCT " if plan.joins else ""
        return (
            f"SELECT {distinct}{OWNER_ALIAS}.{column or entity.id_column} "
            f"FROM {plan.from_clause()} WHERE {plan.predicate}"
        )

    def selection_sql(self, entity: EntityConfig) -> str:
        return f"{self.candidate_subquery(entity)} ORDER BY {OWNER_ALIAS}.{entity.id_column}"

    def selection_statement(self, entity: EntityConfig) -> TextClause:
        return text(self.selection_sql(entity))

    def criteria_depend_on_cascade(self, entity: EntityConfig) -> bool:
        """True when a criterion joins through an entity this entity cascades into.

        Re-evaluating such criteria after the cascade delete would no longer
        match the original candidates, so the executor scopes deletes by id.
        """
        cascade_targets = {relation.entity for relation in entity.cascade_relations}
        return any(
            criterion.referenced_entity in cascade_targets
            for criterion in entity.criteria
        )

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup_table(self, entity: EntityConfig) -> str:
        """Qualified backup table of an entity, or ConfigurationError."""
        if not entity.backup.enabled:
            raise ConfigurationError(f"Backup not enabled for entity {entity.name}")
        table = entity.backup.qualified_table
        if not table:
            raise ConfigurationError(f"No backup table specified for entity {entity.name}")
        return table

    def _backup_sql(self, entity: EntityConfig, scope: str, columns: Optional[Sequence[str]]) -> str:
        backup_table = self.backup_table(entity)
        snapshot = self.dialect.snapshot_expression(OWNER_ALIAS, columns)
        return (
            f"INSERT INTO {backup_table} ({BACKUP_COLUMNS}) "
            f"SELECT {self.dialect.backup_id_expression()}, :task_id, "
            f"CAST({OWNER_ALIAS}.{entity.id_column} AS TEXT), CURRENT_TIMESTAMP, FALSE, "
            f":original_table, {snapshot} "
            f"FROM {entity.table} {OWNER_ALIAS} "
            f"WHERE {OWNER_ALIAS}.{entity.id_column} IN {scope}"
        )

    def backup_statement(
        self,
        entity: EntityConfig,
        columns: Optional[Sequence[str]] = None,
    ) -> TextClause:
        """Backup every row matched by the entity's criteria.

        Binds: task_id, original_table.
        """
        sql = self._backup_sql(entity, f"({self.candidate_subquery(entity)})", columns)
        return text(sql).bindparams(original_table=entity.table)

    def backup_batch_statement(
        self,
        entity: EntityConfig,
        columns: Optional[Sequence[str]] = None,
    ) -> TextClause:
        """Backup the rows whose ids are bound to :candidate_ids.

        Binds: task_id, candidate_ids (list), original_table.
        """
        sql = self._backup_sql(entity, ":candidate_ids", columns)
        return text(sql).bindparams(
            bindparam("candidate_ids", expanding=True),
            original_table=entity.table,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def cascade_delete_statements(
        self,
        entity: EntityConfig,
        by_ids: bool = False,
    ) -> list[tuple[RelatedEntityConfig, TextClause]]:
        """Deletes for cascade relationships, to run before the owner delete.

        Each is scoped by the owner's candidates: the candidate sub-selection,
        or the ids bound to :candidate_ids when by_ids is True. The related
        cascade column is matched against the owner's join column, which is
        the candidate id itself when the relationship joins on the id.
        """
        statements = []
        for relation in entity.cascade_relations:
            scope = self._cascade_scope(entity, relation, by_ids)
            statement = text(
                f"DELETE FROM {relation.table} WHERE {relation.cascade_column} IN {scope}"
            )
            if by_ids:
                statement = statement.bindparams(bindparam("candidate_ids", expanding=True))
            statements.append((relation, statement))
        return statements

    def _cascade_scope(self, entity: EntityConfig, relation: RelatedEntityConfig, by_ids: bool) -> str:
        if relation.join == entity.id_column:
            return ":candidate_ids" if by_ids else f"({self.candidate_subquery(entity)})"
        if by_ids:
            # Owner rows are still present: cascades run before the owner delete
            return (
                f"(SELECT {relation.join} FROM {entity.table} "
                f"WHERE {entity.id_column} IN :candidate_ids)"
            )
        return f"({self.candidate_subquery(entity, relation.join)})"

    def delete_statement(self, entity: EntityConfig, by_ids: bool = False) -> TextClause:
        """Delete the owner rows matched by the criteria (or bound :candidate_ids)."""
        if by_ids:
            return text(
                f"DELETE FROM {entity.table} WHERE {entity.id_column} IN :candidate_ids"
            ).bindparams(bindparam("candidate_ids", expanding=True))

        return text(
            f"DELETE FROM {entity.table} "
            f"WHERE {entity.id_column} IN ({self.candidate_subquery(entity)})"
        )

    # ------------------------------------------------------------------
    # Reinstate
    # ------------------------------------------------------------------

    def eligible_backups_statement(self, entity: EntityConfig) -> TextClause:
        """Select the requested backups that exist for this entity and are not reinstated.

        The rows are locked where the dialect supports it, so concurrent
        reinstatements of the same ids serialize on them.

        Binds: backup_ids (list), original_table.
        """
        backup_table = self.backup_table(entity)
        return text(
            f"SELECT backup_id FROM {backup_table} "
            f"WHERE {REINSTATE_SCOPE}{self.dialect.row_lock_clause}"
        ).bindparams(
            bindparam("backup_ids", expanding=True),
            original_table=entity.table,
        )

    def reinstate_statement(
        self,
        entity: EntityConfig,
        columns: Optional[Sequence[str]] = None,
    ) -> TextClause:
        """Insert snapshots of the requested, not yet reinstated backups back into the table.

        Binds: backup_ids (list), original_table.
        """
        backup_table = self.backup_table(entity)
        insert_columns, select_list = self.dialect.restore_projection(
            entity.table, "backup_data", columns
        )
        target = f"{entity.table} {insert_columns}" if insert_columns else entity.table
        return text(
            f"INSERT INTO {target} SELECT {select_list} FROM {backup_table} "
            f"WHERE {REINSTATE_SCOPE}"
        ).bindparams(
            bindparam("backup_ids", expanding=True),
            original_table=entity.table,
        )

    def mark_reinstated_statement(self, entity: EntityConfig) -> TextClause:
        """Flip reinstated and stamp actor/time for the requested backups.

        Binds: backup_ids (list), original_table, reinstated_by, reinstated_time.
        """
        backup_table = self.backup_table(entity)
        return text(
            f"UPDATE {backup_table} "
            f"SET reinstated = TRUE, reinstated_time = :reinstated_time, "
            f"reinstated_by = :reinstated_by "
            f"WHERE {REINSTATE_SCOPE}"
        ).bindparams(
            bindparam("backup_ids", expanding=True),
            bindparam("reinstated_time", type_=DateTime(timezone=True)),
            original_table=entity.table,
        )
