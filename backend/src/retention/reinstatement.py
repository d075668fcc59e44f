"""Reinstatement of backed-up rows.

Validation, insert-back and the reinstated flag flip run in one transaction:
either every requested backup is restored and marked, or nothing changes.
"""

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import session_scope
from .exceptions import ConfigurationError, QueryExecutionError, ReinstateValidationError
from .executor import reflect_columns
from .query_builder import CandidateQueryBuilder
from .schemas import EntityConfig

logger = logging.getLogger(__name__)


class ReinstatementEngine:
    """Restores rows of one entity from its backup table by backup id."""

    def __init__(self, session_factory: sessionmaker, builder: CandidateQueryBuilder):
        self.session_factory = session_factory
        self.builder = builder

    def resolve_entity(self, entity_name: str) -> EntityConfig:
        """Entity config usable for reinstatement, or ConfigurationError."""
        entity = self.builder.entities.get(entity_name)
        if entity is None:
            raise ConfigurationError(f"Entity not found: {entity_name}")
        if not entity.backup_enabled:
            raise ConfigurationError(f"Backup not enabled for entity {entity_name}")
        # Raises when no backup table is configured
        self.builder.backup_table(entity)
        return entity

    def reinstate(self, entity_name: str, backup_ids: Sequence[str], actor: str) -> int:
        """Restore the given backups and mark them reinstated.

        Args:
            entity_name: Configured entity whose backup table holds the ids
            backup_ids: Backup ids to restore; duplicates are ignored
            actor: Recorded as reinstated_by

        Returns:
            Number of rows restored (equals the number of distinct ids)

        Raises:
            ConfigurationError: Unknown entity or backup not configured
            ReinstateValidationError: Any id missing or already reinstated
            QueryExecutionError: Store failure (nothing is restored)
        """
        entity = self.resolve_entity(entity_name)
        requested = list(dict.fromkeys(backup_ids))
        if not requested:
            return 0

        with session_scope(self.session_factory) as session:
            try:
                eligible = len(session.execute(
                    self.builder.eligible_backups_statement(entity),
                    {"backup_ids": requested}
                ).scalars().all())

                if eligible != len(requested):
                    logger.warning(
                        f"Rejecting reinstatement for entity {entity.name}: "
                        f"{eligible} of {len(requested)} backup ids are eligible",
                        extra={"entity": entity.name, "initiator": actor}
                    )
                    raise ReinstateValidationError(entity.name, len(requested), eligible)

                columns = None
                if self.builder.dialect.requires_column_list:
                    columns = reflect_columns(session, entity.table)

                restored = session.execute(
                    self.builder.reinstate_statement(entity, columns),
                    {"backup_ids": requested}
                ).rowcount

                if restored != len(requested):
                    raise ReinstateValidationError(entity.name, len(requested), restored)

                marked = session.execute(
                    self.builder.mark_reinstated_statement(entity),
                    {
                        "backup_ids": requested,
                        "reinstated_by": actor,
                        "reinstated_time": datetime.now(timezone.utc),
                    }
                ).rowcount

                if marked != len(requested):
                    raise ReinstateValidationError(entity.name, len(requested), marked)
            except SQLAlchemyError as e:
                raise QueryExecutionError(entity.name, "reinstate", e) from e

        logger.info(
            f"Reinstated {restored} records for entity {entity.name}",
            extra={"entity": entity.name, "initiator": actor}
        )
        return restored
