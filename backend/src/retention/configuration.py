"""Loading and validating the retention configuration.

Entity rules are kept in a YAML document, either at the root or under a
top-level ``retention`` key:

    retention:
      distribution:
        workerCount: 4
        batchSize: 1000
      backupRetention:
        enabled: true
        retentionDays: 90
      entities:
        - name: Order
          table: orders
          criteria:
            - field: status
              condition: "= 'CANCELLED'"
          backup:
            table: orders_backup

Structural problems (unknown operator, duplicate entity name, bad identifier)
raise ConfigurationError. Problems a run can survive are reported as warnings
by validate_configuration().
"""

import logging
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from .exceptions import ConfigurationError
from .query_builder import CandidateQueryBuilder
from .schemas import Combinator, RetentionConfiguration

logger = logging.getLogger(__name__)


def parse_retention_configuration(data: Any) -> RetentionConfiguration:
    """Build the immutable configuration snapshot from parsed YAML/JSON data."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("Retention configuration must be a mapping")
    if "retention" in data:
        data = data["retention"] or {}

    try:
        return RetentionConfiguration.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid retention configuration: {e}") from e


def load_retention_configuration(path: Union[str, Path]) -> RetentionConfiguration:
    """Read and validate the retention configuration file.

    Args:
        path: YAML file path (settings.RETENTION_CONFIG_PATH)

    Returns:
        RetentionConfiguration snapshot

    Raises:
        ConfigurationError: If the file cannot be read, parsed or validated
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read retention configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse retention configuration {path}: {e}") from e

    configuration = parse_retention_configuration(data)

    for warning in validate_configuration(configuration):
        logger.warning(f"Retention configuration: {warning}")

    logger.info(
        f"Loaded retention configuration with {len(configuration.entities)} entities from {path}"
    )
    return configuration


def validate_configuration(configuration: RetentionConfiguration) -> list[str]:
    """Return non-fatal problems of a configuration, one message per problem."""
    warnings: list[str] = []
    builder = CandidateQueryBuilder(configuration)

    for entity in configuration.entities:
        if not entity.criteria:
            warnings.append(
                f"Entity {entity.name} has no criteria; every row of {entity.table} is a candidate"
            )

        operators = {criterion.operator for criterion in entity.criteria[1:]}
        if Combinator.AND in operators and Combinator.OR in operators:
            warnings.append(
                f"Entity {entity.name} mixes AND and OR criteria; they are combined "
                f"left to right without parentheses"
            )

        for criterion in entity.criteria:
            referenced = criterion.referenced_entity
            if criterion.references_other_entity(entity.name):
                if builder.find_relationship(entity.name, referenced) is None:
                    warnings.append(
                        f"Entity {entity.name} criterion on {referenced}.{criterion.referenced_field or criterion.field} "
                        f"has no relationship to join through and will be ignored"
                    )

        if entity.backup_enabled and not entity.backup.table:
            warnings.append(
                f"Entity {entity.name} enables backup without a backup table; rows will be deleted without backup"
            )

        for relation in entity.cascade_relations:
            if relation.entity not in builder.entities:
                warnings.append(
                    f"Entity {entity.name} cascades into {relation.entity}, which is not a configured entity"
                )

    return warnings
