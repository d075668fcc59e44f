"""Pydantic schemas for the declarative retention configuration.

This module defines the immutable configuration snapshot consumed by the
query builder, executor and orchestrator:
- EntityConfig: one logical entity, its criteria, relationships and backup policy
- Criterion: one filter predicate, combined with the previous one by AND/OR
- RelatedEntityConfig: an edge to another entity (joins and cascading deletes)
- BackupConfig: where candidate rows are copied before deletion
- RetentionConfiguration: the full entity set plus distribution settings

All models are frozen; a run never sees its configuration change under it.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Table and column identifiers are interpolated into generated SQL, so they
# are restricted to plain (optionally schema-qualified) identifiers. Criterion
# conditions are raw predicate fragments and are not validated here.
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")


def _check_identifier(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"{label} must be a plain SQL identifier, got {value!r}")
    return value


class Combinator(str, Enum):
    """How a criterion joins the previous one."""
    AND = "AND"
    OR = "OR"


class JoinKind(str, Enum):
    """Join kind of a relationship edge."""
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"

    @property
    def sql(self) -> str:
        return f"{self.value} JOIN"


class Criterion(BaseModel):
    """A single filter predicate of an entity.

    The condition is appended verbatim after the qualified column, e.g.
    field=created_at, condition="< NOW() - INTERVAL '30 days'".
    """

    model_config = {"frozen": True, "populate_by_name": True}

    field: str = Field(description="Column on the owning entity")
    condition: str = Field(min_length=1, description="Dialect predicate fragment")
    operator: Combinator = Field(
        default=Combinator.AND,
        description="Combinator with the previous criterion"
    )
    referenced_entity: Optional[str] = Field(
        default=None,
        alias="referencedEntity",
        description="Entity whose column the predicate applies to"
    )
    referenced_field: Optional[str] = Field(
        default=None,
        alias="referencedField",
        description="Column on the referenced entity (defaults to field)"
    )

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("field", "referenced_field")
    @classmethod
    def validate_columns(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "Criterion column")

    def references_other_entity(self, owner_name: str) -> bool:
        """True when the criterion filters on an entity other than its owner."""
        return bool(self.referenced_entity) and self.referenced_entity != owner_name


class RelatedEntityConfig(BaseModel):
    """Relationship edge from the owning entity to another entity."""

    model_config = {"frozen": True, "populate_by_name": True}

    entity: str = Field(min_length=1, description="Related entity name")
    table: str = Field(description="Related table")
    join: str = Field(description="Join column on the owning side")
    foreign_key: Optional[str] = Field(
        default=None,
        alias="foreignKey",
        description="Column on the related side referencing the owner"
    )
    join_type: JoinKind = Field(default=JoinKind.INNER, alias="joinType")
    cascade_delete: bool = Field(default=False, alias="cascadeDelete")

    @field_validator("join_type", mode="before")
    @classmethod
    def normalize_join_type(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("table", "join", "foreign_key")
    @classmethod
    def validate_identifiers(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "Relationship identifier")

    @property
    def cascade_column(self) -> str:
        """Column on the related table matched against the owner's join column."""
        return self.foreign_key or self.join


class BackupConfig(BaseModel):
    """Backup destination for an entity's candidate rows."""

    model_config = {"frozen": True, "populate_by_name": True}

    enabled: bool = True
    table: Optional[str] = None
    schema_name: Optional[str] = Field(default=None, alias="schema")

    @field_validator("table", "schema_name")
    @classmethod
    def validate_identifiers(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return _check_identifier(v, "Backup identifier")

    @property
    def qualified_table(self) -> Optional[str]:
        if not self.table:
            return None
        return f"{self.schema_name}.{self.table}" if self.schema_name else self.table


class EntityConfig(BaseModel):
    """Retention rules for one logical entity."""

    model_config = {"frozen": True, "populate_by_name": True}

    name: str = Field(min_length=1)
    table: str
    id_column: str = Field(default="id", alias="idColumn")
    description: Optional[str] = None
    criteria: tuple[Criterion, ...] = ()
    related: tuple[RelatedEntityConfig, ...] = ()
    backup: BackupConfig = Field(default_factory=lambda: BackupConfig(enabled=False))

    @field_validator("table", "id_column")
    @classmethod
    def validate_identifiers(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Entity table and id column must not be empty")
        return _check_identifier(v, "Entity identifier")

    @property
    def cascade_relations(self) -> tuple[RelatedEntityConfig, ...]:
        return tuple(relation for relation in self.related if relation.cascade_delete)

    @property
    def backup_enabled(self) -> bool:
        return self.backup.enabled


class DistributionSettings(BaseModel):
    """Worker pool and batching settings, fixed for the duration of a run."""

    model_config = {"frozen": True, "populate_by_name": True}

    worker_count: int = Field(default=1, ge=1, le=64, alias="workerCount")
    batch_size: int = Field(default=1000, ge=1, alias="batchSize")


class BackupRetentionSettings(BaseModel):
    """How long backup rows are kept before purge_expired_backups removes them."""

    model_config = {"frozen": True, "populate_by_name": True}

    enabled: bool = False
    retention_days: int = Field(default=90, ge=1, le=3650, alias="retentionDays")


class TaskLoggingSettings(BaseModel):
    """Durable task history switch."""

    model_config = {"frozen": True}

    enabled: bool = True


class RetentionConfiguration(BaseModel):
    """Immutable snapshot of everything a retention run needs."""

    model_config = {"frozen": True, "populate_by_name": True}

    entities: tuple[EntityConfig, ...] = ()
    distribution: DistributionSettings = Field(default_factory=DistributionSettings)
    backup_retention: BackupRetentionSettings = Field(
        default_factory=BackupRetentionSettings,
        alias="backupRetention"
    )
    task_logging: TaskLoggingSettings = Field(
        default_factory=TaskLoggingSettings,
        alias="taskLogging"
    )

    @model_validator(mode="after")
    def validate_unique_names(self) -> "RetentionConfiguration":
        seen = set()
        for entity in self.entities:
            if entity.name in seen:
                raise ValueError(f"Duplicate entity name in retention configuration: {entity.name}")
            seen.add(entity.name)
        return self

    @property
    def entity_names(self) -> list[str]:
        return [entity.name for entity in self.entities]

    def get_entity(self, name: str) -> Optional[EntityConfig]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None
