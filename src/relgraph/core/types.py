"""Core types and specifications for relgraph.

Specs are the input format for registering entities; Info models are the
JSON-serializable output format used by tooling.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class FieldType(StrEnum):
    """Supported field types."""

    STRING = "string"
    TEXT = "text"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    DATETIME = "datetime"
    JSON = "json"
    UUID = "uuid"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid field type values."""
        return [t.value for t in cls]


class RelationKind(StrEnum):
    """Relation kinds between entities."""

    BELONGS_TO_ONE = "belongs_to_one"  # e.g., Animal -> owner Person
    HAS_MANY = "has_many"  # e.g., Person -> pets
    HAS_ONE = "has_one"  # e.g., Person -> profile
    MANY_TO_MANY = "many_to_many"  # e.g., Movie <-> actors through a middle table

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relation kind values."""
        return [k.value for k in cls]


class FetchStrategy(StrEnum):
    """How a relation graph is fetched."""

    SEPARATE = "separate"  # One query per relation level
    JOIN = "join"  # One outer-join query for the whole graph


class WriteAction(StrEnum):
    """What a write plan does with one graph node."""

    INSERT = "insert"
    UPDATE = "update"  # Existing row, changed properties only
    REFERENCE = "reference"  # Existing row, only relation keys are written


class FieldSpec(BaseModel):
    """Specification for a field definition."""

    name: str = Field(..., description="Logical property name")
    type: FieldType = Field(default=FieldType.STRING, description="Field data type")
    column_name: str | None = Field(
        default=None, description="Storage column name (defaults to the logical name)"
    )
    required: bool = Field(default=False, description="Whether the column is NOT NULL")
    unique: bool = Field(default=False, description="Whether values must be unique")
    references: str | None = Field(
        default=None, description="Foreign key target as 'table.column'"
    )
    description: str | None = Field(default=None, description="Human-readable description")

    model_config = {"use_enum_values": True}


class ThroughSpec(BaseModel):
    """Middle table of a many-to-many relation.

    ``from_columns`` match the owner's join fields, ``to_columns`` match the
    related entity's join fields, both positionally.
    """

    table: str = Field(..., description="Middle table name")
    from_columns: list[str] = Field(..., description="Columns referencing the owner")
    to_columns: list[str] = Field(..., description="Columns referencing the related entity")

    @field_validator("from_columns", "to_columns", mode="before")
    @classmethod
    def coerce_to_list(cls, value: Any) -> Any:
        """Accept a single name where a list of names is expected."""
        if isinstance(value, str):
            return [value]
        return value


class RelationSpec(BaseModel):
    """Specification for a relation from an owner entity to a target entity."""

    name: str = Field(..., description="Relation name (e.g., 'pets' on Person)")
    kind: RelationKind = Field(..., description="Relation kind")
    target: str = Field(..., description="Target entity name, resolved at finalize time")
    join_from: list[str] = Field(..., description="Owner-side join fields")
    join_to: list[str] = Field(..., description="Target-side join fields")
    through: ThroughSpec | None = Field(default=None, description="Many-to-many middle table")
    filter: Any = Field(
        default=None, description="Modifier name or callable applied to every fetch"
    )
    description: str | None = Field(default=None, description="Relation description")

    model_config = {"use_enum_values": True}

    @field_validator("join_from", "join_to", mode="before")
    @classmethod
    def coerce_to_list(cls, value: Any) -> Any:
        """Accept a single name where a list of names is expected."""
        if isinstance(value, str):
            return [value]
        return value


class EntitySpec(BaseModel):
    """Specification for registering an entity type."""

    name: str = Field(..., description="Entity name (PascalCase recommended)")
    table: str = Field(..., description="Storage table name")
    id: list[str] = Field(default_factory=lambda: ["id"], description="Identity fields")
    fields: list[FieldSpec] = Field(default_factory=list, description="Field definitions")
    relations: list[RelationSpec] = Field(
        default_factory=list, description="Relation definitions"
    )
    modifiers: dict[str, Any] = Field(
        default_factory=dict, description="Named query modifiers (name -> callable)"
    )
    description: str | None = Field(default=None, description="Human-readable description")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_to_list(cls, value: Any) -> Any:
        """Accept a single name where a list of names is expected."""
        if isinstance(value, str):
            return [value]
        return value


class FieldInfo(BaseModel):
    """Information about a registered field (output format)."""

    name: str
    column_name: str
    type: str
    required: bool
    unique: bool
    references: str | None = None


class RelationInfo(BaseModel):
    """Information about a resolved relation (output format)."""

    name: str
    kind: str
    target_entity: str
    join_from: list[str]
    join_to: list[str]
    through_table: str | None = None
    has_filter: bool = False


class EntityInfo(BaseModel):
    """Information about a registered entity (output format)."""

    name: str
    table_name: str
    id: list[str]
    fields: list[FieldInfo]
    relations: list[RelationInfo] = Field(default_factory=list)
    modifiers: list[str] = Field(default_factory=list)
    description: str | None = None


class GraphWriteOptions(BaseModel):
    """Base for write options whose flags may be limited to relation paths."""

    relate: bool | list[str] = False

    def applies(self, option: str, path: str) -> bool:
        """Check whether a flag applies to the relation at ``path``.

        The root of the graph has the empty path and is only covered by
        flags set to ``True``.
        """
        value = getattr(self, option)
        if isinstance(value, bool):
            return value
        return path in value


class InsertGraphOptions(GraphWriteOptions):
    """Options for insert_graph.

    ``relate`` treats nodes that carry a full identity as existing rows to
    relate instead of inserting them. It may be a list of relation paths
    (e.g. ``["movies", "pets.owner"]``) to limit it to those relations.
    """


class UpsertGraphOptions(GraphWriteOptions):
    """Options for upsert_graph.

    Each flag may be a bool or a list of relation paths it applies to.
    """

    unrelate: bool | list[str] = False
    no_delete: bool | list[str] = False
    no_insert: bool | list[str] = False
    no_update: bool | list[str] = False
    update_only: bool = False
