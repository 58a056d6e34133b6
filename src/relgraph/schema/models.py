"""Entity type metadata.

An ``EntityType`` binds a registered entity name to its SQLAlchemy table,
its identity fields, the logical name <-> storage column mapping, its
relations and the capabilities it opted into.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from relgraph.exceptions import (
    OperationVetoedError,
    UnknownFieldError,
    UnknownModifierError,
    UnknownRelationError,
)

if TYPE_CHECKING:
    from sqlalchemy import Column, Select, Table

    from relgraph.schema.capabilities import EntityHooks, Validator
    from relgraph.schema.relations import Relation

Modifier = Callable[["Select"], "Select"]


def generate_uuid() -> str:
    """Generate a new UUID as string."""
    return str(uuid4())


@dataclass(frozen=True)
class FieldDef:
    """A registered field: logical name bound to a storage column."""

    name: str
    column_name: str
    type: str
    required: bool = False
    unique: bool = False
    references: str | None = None


class EntityType:
    """A registered entity type.

    Rows are exchanged with callers as plain dicts keyed by logical field
    names; statements use the storage column names.
    """

    def __init__(
        self,
        name: str,
        table: Table,
        id_fields: Iterable[str],
        fields: Iterable[FieldDef],
        modifiers: Mapping[str, Modifier] | None = None,
        validators: Iterable[Validator] = (),
        hooks: Iterable[EntityHooks] = (),
        description: str | None = None,
    ) -> None:
        self.name = name
        self.table = table
        self.fields: dict[str, FieldDef] = {f.name: f for f in fields}
        self.id_fields: tuple[str, ...] = tuple(id_fields)
        self.modifiers: dict[str, Modifier] = dict(modifiers or {})
        self.validators = list(validators)
        self.hooks = list(hooks)
        self.description = description
        self.relations: dict[str, Relation] = {}

        self._name_to_column = {f.name: f.column_name for f in self.fields.values()}
        self._column_to_name = {f.column_name: f.name for f in self.fields.values()}

        for field_name in self.id_fields:
            self.field(field_name)

    def __repr__(self) -> str:
        return f"EntityType({self.name!r})"

    # === Fields ===

    def field(self, name: str) -> FieldDef:
        """Get a field definition by logical name."""
        if name not in self.fields:
            raise UnknownFieldError(name, self.name, sorted(self.fields))
        return self.fields[name]

    def column(self, name: str) -> Column[Any]:
        """Get the table column for a logical field name."""
        return self.table.c[self.field(name).column_name]

    def columns(self, names: Iterable[str]) -> list[Column[Any]]:
        return [self.column(name) for name in names]

    def column_name(self, name: str) -> str:
        return self.field(name).column_name

    @property
    def fields_by_column(self) -> dict[str, str]:
        """Storage column name -> logical field name."""
        return self._column_to_name

    @property
    def id_columns(self) -> list[Column[Any]]:
        return self.columns(self.id_fields)

    @property
    def generates_uuid(self) -> bool:
        """Whether identities are generated client-side as UUID strings."""
        return len(self.id_fields) == 1 and self.fields[self.id_fields[0]].type == "uuid"

    def from_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Convert a storage-keyed row to a logical dict.

        Keys that are not columns of this entity (labels, joined columns)
        are dropped.
        """
        return {
            name: row[column]
            for column, name in self._column_to_name.items()
            if column in row
        }

    def to_storage(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Convert a logical dict to storage column names."""
        result = {}
        for name, value in data.items():
            result[self.column_name(name)] = value
        return result

    def values_of(self, data: Mapping[str, Any], names: Iterable[str]) -> tuple[Any, ...] | None:
        """Ordered values of ``names`` in ``data``, or None if any is missing."""
        values = tuple(data.get(name) for name in names)
        if any(value is None for value in values):
            return None
        return values

    def identity(self, data: Mapping[str, Any]) -> tuple[Any, ...] | None:
        """Identity tuple of a row, or None if not (fully) set."""
        return self.values_of(data, self.id_fields)

    def identity_dict(self, key: Iterable[Any]) -> dict[str, Any]:
        return dict(zip(self.id_fields, key, strict=True))

    # === Relations and modifiers ===

    def get_relation(self, name: str, path: str | None = None) -> Relation:
        """Get a relation by name.

        Args:
            name: Relation name
            path: Full expression path, reported in the error

        Raises:
            UnknownRelationError: If the relation is not defined
        """
        if name not in self.relations:
            raise UnknownRelationError(name, self.name, path, sorted(self.relations))
        return self.relations[name]

    def get_modifier(self, name: str) -> Modifier:
        if name not in self.modifiers:
            raise UnknownModifierError(name, self.name, sorted(self.modifiers))
        return self.modifiers[name]

    def resolve_modifier(self, modifier: str | Modifier) -> Modifier:
        """Resolve a modifier reference (name or callable) to a callable."""
        if isinstance(modifier, str):
            return self.get_modifier(modifier)
        return modifier

    # === Capabilities ===

    def validate(self, data: dict[str, Any], *, patch: bool) -> dict[str, Any]:
        """Run every validator in registration order."""
        for validator in self.validators:
            data = validator.validate(self, data, patch=patch)
        return data

    def run_before(self, operation: str, *args: Any) -> None:
        """Run ``before_<operation>`` hooks.

        Raises:
            OperationVetoedError: If a hook returns False
        """
        for hook in self.hooks:
            if getattr(hook, f"before_{operation}")(self, *args) is False:
                raise OperationVetoedError(operation, self.name, type(hook).__name__)

    def run_after(self, operation: str, *args: Any) -> None:
        for hook in self.hooks:
            getattr(hook, f"after_{operation}")(self, *args)
