"""Entity registry.

Registration happens in two phases so entities can reference each other
regardless of declaration order:

1. ``register()`` declares an entity type, its table and its relation specs
   (targets are referenced by name only).
2. ``finalize()`` resolves every relation spec into a relation descriptor
   once all entity types are known. It runs automatically on first use.

After the first query the registry is frozen and rejects new entities.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from relgraph.core.types import (
    EntityInfo,
    EntitySpec,
    FieldInfo,
    RelationKind,
    RelationSpec,
    ThroughSpec,
)
from relgraph.exceptions import (
    EntityAlreadyExistsError,
    RegistryFrozenError,
    UnknownEntityError,
    UnknownFieldError,
)
from relgraph.schema.models import EntityType, FieldDef
from relgraph.schema.relations import RELATION_CLASSES, ManyToManyRelation, Relation

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from relgraph.schema.capabilities import EntityHooks, Validator

logger = logging.getLogger(__name__)

# Mapping from field types to SQLAlchemy column types
FIELD_TYPE_MAP = {
    "string": lambda: String(255),
    "text": lambda: Text(),
    "int": lambda: Integer(),
    "float": lambda: Float(),
    "bool": lambda: Boolean(),
    "datetime": lambda: DateTime(timezone=True),
    "uuid": lambda: String(36),
    "json": lambda: JSONB().with_variant(JSON(), "sqlite"),
}


def _field_type_for(column: Column[Any]) -> str:
    """Best-effort field type for a column of an existing table."""
    python_type: Any
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return "string"
    for field_type, py in (("bool", bool), ("int", int), ("float", float)):
        if python_type is py:
            return field_type
    return "string"


class EntityRegistry:
    """Maps entity names to ``EntityType`` metadata.

    Example:
        registry = EntityRegistry()
        registry.register({
            "name": "Person",
            "table": "persons",
            "fields": [{"name": "id", "type": "int"}, {"name": "name"}],
            "relations": [{
                "name": "pets", "kind": "has_many", "target": "Animal",
                "join_from": "id", "join_to": "ownerId",
            }],
        })
        registry.register(...)  # Animal, in any order
        person = registry.resolve("Person")
    """

    def __init__(self, metadata: MetaData | None = None) -> None:
        self.metadata = metadata or MetaData()
        self._entities: dict[str, EntityType] = {}
        self._pending: dict[str, list[RelationSpec]] = {}
        self._frozen = False

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __iter__(self) -> Iterator[EntityType]:
        self.finalize()
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    @property
    def names(self) -> list[str]:
        """Registered entity names, sorted."""
        return sorted(self._entities)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # === Phase one ===

    def register(
        self,
        spec: EntitySpec | Mapping[str, Any],
        *,
        table: Table | None = None,
        validators: Iterable[Validator] = (),
        hooks: Iterable[EntityHooks] = (),
    ) -> EntityType:
        """Declare an entity type.

        Args:
            spec: Entity specification (dict or EntitySpec)
            table: Existing table to bind instead of building one from the
                spec's fields; fields default to the table's columns
            validators: Validators run before every insert and update
            hooks: Lifecycle hooks

        Returns:
            The declared entity type (relations resolve at finalize time)

        Raises:
            RegistryFrozenError: If queries already ran against this registry
            EntityAlreadyExistsError: If the name is already registered
        """
        if not isinstance(spec, EntitySpec):
            spec = EntitySpec.model_validate(spec)
        if self._frozen:
            raise RegistryFrozenError(spec.name)
        if spec.name in self._entities:
            raise EntityAlreadyExistsError(spec.name)

        if table is None:
            fields = [
                FieldDef(
                    name=f.name,
                    column_name=f.column_name or f.name,
                    type=f.type,
                    required=f.required,
                    unique=f.unique,
                    references=f.references,
                )
                for f in spec.fields
            ]
            field_names = {f.name for f in fields}
            for id_field in spec.id:
                if id_field not in field_names:
                    raise UnknownFieldError(id_field, spec.name, sorted(field_names))
            table = self._build_table(spec.table, spec.id, fields)
        else:
            fields = self._fields_from_table(spec, table)

        entity = EntityType(
            name=spec.name,
            table=table,
            id_fields=spec.id,
            fields=fields,
            modifiers=spec.modifiers,
            validators=validators,
            hooks=hooks,
            description=spec.description,
        )
        self._entities[spec.name] = entity
        self._pending[spec.name] = list(spec.relations)
        logger.debug(f"Registered entity {spec.name} on table {table.name}")
        return entity

    def _fields_from_table(self, spec: EntitySpec, table: Table) -> list[FieldDef]:
        declared = {f.name: f for f in spec.fields}
        by_column = {f.column_name or f.name: f for f in spec.fields}
        fields = []
        for column in table.columns:
            declared_field = by_column.get(column.name)
            name = declared_field.name if declared_field else column.name
            fields.append(
                FieldDef(
                    name=name,
                    column_name=column.name,
                    type=declared_field.type if declared_field else _field_type_for(column),
                    required=not column.nullable,
                    unique=bool(column.unique),
                )
            )
        names = {f.name for f in fields}
        for name in declared:
            if name not in names:
                raise UnknownFieldError(name, spec.name, sorted(names))
        return fields

    def _build_table(self, table_name: str, id_fields: list[str], fields: list[FieldDef]) -> Table:
        single_int_id = len(id_fields) == 1 and any(
            f.name == id_fields[0] and f.type == "int" for f in fields
        )
        columns: list[Column[Any]] = []
        for field in fields:
            col_type = FIELD_TYPE_MAP.get(field.type, lambda: String(255))()
            args: list[Any] = [field.column_name, col_type]
            if field.references:
                args.append(ForeignKey(field.references))
            is_id = field.name in id_fields
            columns.append(
                Column(
                    *args,
                    primary_key=is_id,
                    autoincrement=is_id and single_int_id,
                    nullable=not (field.required or is_id),
                    unique=field.unique or None,
                )
            )
        return Table(table_name, self.metadata, *columns)

    # === Phase two ===

    def finalize(self) -> None:
        """Resolve all pending relation specs into relation descriptors.

        Raises:
            UnknownEntityError: If a relation targets an unregistered entity
            UnknownFieldError: If a join field does not exist
        """
        if not any(self._pending.values()):
            return
        for owner_name, specs in self._pending.items():
            owner = self._entities[owner_name]
            for rel_spec in specs:
                owner.relations[rel_spec.name] = self._build_relation(owner, rel_spec)
            logger.debug(f"Resolved {len(specs)} relation(s) on {owner_name}")
        self._pending = {name: [] for name in self._pending}

    def _build_relation(self, owner: EntityType, spec: RelationSpec) -> Relation:
        if spec.target not in self._entities:
            raise UnknownEntityError(spec.target, self.names)
        related = self._entities[spec.target]
        relation_class = RELATION_CLASSES[spec.kind]

        if relation_class is ManyToManyRelation:
            if spec.through is None:
                raise ValueError(
                    f"Relation '{owner.name}.{spec.name}' is many_to_many and needs a "
                    "'through' table."
                )
            through = self._through_table(owner, related, spec, spec.through)
            return ManyToManyRelation(
                spec.name,
                owner,
                related,
                spec.join_from,
                spec.join_to,
                through=through,
                from_columns=spec.through.from_columns,
                to_columns=spec.through.to_columns,
                filter=spec.filter,
            )
        if spec.through is not None:
            raise ValueError(
                f"Relation '{owner.name}.{spec.name}' of kind {spec.kind} cannot have a "
                f"'through' table; only {RelationKind.MANY_TO_MANY.value} relations can."
            )
        return relation_class(
            spec.name, owner, related, spec.join_from, spec.join_to, filter=spec.filter
        )

    def _through_table(
        self, owner: EntityType, related: EntityType, spec: RelationSpec, through: ThroughSpec
    ) -> Table:
        """Find the middle table, or declare it from the join fields' types."""
        if through.table in self.metadata.tables:
            return self.metadata.tables[through.table]

        columns: list[Column[Any]] = []
        for column_name, field_name in zip(through.from_columns, spec.join_from):
            target = owner.column(field_name)
            columns.append(
                Column(column_name, target.type, ForeignKey(target), nullable=False)
            )
        for column_name, field_name in zip(through.to_columns, spec.join_to):
            target = related.column(field_name)
            columns.append(
                Column(column_name, target.type, ForeignKey(target), nullable=False)
            )
        return Table(
            through.table,
            self.metadata,
            *columns,
            PrimaryKeyConstraint(*through.from_columns, *through.to_columns),
        )

    # === Lookup ===

    def resolve(self, name: str) -> EntityType:
        """Get a registered entity type by name.

        Raises:
            UnknownEntityError: If the name is not registered
        """
        self.finalize()
        if name not in self._entities:
            raise UnknownEntityError(name, self.names)
        return self._entities[name]

    def freeze(self) -> None:
        """Resolve pending relations and reject further registrations."""
        if not self._frozen:
            self.finalize()
            self._frozen = True

    def create_all(self, engine: Engine) -> None:
        """Create the registered tables (tests and prototypes; not a migration tool)."""
        self.finalize()
        self.metadata.create_all(engine)

    def describe(self) -> list[EntityInfo]:
        """Describe every registered entity for tooling."""
        return [self.describe_entity(name) for name in self.names]

    def describe_entity(self, name: str) -> EntityInfo:
        entity = self.resolve(name)
        return EntityInfo(
            name=entity.name,
            table_name=entity.table.name,
            id=list(entity.id_fields),
            fields=[
                FieldInfo(
                    name=f.name,
                    column_name=f.column_name,
                    type=f.type,
                    required=f.required,
                    unique=f.unique,
                    references=f.references,
                )
                for f in entity.fields.values()
            ],
            relations=[relation.info() for relation in entity.relations.values()],
            modifiers=sorted(entity.modifiers),
            description=entity.description,
        )
