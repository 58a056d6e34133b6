"""Relation descriptors.

A relation is a directional edge from an owner entity type to a related
entity type. The set of kinds is closed; each kind builds its own fetch
statements, outer joins, and relate/unrelate statements, and states which
side of the edge stores the foreign key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.sql.util import ClauseAdapter

from relgraph.core.types import RelationKind, RelationInfo

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, FromClause, Select, Table
    from sqlalchemy.sql import Executable

    from relgraph.schema.models import EntityType, Modifier

Key = tuple[Any, ...]

# Label prefix for through-table columns selected alongside related rows
THROUGH_LABEL = "_through_"


def key_filter(columns: Sequence[ColumnElement[Any]], keys: Sequence[Key]) -> ColumnElement[bool]:
    """Build ``columns IN keys``, comparing full tuples for composite keys."""
    if len(columns) == 1:
        return columns[0].in_([key[0] for key in keys])
    return or_(*[and_(*[col == value for col, value in zip(columns, key)]) for key in keys])


class Relation(ABC):
    """Base class for relation descriptors.

    ``owner_fields`` and ``related_fields`` are the ordered join fields on
    each side; composite keys are matched positionally.
    """

    kind: ClassVar[RelationKind]
    to_many: ClassVar[bool] = True
    # Which side stores the foreign key, None when a middle table does
    fk_side: ClassVar[Literal["owner", "related"] | None]

    def __init__(
        self,
        name: str,
        owner: EntityType,
        related: EntityType,
        owner_fields: Sequence[str],
        related_fields: Sequence[str],
        filter: str | Modifier | None = None,
    ) -> None:
        if len(owner_fields) != len(related_fields) or not owner_fields:
            raise ValueError(
                f"Relation '{owner.name}.{name}' joins {len(owner_fields)} owner field(s) "
                f"to {len(related_fields)} related field(s); both sides need the same count."
            )
        self.name = name
        self.owner = owner
        self.related = related
        self.owner_fields = tuple(owner_fields)
        self.related_fields = tuple(related_fields)
        self.filter = filter

        # Fail fast on unknown join fields
        owner.columns(self.owner_fields)
        related.columns(self.related_fields)
        if isinstance(filter, str):
            related.get_modifier(filter)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.owner.name}.{self.name} -> {self.related.name})"

    # === Fetching ===

    def empty_value(self) -> list[dict[str, Any]] | None:
        return [] if self.to_many else None

    def owner_key(self, owner: Mapping[str, Any]) -> Key | None:
        """Join key of an owner row, or None if any join field is null."""
        return self.owner.values_of(owner, self.owner_fields)

    def related_key(self, related: Mapping[str, Any]) -> Key | None:
        return self.related.values_of(related, self.related_fields)

    def apply_modifiers(self, statement: Select, modifiers: Sequence[Modifier]) -> Select:
        """Apply the relation filter, then the caller's modifiers."""
        if self.filter is not None:
            statement = self.related.resolve_modifier(self.filter)(statement)
        for modifier in modifiers:
            statement = modifier(statement)
        return statement

    def related_source(
        self, modifiers: Sequence[Modifier], alias: str
    ) -> tuple[FromClause, list[ColumnElement[Any]]]:
        """The related table as a named subquery with filters applied.

        Returns:
            The subquery, and the ORDER BY clauses of the filter and
            modifiers rewritten against the subquery's columns
        """
        statement = self.apply_modifiers(select(self.related.table), modifiers)
        source = statement.subquery(alias)
        adapter = ClauseAdapter(source)
        return source, [adapter.traverse(clause) for clause in statement._order_by_clauses]

    @abstractmethod
    def build_fetch(self, owner_keys: Sequence[Key], modifiers: Sequence[Modifier]) -> Select:
        """Build one batched query for the related rows of ``owner_keys``."""

    @abstractmethod
    def match_key(self, row: Mapping[str, Any]) -> Key:
        """Owner join key a fetched (storage-keyed) row belongs to."""

    @abstractmethod
    def outer_join(
        self, joined: FromClause, owner_from: FromClause, related_from: FromClause, alias: str
    ) -> FromClause:
        """Extend ``joined`` with a LEFT OUTER JOIN to ``related_from``."""

    def _join_condition(
        self,
        left: FromClause,
        left_columns: Sequence[str],
        right: FromClause,
        right_columns: Sequence[str],
    ) -> ColumnElement[bool]:
        return and_(*[left.c[lc] == right.c[rc] for lc, rc in zip(left_columns, right_columns)])

    def _storage(self, entity: EntityType, fields: Sequence[str]) -> list[str]:
        return [entity.column_name(name) for name in fields]

    def _order_by_identity(self, statement: Select) -> Select:
        return statement.order_by(*self.related.id_columns)

    # === Writing ===

    def propagate(self, owner: dict[str, Any], related: dict[str, Any]) -> None:
        """Copy the join key into the side that stores the foreign key."""
        if self.fk_side == "related":
            related.update(zip(self.related_fields, [owner.get(f) for f in self.owner_fields]))
        elif self.fk_side == "owner":
            owner.update(zip(self.owner_fields, [related.get(f) for f in self.related_fields]))

    @abstractmethod
    def relate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        """Statement attaching an existing related row to the owner."""

    @abstractmethod
    def unrelate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        """Statement detaching a related row from the owner without deleting it."""

    def info(self) -> RelationInfo:
        return RelationInfo(
            name=self.name,
            kind=self.kind.value,
            target_entity=self.related.name,
            join_from=list(self.owner_fields),
            join_to=list(self.related_fields),
            has_filter=self.filter is not None,
        )


class _ForeignKeyRelation(Relation):
    """Relation where one of the two tables stores the foreign key."""

    def build_fetch(self, owner_keys: Sequence[Key], modifiers: Sequence[Modifier]) -> Select:
        statement = self.apply_modifiers(select(self.related.table), modifiers)
        statement = statement.where(
            key_filter(self.related.columns(self.related_fields), owner_keys)
        )
        return self._order_by_identity(statement)

    def match_key(self, row: Mapping[str, Any]) -> Key:
        return tuple(row[column] for column in self._storage(self.related, self.related_fields))

    def outer_join(
        self, joined: FromClause, owner_from: FromClause, related_from: FromClause, alias: str
    ) -> FromClause:
        condition = self._join_condition(
            owner_from,
            self._storage(self.owner, self.owner_fields),
            related_from,
            self._storage(self.related, self.related_fields),
        )
        return joined.outerjoin(related_from, condition)


class BelongsToOneRelation(_ForeignKeyRelation):
    """The owner row stores the foreign key (e.g. ``Animal.owner``)."""

    kind = RelationKind.BELONGS_TO_ONE
    to_many = False
    fk_side = "owner"

    def _set_owner_fk(self, owner: Mapping[str, Any], values: Sequence[Any]) -> Executable:
        key = self.owner.identity(owner)
        return (
            update(self.owner.table)
            .where(key_filter(self.owner.id_columns, [key]))
            .values(dict(zip(self._storage(self.owner, self.owner_fields), values)))
        )

    def relate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        return self._set_owner_fk(owner, [related.get(f) for f in self.related_fields])

    def unrelate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        return self._set_owner_fk(owner, [None] * len(self.owner_fields))


class HasManyRelation(_ForeignKeyRelation):
    """The related rows store the foreign key (e.g. ``Person.pets``)."""

    kind = RelationKind.HAS_MANY
    fk_side = "related"

    def _set_related_fk(self, related: Mapping[str, Any], values: Sequence[Any]) -> Executable:
        key = self.related.identity(related)
        return (
            update(self.related.table)
            .where(key_filter(self.related.id_columns, [key]))
            .values(dict(zip(self._storage(self.related, self.related_fields), values)))
        )

    def relate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        return self._set_related_fk(related, [owner.get(f) for f in self.owner_fields])

    def unrelate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        return self._set_related_fk(related, [None] * len(self.related_fields))


class HasOneRelation(HasManyRelation):
    """Like ``HasManyRelation`` with at most one related row."""

    kind = RelationKind.HAS_ONE
    to_many = False


class ManyToManyRelation(Relation):
    """Owner and related rows are connected through a middle table.

    ``from_columns`` of the middle table match the owner's join fields and
    ``to_columns`` match the related entity's join fields.
    """

    kind = RelationKind.MANY_TO_MANY
    fk_side = None

    def __init__(
        self,
        name: str,
        owner: EntityType,
        related: EntityType,
        owner_fields: Sequence[str],
        related_fields: Sequence[str],
        through: Table,
        from_columns: Sequence[str],
        to_columns: Sequence[str],
        filter: str | Modifier | None = None,
    ) -> None:
        super().__init__(name, owner, related, owner_fields, related_fields, filter)
        if len(from_columns) != len(self.owner_fields) or len(to_columns) != len(
            self.related_fields
        ):
            raise ValueError(
                f"Relation '{owner.name}.{name}': middle table '{through.name}' columns must "
                "match the join fields one to one."
            )
        self.through = through
        self.from_columns = tuple(from_columns)
        self.to_columns = tuple(to_columns)

    def _through_to_related(self, through: FromClause, related: FromClause) -> ColumnElement[bool]:
        return self._join_condition(
            through, self.to_columns, related, self._storage(self.related, self.related_fields)
        )

    def build_fetch(self, owner_keys: Sequence[Key], modifiers: Sequence[Modifier]) -> Select:
        through = self.through
        labels = [
            through.c[column].label(f"{THROUGH_LABEL}{i}")
            for i, column in enumerate(self.from_columns)
        ]
        statement = select(self.related.table, *labels).select_from(
            self.related.table.join(through, self._through_to_related(through, self.related.table))
        )
        statement = self.apply_modifiers(statement, modifiers)
        statement = statement.where(
            key_filter([through.c[column] for column in self.from_columns], owner_keys)
        )
        return self._order_by_identity(statement)

    def match_key(self, row: Mapping[str, Any]) -> Key:
        return tuple(row[f"{THROUGH_LABEL}{i}"] for i in range(len(self.from_columns)))

    def outer_join(
        self, joined: FromClause, owner_from: FromClause, related_from: FromClause, alias: str
    ) -> FromClause:
        through = self.through.alias(f"{alias}_through")
        joined = joined.outerjoin(
            through,
            self._join_condition(
                owner_from, self._storage(self.owner, self.owner_fields), through, self.from_columns
            ),
        )
        return joined.outerjoin(related_from, self._through_to_related(through, related_from))

    def _through_values(
        self, owner: Mapping[str, Any], related: Mapping[str, Any]
    ) -> dict[str, Any]:
        values = dict(zip(self.from_columns, [owner.get(f) for f in self.owner_fields]))
        values.update(zip(self.to_columns, [related.get(f) for f in self.related_fields]))
        return values

    def relate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        return insert(self.through).values(self._through_values(owner, related))

    def unrelate_statement(self, owner: Mapping[str, Any], related: Mapping[str, Any]) -> Executable:
        values = self._through_values(owner, related)
        return delete(self.through).where(
            and_(*[self.through.c[column] == value for column, value in values.items()])
        )

    def info(self) -> RelationInfo:
        info = super().info()
        info.through_table = self.through.name
        return info


RELATION_CLASSES: dict[str, type[Relation]] = {
    RelationKind.BELONGS_TO_ONE.value: BelongsToOneRelation,
    RelationKind.HAS_MANY.value: HasManyRelation,
    RelationKind.HAS_ONE.value: HasOneRelation,
    RelationKind.MANY_TO_MANY.value: ManyToManyRelation,
}
