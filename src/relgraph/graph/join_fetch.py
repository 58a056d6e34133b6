"""Single-query graph fetching.

Builds one SELECT over the root table with a LEFT OUTER JOIN per
expression node. Each node's related table is wrapped in a subquery named
after its path so relation filters and modifiers apply to that node only.
Nested columns are labelled ``path:column`` (``pets:owner:name``); root
columns keep their storage names.

The flat rows are folded back into nested dicts, de-duplicating each path
by identity.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from relgraph.schema.relations import key_filter

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, FromClause, Select

    from relgraph.core.backend import SQLAlchemyBackend
    from relgraph.graph.fetch import FetchNode
    from relgraph.schema.models import EntityType, Modifier
    from relgraph.schema.relations import Key

logger = logging.getLogger(__name__)


class JoinFetch:
    """Fetches a whole graph with one statement."""

    def __init__(self, backend: SQLAlchemyBackend) -> None:
        self._backend = backend

    def build(
        self,
        entity: EntityType,
        plan: Sequence[FetchNode],
        *,
        keys: Sequence[Key] | None = None,
        where: Mapping[str, Any] | None = None,
        modifiers: Sequence[Modifier] = (),
        modify_root: Callable[[Select, Mapping[str, FromClause]], Select] | None = None,
    ) -> Select:
        """Build the joined statement.

        Args:
            entity: Root entity type
            plan: Resolved relation nodes
            keys: Root identities to select
            where: Equality filters on root fields
            modifiers: Modifiers applied to the root query
            modify_root: Callable receiving the statement and the mapping of
                relation path -> from-clause (``""`` is the root table)

        Returns:
            The SELECT statement
        """
        root = entity.table
        tables: dict[str, FromClause] = {"": root}
        columns: list[ColumnElement[Any]] = [column.label(column.name) for column in root.c]
        order_by: list[ColumnElement[Any]] = list(entity.id_columns)

        joined: FromClause = root

        def add_nodes(nodes: Sequence[FetchNode], owner_from: FromClause) -> None:
            nonlocal joined
            for node in nodes:
                relation = node.relation
                source, source_order = relation.related_source(node.modifiers, node.alias)
                joined = relation.outer_join(joined, owner_from, source, node.alias)
                tables[node.path] = source
                columns.extend(
                    source.c[column.name].label(f"{node.alias}:{column.name}")
                    for column in relation.related.table.c
                )
                # Within one owner: modifier ordering first, then identity
                order_by.extend(source_order)
                order_by.extend(source.c[column.name] for column in relation.related.id_columns)
                add_nodes(node.children, source)

        add_nodes(plan, root)

        statement = select(*columns).select_from(joined)
        for name, value in (where or {}).items():
            statement = statement.where(entity.column(name) == value)
        if keys is not None:
            statement = statement.where(key_filter(entity.id_columns, list(keys)))
        for modifier in modifiers:
            statement = modifier(statement)
        if modify_root is not None:
            statement = modify_root(statement, tables)
        return statement.order_by(*order_by)

    def fetch(
        self,
        entity: EntityType,
        plan: Sequence[FetchNode],
        *,
        keys: Sequence[Key] | None = None,
        where: Mapping[str, Any] | None = None,
        modifiers: Sequence[Modifier] = (),
        modify_root: Callable[[Select, Mapping[str, FromClause]], Select] | None = None,
    ) -> list[dict[str, Any]]:
        """Run the joined statement and assemble nested root dicts."""
        if keys is not None and not keys:
            return []
        if where:
            for name in where:
                entity.field(name)

        statement = self.build(
            entity, plan, keys=keys, where=where, modifiers=modifiers, modify_root=modify_root
        )
        entity.run_before("fetch", statement)
        rows = self._backend.execute(statement).rows
        logger.debug(f"Joined fetch of {entity.name} returned {len(rows)} flat row(s)")

        assembler = _Assembler(plan)
        roots: dict[Key, dict[str, Any]] = {}
        for row in rows:
            data = entity.from_row(row)
            identity = entity.identity(data)
            if identity is None:
                continue
            obj = roots.get(identity)
            if obj is None:
                obj = roots[identity] = assembler.new_object(data, plan)
            assembler.add(obj, plan, row)

        result = list(roots.values())
        entity.run_after("fetch", result)
        for node, objects in assembler.objects_by_node():
            node.relation.related.run_after("fetch", objects)
        return result


class _Assembler:
    """Folds flat joined rows into nested dicts."""

    def __init__(self, plan: Sequence[FetchNode]) -> None:
        self._nodes: dict[str, FetchNode] = {}
        self._objects: dict[str, dict[Key, dict[str, Any]]] = {}
        self._attached: set[tuple[str, int, Key]] = set()
        self._index(plan)

    def _index(self, nodes: Sequence[FetchNode]) -> None:
        for node in nodes:
            self._nodes[node.path] = node
            self._objects[node.path] = {}
            self._index(node.children)

    def new_object(self, data: dict[str, Any], children: Sequence[FetchNode]) -> dict[str, Any]:
        for child in children:
            data[child.relation.name] = child.relation.empty_value()
        return data

    def add(self, owner: dict[str, Any], nodes: Sequence[FetchNode], row: Mapping[str, Any]) -> None:
        for node in nodes:
            related = node.relation.related
            raw = {column.name: row[f"{node.alias}:{column.name}"] for column in related.table.c}
            data = related.from_row(raw)
            identity = related.identity(data)
            if identity is None:
                # LEFT JOIN found no related row
                continue

            cache = self._objects[node.path]
            obj = cache.get(identity)
            if obj is None:
                obj = cache[identity] = self.new_object(data, node.children)

            marker = (node.path, id(owner), identity)
            if marker not in self._attached:
                self._attached.add(marker)
                if node.relation.to_many:
                    owner[node.relation.name].append(obj)
                else:
                    owner[node.relation.name] = obj
            self.add(obj, node.children, row)

    def objects_by_node(self) -> list[tuple[FetchNode, list[dict[str, Any]]]]:
        return [(self._nodes[path], list(objs.values())) for path, objs in self._objects.items()]
