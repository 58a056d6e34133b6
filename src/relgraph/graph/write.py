"""Write plans.

Both graph writers compile their input into a ``WritePlan``: one
``PlanNode`` per distinct row, foreign key assignments between nodes,
middle-table links and removals. The plan is ordered with a stable
topological sort and then executed statement by statement on one
transaction:

1. removals of has-many and many-to-many children
2. node writes in dependency order (inserts, updates, relates)
3. middle-table links
4. deletes of replaced belongs-to-one rows
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relgraph.core.types import WriteAction
from relgraph.data.table_query import TableQuery
from relgraph.exceptions import CyclicGraphError, DanglingReferenceError
from relgraph.graph.identity import IdentityMap, template_refs

if TYPE_CHECKING:
    from relgraph.core.backend import SQLAlchemyBackend
    from relgraph.graph.nodes import GraphNode
    from relgraph.schema.models import EntityType
    from relgraph.schema.relations import Key, Relation

logger = logging.getLogger(__name__)


@dataclass
class Assignment:
    """Copies join values into a node's fields before it is written.

    The values come from ``source``'s written row, or are the constant
    ``values`` when there is no source (e.g. clearing a foreign key).
    """

    target_fields: tuple[str, ...]
    source: PlanNode | None = None
    source_fields: tuple[str, ...] = ()
    values: tuple[Any, ...] = ()

    def resolve(self) -> dict[str, Any]:
        if self.source is None:
            return dict(zip(self.target_fields, self.values))
        row = self.source.row
        if row is None:
            raise DanglingReferenceError(
                self.source.label, "the node was not written before the nodes depending on it"
            )
        return dict(zip(self.target_fields, [row.get(f) for f in self.source_fields]))


class PlanNode:
    """One row touched by a write plan."""

    def __init__(
        self,
        node: GraphNode,
        action: WriteAction,
        current: dict[str, Any] | None = None,
    ) -> None:
        self.node = node
        self.action = action
        # Row as it exists in the database (updates, references)
        self.current = current
        self.assignments: list[Assignment] = []
        self.depends_on: list[PlanNode] = []
        self.index = -1
        # Row after this node has been written
        self.row: dict[str, Any] | None = dict(current) if current is not None else None

    def __repr__(self) -> str:
        return f"PlanNode({self.action.value} {self.label})"

    @property
    def entity(self) -> EntityType:
        return self.node.entity

    @property
    def label(self) -> str:
        return self.node.label

    @property
    def identity(self) -> Key | None:
        if self.row is not None:
            return self.entity.identity(self.row)
        return self.node.identity

    def depend_on(self, other: PlanNode) -> None:
        if other is not self and other not in self.depends_on:
            self.depends_on.append(other)


@dataclass
class LinkOp:
    """Inserts a middle-table row once both endpoints are written."""

    relation: Relation
    owner: PlanNode
    related: PlanNode


@dataclass
class RemovalOp:
    """Detaches or deletes a related row that is missing from the input.

    ``after`` removals run once every node has been written (belongs-to-one
    rows can only be deleted after the owner no longer points at them).
    """

    relation: Relation
    owner: dict[str, Any]
    related: dict[str, Any]
    delete: bool
    after: bool = False


@dataclass
class WritePlan:
    """Ordered set of writes compiled from a graph."""

    nodes: list[PlanNode] = field(default_factory=list)
    links: list[LinkOp] = field(default_factory=list)
    removals: list[RemovalOp] = field(default_factory=list)
    identities: IdentityMap[PlanNode] = field(default_factory=IdentityMap)

    # === Building ===

    def add_node(self, node: PlanNode) -> PlanNode:
        node.index = len(self.nodes)
        self.nodes.append(node)
        if node.node.graph_id:
            self.identities.declare(node.node.graph_id, node)
        return node

    def add_edge(
        self, relation: Relation, owner: PlanNode, related: PlanNode, link: bool = True
    ) -> None:
        """Connect two plan nodes through ``relation``.

        Adds the foreign key assignment on whichever side stores it (and a
        dependency on the other side when that side is inserted), or a
        middle-table link for many-to-many relations when ``link`` is set.
        """
        if relation.fk_side == "related":
            related.assignments.append(
                Assignment(relation.related_fields, owner, relation.owner_fields)
            )
            if owner.action == WriteAction.INSERT:
                related.depend_on(owner)
        elif relation.fk_side == "owner":
            owner.assignments.append(
                Assignment(relation.owner_fields, related, relation.related_fields)
            )
            if related.action == WriteAction.INSERT:
                owner.depend_on(related)
        elif link:
            self.links.append(LinkOp(relation, owner, related))

    def add_template_dependencies(self) -> None:
        """Make nodes wait for the nodes their ``#ref{id.prop}`` values name."""
        for plan_node in self.nodes:
            for value in plan_node.node.data.values():
                for graph_id, _ in template_refs(value):
                    plan_node.depend_on(self.identities.node(graph_id))

    # === Ordering ===

    def order(self) -> list[PlanNode]:
        """Nodes in dependency order, ties broken by input order.

        Raises:
            CyclicGraphError: If no order exists
        """
        pending = {node.index: len(node.depends_on) for node in self.nodes}
        dependents: dict[int, list[PlanNode]] = {node.index: [] for node in self.nodes}
        for node in self.nodes:
            for dependency in node.depends_on:
                dependents[dependency.index].append(node)

        ready = [index for index, count in pending.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[PlanNode] = []
        while ready:
            node = self.nodes[heapq.heappop(ready)]
            ordered.append(node)
            for dependent in dependents[node.index]:
                pending[dependent.index] -= 1
                if pending[dependent.index] == 0:
                    heapq.heappush(ready, dependent.index)

        if len(ordered) < len(self.nodes):
            done = {node.index for node in ordered}
            raise CyclicGraphError(self._find_cycle([n for n in self.nodes if n.index not in done]))

        logger.debug(f"Write order: {[f'{n.action.value} {n.label}' for n in ordered]}")
        return ordered

    def _find_cycle(self, remaining: list[PlanNode]) -> list[str]:
        blocked = {node.index for node in remaining}
        path: list[PlanNode] = []
        seen: dict[int, int] = {}
        node = remaining[0]
        while node.index not in seen:
            seen[node.index] = len(path)
            path.append(node)
            node = next(d for d in node.depends_on if d.index in blocked)
        cycle = path[seen[node.index] :]
        return [n.label for n in cycle] + [node.label]

    def describe(self) -> list[dict[str, Any]]:
        """The ordered steps as plain dicts, for display."""
        steps = []
        for node in self.order():
            steps.append(
                {
                    "action": node.action.value,
                    "entity": node.entity.name,
                    "node": node.label,
                    "after": [d.label for d in node.depends_on],
                }
            )
        for link in self.links:
            steps.append(
                {
                    "action": "link",
                    "entity": link.relation.through.name,  # type: ignore[attr-defined]
                    "node": f"{link.owner.label} -> {link.related.label}",
                    "after": [link.owner.label, link.related.label],
                }
            )
        return steps

    # === Execution ===

    def execute(self, backend: SQLAlchemyBackend, batch_size: int = 500) -> None:
        """Run the plan on the backend's current transaction.

        Raises:
            CyclicGraphError: Before any statement if the graph has a cycle
            DanglingReferenceError: If a referenced row does not exist
            DBError: If the database rejects a statement
        """
        ordered = self.order()
        queries: dict[str, TableQuery] = {}

        def query(entity: EntityType) -> TableQuery:
            if entity.name not in queries:
                queries[entity.name] = TableQuery(backend, entity, batch_size)
            return queries[entity.name]

        self._load_references(query)

        for removal in self.removals:
            if not removal.after:
                self._remove(backend, query, removal)
        for node in ordered:
            self._write(query(node.entity), node)
        for link in self.links:
            logger.debug(f"Linking {link.owner.label} -> {link.related.label}")
            backend.execute(link.relation.relate_statement(link.owner.row or {}, link.related.row or {}))
        for removal in self.removals:
            if removal.after:
                self._remove(backend, query, removal)

    def _load_references(self, query: Callable[[EntityType], TableQuery]) -> None:
        """Fetch the rows of referenced nodes, failing on missing ones."""
        missing: dict[str, list[PlanNode]] = {}
        for node in self.nodes:
            if node.action == WriteAction.REFERENCE and node.row is None:
                missing.setdefault(node.entity.name, []).append(node)

        for nodes in missing.values():
            entity = nodes[0].entity
            rows = query(entity).select(keys=[node.node.identity for node in nodes])
            by_identity = {entity.identity(row): row for row in rows}
            for node in nodes:
                row = by_identity.get(node.node.identity)
                if row is None:
                    raise DanglingReferenceError(
                        f"{entity.name}{list(node.node.identity or ())}",
                        f"no {entity.name} row with this identity exists",
                    )
                node.current = row
                node.row = dict(row)

        for node in self.nodes:
            if node.row is not None and node.node.graph_id:
                self.identities.assign(node.node.graph_id, node.row)

    def _desired(self, node: PlanNode) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if node.action != WriteAction.REFERENCE:
            for name, value in node.node.data.items():
                values[name] = self.identities.resolve_template(value)
        for assignment in node.assignments:
            values.update(assignment.resolve())
        return values

    def _write(self, query: TableQuery, node: PlanNode) -> None:
        entity = node.entity
        desired = self._desired(node)

        if node.action == WriteAction.INSERT:
            node.row = query.insert(desired)
            node.node.data.update(node.row)
        else:
            current = node.current or {}
            patch = {
                name: value
                for name, value in desired.items()
                if name not in entity.id_fields and current.get(name) != value
            }
            if patch:
                query.update(entity.identity(current), patch)
            else:
                logger.debug(f"No changes for {node.label}")
            node.row = {**current, **patch}
            node.node.data.update(patch)

        if node.node.graph_id:
            self.identities.assign(node.node.graph_id, node.row)

    def _remove(
        self,
        backend: SQLAlchemyBackend,
        query: Callable[[EntityType], TableQuery],
        removal: RemovalOp,
    ) -> None:
        relation = removal.relation
        related = relation.related
        key = related.identity(removal.related)
        if relation.fk_side is None:
            # Many-to-many: the middle-table row goes first in both cases
            backend.execute(relation.unrelate_statement(removal.owner, removal.related))
        elif relation.fk_side == "related" and not removal.delete:
            backend.execute(relation.unrelate_statement(removal.owner, removal.related))
        if removal.delete:
            logger.debug(f"Deleting {related.name} {key} removed from '{relation.name}'")
            query(related).delete(key)
