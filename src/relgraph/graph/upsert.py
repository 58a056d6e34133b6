"""Upsert graph planning.

The current state of the input graph is fetched first (inside the write
transaction), then every relation present in the input is diffed against
it by identity:

- input nodes found among the current related rows are updated
- other input nodes are inserted, or related when they name an existing row
- current related rows missing from the input are deleted or unrelated

Relations absent from an input dict are left untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from relgraph.core.types import UpsertGraphOptions, WriteAction
from relgraph.exceptions import ModelNotFoundError, ValidationError
from relgraph.graph.expression import RelationExpression
from relgraph.graph.nodes import ID_KEY, GraphNode, parse_graph
from relgraph.graph.write import Assignment, PlanNode, RemovalOp, WritePlan

if TYPE_CHECKING:
    from relgraph.graph.fetch import GraphFetcher
    from relgraph.schema.models import EntityType
    from relgraph.schema.relations import Key, Relation

logger = logging.getLogger(__name__)


class UpsertGraphPlanner:
    """Compiles an upsert graph into a ``WritePlan``.

    Planning reads the current graph through ``fetcher``; run it inside the
    transaction the plan is executed in.
    """

    def __init__(self, fetcher: GraphFetcher, options: UpsertGraphOptions | None = None) -> None:
        self._fetcher = fetcher
        self.options = options or UpsertGraphOptions()
        self._plan = WritePlan()
        self._refs: list[tuple[Relation, PlanNode, GraphNode]] = []

    def plan(
        self, entity: EntityType, graph: Mapping[str, Any] | list[Any]
    ) -> tuple[list[GraphNode], WritePlan]:
        """Parse ``graph``, fetch its current state and build the write plan.

        Raises:
            ValidationError: For a malformed graph or a duplicate ``#id``
            ModelNotFoundError: With ``update_only`` when a root does not exist
            DanglingReferenceError: For a ``#ref`` no node declares
        """
        roots = parse_graph(entity, graph)
        self._plan = WritePlan()
        self._refs = []

        keys = [root.identity for root in roots if root.identity is not None]
        current: dict[Key, dict[str, Any]] = {}
        if keys:
            expression = RelationExpression.from_graph(roots)
            for row in self._fetcher.fetch(entity, expression, ids=keys):
                identity = entity.identity(row)
                if identity is not None:
                    current[identity] = row

        for root in roots:
            identity = root.identity
            row = current.get(identity) if identity is not None else None
            if row is None and self.options.update_only:
                if identity is None:
                    raise ValidationError(
                        f"update_only requires every root to carry its identity ({root.label})",
                        {ID_KEY: "identity missing"},
                        entity.name,
                    )
                raise ModelNotFoundError(entity.name, identity if len(identity) > 1 else identity[0])
            plan_node = self._node(root, row, "")
            if plan_node is not None:
                self._diff(plan_node, root, row)

        for relation, owner, child in self._refs:
            self._plan.add_edge(relation, owner, self._plan.identities.node(child.ref or ""))
        self._plan.add_template_dependencies()

        logger.debug(
            f"Planned upsert graph for {entity.name}: {len(self._plan.nodes)} node(s), "
            f"{len(self._plan.links)} link(s), {len(self._plan.removals)} removal(s)"
        )
        return roots, self._plan

    def _add(self, node: GraphNode, action: WriteAction, current: dict[str, Any] | None) -> PlanNode:
        try:
            return self._plan.add_node(PlanNode(node, action, current))
        except ValueError as e:
            raise ValidationError(str(e), {ID_KEY: "duplicate"}, node.entity.name) from e

    def _node(self, node: GraphNode, current: dict[str, Any] | None, path: str) -> PlanNode | None:
        """Plan node for an input node, or None when the insert is suppressed."""
        options = self.options
        if current is not None:
            if node.db_ref is not None or options.applies("no_update", path):
                return self._add(node, WriteAction.REFERENCE, current)
            return self._add(node, WriteAction.UPDATE, current)
        if node.db_ref is not None:
            return self._add(node, WriteAction.REFERENCE, None)
        if path and node.identity is not None and options.applies("relate", path):
            return self._add(node, WriteAction.REFERENCE, None)
        if options.update_only or options.applies("no_insert", path):
            logger.debug(f"Skipping insert of {node.label}")
            return None
        return self._add(node, WriteAction.INSERT, None)

    def _diff(self, owner: PlanNode, node: GraphNode, current: dict[str, Any] | None) -> None:
        entity = node.entity
        for name, value in node.relations.items():
            relation = entity.relations[name]
            related = relation.related
            path = f"{node.relation_path}.{name}" if node.relation_path else name

            existing = _as_list(current.get(name) if current is not None else None)
            by_identity = {related.identity(row): row for row in existing}
            kept: set[Key] = set()

            for child in _as_list(value):
                if child.ref is not None:
                    self._refs.append((relation, owner, child))
                    continue
                identity = child.identity
                row = None
                if identity is not None:
                    row = by_identity.get(identity)
                    if row is not None:
                        kept.add(identity)
                child_plan = self._node(child, row, path)
                if child_plan is None:
                    continue
                # Rows that are already related need no middle-table link
                self._plan.add_edge(relation, owner, child_plan, link=row is None)
                self._diff(child_plan, child, row)

            for row in existing:
                identity = related.identity(row)
                if identity not in kept:
                    self._remove(relation, owner, row, path, replaced=value is not None)

    def _remove(
        self, relation: Relation, owner: PlanNode, row: dict[str, Any], path: str, replaced: bool
    ) -> None:
        options = self.options
        delete = not (options.applies("unrelate", path) or options.applies("no_delete", path))
        owner_row = owner.current or {}

        if relation.fk_side == "owner":
            if not replaced:
                owner.assignments.append(
                    Assignment(relation.owner_fields, values=(None,) * len(relation.owner_fields))
                )
            if delete:
                self._plan.removals.append(RemovalOp(relation, owner_row, row, delete=True, after=True))
            return

        if delete:
            self._plan.removals.append(RemovalOp(relation, owner_row, row, delete=True))
        elif options.applies("unrelate", path):
            self._plan.removals.append(RemovalOp(relation, owner_row, row, delete=False))


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
