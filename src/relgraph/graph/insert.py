"""Insert graph planning.

Every node of the input graph becomes one row to insert, except
``#dbRef`` nodes and, with the ``relate`` option, nodes that carry their
full identity: those are existing rows that are only related to their
parent. ``#ref`` nodes stand for the node declaring the same ``#id``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from relgraph.core.types import InsertGraphOptions, WriteAction
from relgraph.exceptions import ValidationError
from relgraph.graph.nodes import ID_KEY, GraphNode, parse_graph
from relgraph.graph.write import PlanNode, WritePlan

if TYPE_CHECKING:
    from relgraph.schema.models import EntityType

logger = logging.getLogger(__name__)


class InsertGraphPlanner:
    """Compiles an insert graph into a ``WritePlan`` without touching the database."""

    def __init__(self, options: InsertGraphOptions | None = None) -> None:
        self.options = options or InsertGraphOptions()

    def plan(
        self, entity: EntityType, graph: Mapping[str, Any] | list[Any]
    ) -> tuple[list[GraphNode], WritePlan]:
        """Parse ``graph`` and build its write plan.

        Returns:
            The parsed root nodes and the plan

        Raises:
            ValidationError: For a malformed graph or a duplicate ``#id``
            DanglingReferenceError: For a ``#ref`` no node declares
        """
        roots = parse_graph(entity, graph)
        plan = WritePlan()
        by_node: dict[int, PlanNode] = {}

        # Pass 1: one plan node per non-#ref node, declaring #ids
        for root in roots:
            for node in root.walk():
                if node.ref is not None:
                    continue
                plan_node = PlanNode(node, self._action(node))
                try:
                    by_node[id(node)] = plan.add_node(plan_node)
                except ValueError as e:
                    raise ValidationError(str(e), {ID_KEY: "duplicate"}, entity.name) from e

        # Pass 2: edges, with #ref nodes resolved to the node they name
        for root in roots:
            for node in root.walk():
                if node.ref is not None:
                    continue
                owner = by_node[id(node)]
                for relation, child in node.children():
                    if child.ref is not None:
                        related = plan.identities.node(child.ref)
                    else:
                        related = by_node[id(child)]
                    plan.add_edge(relation, owner, related)

        plan.add_template_dependencies()
        logger.debug(
            f"Planned insert graph for {entity.name}: {len(plan.nodes)} node(s), "
            f"{len(plan.links)} link(s)"
        )
        return roots, plan

    def _action(self, node: GraphNode) -> WriteAction:
        if node.db_ref is not None:
            return WriteAction.REFERENCE
        if (
            node.relation_path
            and self.options.applies("relate", node.relation_path)
            and node.entity.identity(node.data) is not None
        ):
            return WriteAction.REFERENCE
        return WriteAction.INSERT
