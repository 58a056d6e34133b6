"""Relation graphs: expressions, fetching and graph writes."""

from relgraph.graph.expression import RelationExpression, parse_expression
from relgraph.graph.fetch import GraphFetcher
from relgraph.graph.identity import PENDING, IdentityMap
from relgraph.graph.insert import InsertGraphPlanner
from relgraph.graph.nodes import GraphNode, parse_graph
from relgraph.graph.upsert import UpsertGraphPlanner
from relgraph.graph.write import WritePlan

__all__ = [
    "RelationExpression",
    "parse_expression",
    "GraphFetcher",
    "GraphNode",
    "parse_graph",
    "IdentityMap",
    "PENDING",
    "InsertGraphPlanner",
    "UpsertGraphPlanner",
    "WritePlan",
]
