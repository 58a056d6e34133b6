"""Row-level data operations for relgraph."""

from relgraph.data.table_query import TableQuery

__all__ = [
    "TableQuery",
]
