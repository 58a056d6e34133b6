"""Graph-local identities.

Nodes of a write graph name themselves with ``#id`` and point at each
other with ``#ref``. Property values may also embed a reference with the
``#ref{id.prop}`` template, which is substituted once the referenced node
has been written.
"""

from __future__ import annotations

import re
from typing import Any, Generic, TypeVar

from relgraph.exceptions import DanglingReferenceError

T = TypeVar("T")

TEMPLATE_PATTERN = re.compile(r"#ref\{(?P<id>[^.{}]+)\.(?P<prop>[^{}]+)\}")


class _Pending:
    """Marker for a declared identity whose row has not been written yet."""

    _instance: _Pending | None = None

    def __new__(cls) -> _Pending:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()


def template_refs(value: Any) -> list[tuple[str, str]]:
    """The (graph id, property) pairs referenced by a ``#ref{id.prop}`` string."""
    if not isinstance(value, str):
        return []
    return [(m.group("id"), m.group("prop")) for m in TEMPLATE_PATTERN.finditer(value)]


class IdentityMap(Generic[T]):
    """Maps graph-local ids to their node and, once written, its row.

    The map is scoped to one write call and is discarded afterwards.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, T] = {}
        self._rows: dict[str, dict[str, Any]] = {}

    def __contains__(self, graph_id: str) -> bool:
        return graph_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def declare(self, graph_id: str, node: T) -> None:
        """Declare ``graph_id`` for ``node``.

        Raises:
            ValueError: If the id is already declared
        """
        if graph_id in self._nodes:
            raise ValueError(f"Duplicate graph id '{graph_id}'")
        self._nodes[graph_id] = node

    def node(self, graph_id: str) -> T:
        """The node declared for ``graph_id``.

        Raises:
            DanglingReferenceError: If no node declares this id
        """
        if graph_id not in self._nodes:
            raise DanglingReferenceError(f"#ref:{graph_id}", "no node in the graph declares this #id")
        return self._nodes[graph_id]

    def assign(self, graph_id: str, row: dict[str, Any]) -> None:
        """Record the written row (identity filled in) of a declared node."""
        self.node(graph_id)
        self._rows[graph_id] = row

    def resolve(self, graph_id: str) -> dict[str, Any] | _Pending:
        """The written row for ``graph_id``, or ``PENDING`` if not written yet.

        Raises:
            DanglingReferenceError: If no node declares this id
        """
        self.node(graph_id)
        return self._rows.get(graph_id, PENDING)

    def require(self, graph_id: str) -> dict[str, Any]:
        """Like ``resolve`` but an unwritten node is an error too."""
        row = self.resolve(graph_id)
        if isinstance(row, _Pending):
            raise DanglingReferenceError(
                f"#ref:{graph_id}", "the referenced node has not been written yet"
            )
        return row

    def resolve_template(self, value: Any) -> Any:
        """Substitute ``#ref{id.prop}`` templates in a property value.

        A value consisting of exactly one template is replaced by the
        referenced property value itself (keeping its type); templates
        embedded in a longer string are substituted as text.

        Raises:
            DanglingReferenceError: For an unknown id, an unwritten node or
                a property the referenced row does not have
        """
        if not isinstance(value, str) or "#ref{" not in value:
            return value

        def lookup(graph_id: str, prop: str) -> Any:
            row = self.require(graph_id)
            if prop not in row:
                raise DanglingReferenceError(
                    f"#ref{{{graph_id}.{prop}}}", f"the referenced node has no property '{prop}'"
                )
            return row[prop]

        whole = TEMPLATE_PATTERN.fullmatch(value)
        if whole:
            return lookup(whole.group("id"), whole.group("prop"))
        return TEMPLATE_PATTERN.sub(
            lambda m: str(lookup(m.group("id"), m.group("prop"))), value
        )
