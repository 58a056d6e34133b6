"""Write graphs.

Plain nested dicts given to ``insert_graph``/``upsert_graph`` are parsed
into ``GraphNode`` trees before any planning happens, so the planners work
on a validated structure:

- ``#id``: graph-local identity of the node
- ``#ref``: the node stands in for the node whose ``#id`` has this value
- ``#dbRef``: the node stands in for an existing row with this identity
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any, Union

from relgraph.exceptions import ValidationError

if TYPE_CHECKING:
    from relgraph.schema.models import EntityType
    from relgraph.schema.relations import Relation

ID_KEY = "#id"
REF_KEY = "#ref"
DB_REF_KEY = "#dbRef"

RelationValue = Union["GraphNode", list["GraphNode"], None]


class GraphNode:
    """One object of a write graph."""

    def __init__(
        self,
        entity: EntityType,
        path: str,
        relation_path: str = "",
        data: dict[str, Any] | None = None,
        graph_id: str | None = None,
        ref: str | None = None,
        db_ref: tuple[Any, ...] | None = None,
    ) -> None:
        self.entity = entity
        # Position in the input, e.g. "[0].pets[1]"; used in error messages
        self.path = path
        # Dotted relation names from the root, e.g. "pets.owner"
        self.relation_path = relation_path
        self.data: dict[str, Any] = data or {}
        self.relations: dict[str, RelationValue] = {}
        self.graph_id = graph_id
        self.ref = ref
        self.db_ref = db_ref

    def __repr__(self) -> str:
        return f"GraphNode({self.label})"

    @property
    def label(self) -> str:
        """Readable node name for messages, e.g. ``Person[0].pets[1]``."""
        if self.graph_id:
            return f"{self.entity.name}(#id={self.graph_id})"
        return f"{self.entity.name}{self.path}"

    @property
    def identity(self) -> tuple[Any, ...] | None:
        """Declared identity of the node, from ``#dbRef`` or its id fields."""
        if self.db_ref is not None:
            return self.db_ref
        return self.entity.identity(self.data)

    def children(self) -> Iterator[tuple[Relation, GraphNode]]:
        """Iterate over (relation, child) pairs in input order."""
        for name, value in self.relations.items():
            relation = self.entity.relations[name]
            if value is None:
                continue
            for child in value if isinstance(value, list) else [value]:
                yield relation, child

    def walk(self) -> Iterator[GraphNode]:
        """This node and every descendant, depth first."""
        yield self
        for _, child in self.children():
            yield from child.walk()

    def to_dict(self, resolve: Mapping[str, GraphNode] | None = None) -> dict[str, Any]:
        """Render the node back to a nested dict.

        ``#ref`` nodes render as the properties of the node they reference
        when ``resolve`` (graph id -> node) is given.
        """
        if self.ref is not None:
            target = (resolve or {}).get(self.ref)
            return dict(target.data) if target is not None else {REF_KEY: self.ref}
        result = dict(self.data)
        if self.db_ref is not None:
            result = {**self.entity.identity_dict(self.db_ref), **result}
        for name, value in self.relations.items():
            if value is None:
                result[name] = None
            elif isinstance(value, list):
                result[name] = [child.to_dict(resolve) for child in value]
            else:
                result[name] = value.to_dict(resolve)
        return result


def _normalize_db_ref(entity: EntityType, value: Any, path: str) -> tuple[Any, ...]:
    if isinstance(value, Mapping):
        key = tuple(value.get(name) for name in entity.id_fields)
    elif isinstance(value, (list, tuple)):
        key = tuple(value)
    else:
        key = (value,)
    if len(key) != len(entity.id_fields) or any(v is None for v in key):
        raise ValidationError(
            f"Invalid {DB_REF_KEY} at '{path}': expected {len(entity.id_fields)} identity "
            f"value(s) for {', '.join(entity.id_fields)}",
            {DB_REF_KEY: "identity does not match the entity's id fields"},
            entity_name=entity.name,
        )
    return key


def _parse_node(entity: EntityType, obj: Any, path: str, relation_path: str) -> GraphNode:
    if not isinstance(obj, Mapping):
        raise ValidationError(
            f"Graph node at '{path or '[root]'}' must be an object, got {type(obj).__name__}",
            entity_name=entity.name,
        )

    node = GraphNode(entity, path, relation_path)
    field_errors: dict[str, str] = {}

    for key, value in obj.items():
        if key == ID_KEY:
            if not isinstance(value, str) or not value:
                field_errors[key] = "must be a non-empty string"
            node.graph_id = value
        elif key == REF_KEY:
            if not isinstance(value, str) or not value:
                field_errors[key] = "must be a non-empty string"
            node.ref = value
        elif key == DB_REF_KEY:
            node.db_ref = _normalize_db_ref(entity, value, path)
        elif key in entity.relations:
            relation = entity.relations[key]
            child_path = f"{relation_path}.{key}" if relation_path else key
            if value is None:
                node.relations[key] = None
            elif relation.to_many:
                if not isinstance(value, list):
                    field_errors[key] = "to-many relation must be a list"
                    continue
                node.relations[key] = [
                    _parse_node(relation.related, item, f"{path}.{key}[{i}]", child_path)
                    for i, item in enumerate(value)
                ]
            else:
                if isinstance(value, list):
                    field_errors[key] = "to-one relation must be an object or null"
                    continue
                node.relations[key] = _parse_node(
                    relation.related, value, f"{path}.{key}", child_path
                )
        elif key in entity.fields:
            node.data[key] = value
        else:
            field_errors[key] = "unknown property"

    if node.ref is not None and (node.data or node.relations or node.db_ref or node.graph_id):
        field_errors[REF_KEY] = f"a {REF_KEY} node cannot have other properties"
    if node.db_ref is not None and (node.data or node.relations):
        field_errors[DB_REF_KEY] = f"a {DB_REF_KEY} node cannot have other properties"

    if field_errors:
        raise ValidationError(
            f"Invalid graph node {entity.name} at '{path or '[root]'}': "
            + ", ".join(f"{k} ({v})" for k, v in field_errors.items()),
            field_errors,
            entity_name=entity.name,
        )
    return node


def parse_graph(entity: EntityType, graph: Mapping[str, Any] | list[Any]) -> list[GraphNode]:
    """Parse a dict (or list of dicts) into graph nodes rooted at ``entity``.

    Raises:
        ValidationError: For unknown properties, malformed markers or
            relation values of the wrong shape
    """
    if isinstance(graph, list):
        roots = [_parse_node(entity, item, f"[{i}]", "") for i, item in enumerate(graph)]
    else:
        roots = [_parse_node(entity, graph, "", "")]
    for root in roots:
        if root.ref is not None:
            raise ValidationError(
                f"Root node at '{root.path or '[root]'}' cannot be a {REF_KEY} node",
                {REF_KEY: "only allowed inside relations"},
                entity_name=entity.name,
            )
    return roots
