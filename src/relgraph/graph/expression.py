"""Relation expressions.

A relation expression names the relations to traverse from a root entity,
e.g. ``pets``, ``[pets, children.[pets, movies.actors]]`` or
``pets(orderByName).owner``. The object form ``{"pets": True,
"children": {"pets": True}}`` is equivalent; the reserved key ``$modify``
holds modifier names for a node.

Grammar (whitespace is insignificant)::

    expression := list | items
    list       := '[' items ']'
    items      := item (',' item)*
    item       := name modifiers? ('.' (item | list))?
    modifiers  := '(' name (',' name)* ')'
"""

from __future__ import annotations

import string
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, NoReturn, Union

from relgraph.exceptions import GraphExpressionSyntaxError, RelationNotAllowedError

if TYPE_CHECKING:
    from relgraph.graph.nodes import GraphNode

ModifierRef = Union[str, Callable[..., Any]]

NAME_CHARS = frozenset(string.ascii_letters + string.digits + "_$")
MODIFY_KEY = "$modify"


class RelationExpression:
    """A node of a parsed relation expression.

    The root node has an empty name; every other node names a relation of
    its parent's entity. Children are kept in declaration order.
    """

    def __init__(
        self,
        name: str = "",
        modifiers: Iterable[ModifierRef] = (),
        children: Iterable[RelationExpression] = (),
    ) -> None:
        self.name = name
        self.modifiers: list[ModifierRef] = list(modifiers)
        self.children: dict[str, RelationExpression] = {}
        for child in children:
            self.add_child(child)

    def __repr__(self) -> str:
        return f"RelationExpression({self.to_string()!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RelationExpression):
            return NotImplemented
        return (
            self.name == other.name
            and self.modifiers == other.modifiers
            and self.children == other.children
        )

    def __bool__(self) -> bool:
        return bool(self.name or self.children)

    def __iter__(self) -> Iterator[RelationExpression]:
        return iter(self.children.values())

    # === Construction ===

    @classmethod
    def parse(cls, value: str | Mapping[str, Any] | RelationExpression | None) -> RelationExpression:
        """Parse a string or object-form expression.

        Raises:
            GraphExpressionSyntaxError: For malformed input or a relation
                repeated along one path
        """
        if value is None:
            return cls()
        if isinstance(value, RelationExpression):
            return value.copy()
        if isinstance(value, str):
            expression = _Parser(value).parse()
            text = value
        elif isinstance(value, Mapping):
            expression = cls()
            _fill_from_object(expression, value, repr(dict(value)))
            text = repr(dict(value))
        else:
            raise GraphExpressionSyntaxError(repr(value), "expected a string or a mapping")
        expression._check_paths(text)
        return expression

    @classmethod
    def from_graph(cls, nodes: Iterable[GraphNode]) -> RelationExpression:
        """Build the expression covering every relation present in a write graph.

        Relations given as ``None`` or ``[]`` are included so the current
        state of those relations is fetched too.
        """
        root = cls()
        for node in nodes:
            _fill_from_node(root, node)
        return root

    def copy(self) -> RelationExpression:
        return RelationExpression(
            self.name, self.modifiers, [child.copy() for child in self.children.values()]
        )

    def add_child(self, child: RelationExpression) -> RelationExpression:
        """Add a child, merging it into an existing child of the same name."""
        existing = self.children.get(child.name)
        if existing is None:
            self.children[child.name] = child
            return child
        for modifier in child.modifiers:
            if modifier not in existing.modifiers:
                existing.modifiers.append(modifier)
        for grandchild in child.children.values():
            existing.add_child(grandchild)
        return existing

    def merge(self, other: RelationExpression | str | Mapping[str, Any]) -> RelationExpression:
        """Return a new expression containing the relations of both."""
        merged = self.copy()
        for child in RelationExpression.parse(other).children.values():
            merged.add_child(child)
        return merged

    # === Inspection ===

    def paths(self, prefix: tuple[str, ...] = ()) -> list[tuple[str, ...]]:
        """Every relation path in the expression, parents before children."""
        result = []
        for child in self.children.values():
            path = (*prefix, child.name)
            result.append(path)
            result.extend(child.paths(path))
        return result

    def leaf_paths(self) -> list[tuple[str, ...]]:
        return [path for path in self.paths() if not self.node_at(path).children]

    def node_at(self, path: Iterable[str]) -> RelationExpression | None:
        node: RelationExpression | None = self
        for name in path:
            if node is None:
                return None
            node = node.children.get(name)
        return node

    def is_subexpression_of(self, allowed: RelationExpression | str | Mapping[str, Any]) -> bool:
        """Whether every path of this expression is present in ``allowed``."""
        return self.first_disallowed_path(RelationExpression.parse(allowed)) is None

    def first_disallowed_path(self, allowed: RelationExpression) -> tuple[str, ...] | None:
        for path in self.paths():
            if allowed.node_at(path) is None:
                return path
        return None

    def check_allowed(self, allowed: RelationExpression | str | Mapping[str, Any]) -> None:
        """Raise if any path of this expression is outside ``allowed``.

        Raises:
            RelationNotAllowedError: Naming the first path not allowed
        """
        allowed_expression = RelationExpression.parse(allowed)
        path = self.first_disallowed_path(allowed_expression)
        if path is not None:
            raise RelationNotAllowedError(".".join(path), allowed_expression.to_string())

    # === Modifiers ===

    def apply_modifier(
        self,
        path_expression: RelationExpression | str | Mapping[str, Any],
        modifier: ModifierRef | Iterable[ModifierRef],
    ) -> None:
        """Attach a modifier to every node named by the leaves of ``path_expression``.

        Paths that are not part of this expression are ignored.
        """
        modifiers: list[ModifierRef]
        if isinstance(modifier, str) or callable(modifier):
            modifiers = [modifier]
        else:
            modifiers = list(modifier)
        for path in RelationExpression.parse(path_expression).leaf_paths():
            node = self.node_at(path)
            if node is not None:
                node.modifiers.extend(modifiers)

    # === Output ===

    def _node_string(self) -> str:
        text = self.name
        names = [m for m in self.modifiers if isinstance(m, str)]
        if names:
            text += f"({', '.join(names)})"
        if len(self.children) == 1:
            text += "." + next(iter(self.children.values()))._node_string()
        elif self.children:
            text += ".[" + ", ".join(c._node_string() for c in self.children.values()) + "]"
        return text

    def to_string(self) -> str:
        """Render the expression in string form."""
        if len(self.children) == 1:
            return next(iter(self.children.values()))._node_string()
        return "[" + ", ".join(c._node_string() for c in self.children.values()) + "]"

    def to_dict(self) -> dict[str, Any]:
        """Render the expression in object form."""
        result: dict[str, Any] = {}
        for child in self.children.values():
            names = [m for m in child.modifiers if isinstance(m, str)]
            value: Any = child.to_dict() if child.children or names else True
            if names:
                value[MODIFY_KEY] = names
            result[child.name] = value
        return result

    def _check_paths(self, text: str, ancestors: tuple[str, ...] = ()) -> None:
        for child in self.children.values():
            if child.name in ancestors:
                path = ".".join((*ancestors, child.name))
                raise GraphExpressionSyntaxError(
                    text, f"relation '{child.name}' repeats along path '{path}'"
                )
            child._check_paths(text, (*ancestors, child.name))


def parse_expression(
    value: str | Mapping[str, Any] | RelationExpression | None,
) -> RelationExpression:
    """Parse a relation expression (see ``RelationExpression.parse``)."""
    return RelationExpression.parse(value)


def _fill_from_object(parent: RelationExpression, obj: Mapping[str, Any], text: str) -> None:
    for key, value in obj.items():
        if key == MODIFY_KEY:
            parent.modifiers.extend([value] if isinstance(value, str) else value)
            continue
        if value is False or value is None:
            continue
        child = RelationExpression(key)
        if isinstance(value, Mapping):
            _fill_from_object(child, value, text)
        elif value is not True:
            raise GraphExpressionSyntaxError(
                text, f"value for '{key}' must be True, False or a mapping"
            )
        parent.add_child(child)


def _fill_from_node(parent: RelationExpression, node: GraphNode) -> None:
    for name, value in node.relations.items():
        child = parent.add_child(RelationExpression(name))
        if value is None:
            continue
        for related in value if isinstance(value, list) else [value]:
            _fill_from_node(child, related)


class _Parser:
    """Recursive descent parser for the string form."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def parse(self) -> RelationExpression:
        root = RelationExpression()
        self._skip_ws()
        if self._at_end():
            return root
        if self._peek() == "[":
            self._parse_list(root)
        else:
            self._parse_items(root)
        self._skip_ws()
        if not self._at_end():
            char = self._peek()
            if char == "]":
                self._error("unmatched ']'")
            self._error(f"unexpected '{char}'")
        return root

    def _error(self, reason: str, position: int | None = None) -> NoReturn:
        raise GraphExpressionSyntaxError(
            self.text, reason, self.pos if position is None else position
        )

    def _at_end(self) -> bool:
        return self.pos >= len(self.text)

    def _peek(self) -> str:
        return "" if self._at_end() else self.text[self.pos]

    def _skip_ws(self) -> None:
        while not self._at_end() and self.text[self.pos].isspace():
            self.pos += 1

    def _parse_name(self) -> str:
        self._skip_ws()
        start = self.pos
        while not self._at_end() and self.text[self.pos] in NAME_CHARS:
            self.pos += 1
        if start == self.pos:
            if self._at_end():
                self._error("expected relation name, got end of expression")
            self._error(f"expected relation name, got '{self._peek()}'")
        return self.text[start : self.pos]

    def _parse_list(self, parent: RelationExpression) -> None:
        start = self.pos
        self.pos += 1  # '['
        self._parse_items(parent)
        self._skip_ws()
        if self._peek() != "]":
            if self._at_end():
                self._error("unmatched '['", start)
            self._error(f"expected ',' or ']', got '{self._peek()}'")
        self.pos += 1

    def _parse_items(self, parent: RelationExpression) -> None:
        while True:
            self._parse_item(parent)
            self._skip_ws()
            if self._peek() != ",":
                return
            self.pos += 1

    def _parse_modifiers(self) -> list[ModifierRef]:
        start = self.pos
        self.pos += 1  # '('
        modifiers: list[ModifierRef] = []
        while True:
            modifiers.append(self._parse_name())
            self._skip_ws()
            char = self._peek()
            if char == ",":
                self.pos += 1
            elif char == ")":
                self.pos += 1
                return modifiers
            elif self._at_end():
                self._error("unmatched '('", start)
            else:
                self._error(f"expected ',' or ')', got '{char}'")

    def _parse_item(self, parent: RelationExpression) -> None:
        node = RelationExpression(self._parse_name())
        self._skip_ws()
        if self._peek() == "(":
            node.modifiers = self._parse_modifiers()
            self._skip_ws()
        if self._peek() == ".":
            self.pos += 1
            self._skip_ws()
            if self._peek() == "[":
                self._parse_list(node)
            else:
                self._parse_item(node)
        parent.add_child(node)
