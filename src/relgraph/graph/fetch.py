"""Graph fetching.

Resolves a relation expression against the registry and loads the root
rows plus every relation it names. Two strategies produce the same nested
dicts:

- ``separate``: one batched query per relation edge, breadth first
- ``join``: a single query with one LEFT OUTER JOIN per expression node
  (see ``relgraph.graph.join_fetch``)
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relgraph.core.types import FetchStrategy
from relgraph.data.table_query import TableQuery
from relgraph.exceptions import ModelNotFoundError
from relgraph.graph.expression import ModifierRef, RelationExpression
from relgraph.graph.join_fetch import JoinFetch

if TYPE_CHECKING:
    from sqlalchemy import FromClause, Select

    from relgraph.core.backend import SQLAlchemyBackend
    from relgraph.schema.models import EntityType, Modifier
    from relgraph.schema.relations import Key, Relation

logger = logging.getLogger(__name__)

RootModifier = Callable[["Select", Mapping[str, "FromClause"]], "Select"]


@dataclass
class FetchNode:
    """A relation expression node resolved against the registry."""

    relation: Relation
    path: str
    modifiers: list[Modifier] = field(default_factory=list)
    children: list[FetchNode] = field(default_factory=list)

    @property
    def alias(self) -> str:
        """Name of this node's source in a joined query, e.g. ``pets:owner``."""
        return self.path.replace(".", ":")


def plan_fetch(entity: EntityType, expression: RelationExpression, prefix: str = "") -> list[FetchNode]:
    """Resolve every relation and modifier named by ``expression``.

    Raises:
        UnknownRelationError: For a relation the owner does not define
        UnknownModifierError: For a modifier name the related entity does
            not define
    """
    nodes = []
    for child in expression:
        path = f"{prefix}.{child.name}" if prefix else child.name
        relation = entity.get_relation(child.name, path)
        nodes.append(
            FetchNode(
                relation=relation,
                path=path,
                modifiers=[relation.related.resolve_modifier(m) for m in child.modifiers],
                children=plan_fetch(relation.related, child, path),
            )
        )
    return nodes


def prepare_expression(
    expression: str | Mapping[str, Any] | RelationExpression | None,
    allow: str | Mapping[str, Any] | RelationExpression | None = None,
    modifiers: Mapping[str, ModifierRef | Sequence[ModifierRef]] | None = None,
) -> RelationExpression:
    """Parse an expression, check it against ``allow`` and attach ``modifiers``.

    Args:
        expression: Expression to fetch
        allow: Allowed graph; paths outside it are rejected
        modifiers: Mapping of path expression -> modifier(s) to attach

    Raises:
        GraphExpressionSyntaxError: If either expression is malformed
        RelationNotAllowedError: If the expression leaves the allowed graph
    """
    parsed = RelationExpression.parse(expression)
    if allow is not None:
        parsed.check_allowed(allow)
    for path_expression, modifier in (modifiers or {}).items():
        parsed.apply_modifier(path_expression, modifier)
    return parsed


class GraphFetcher:
    """Loads root rows and their related rows as nested dicts."""

    def __init__(
        self,
        backend: SQLAlchemyBackend,
        strategy: FetchStrategy | str = FetchStrategy.SEPARATE,
        batch_size: int = 500,
    ) -> None:
        """Initialize the fetcher.

        Args:
            backend: Statement execution backend
            strategy: Default strategy, ``separate`` or ``join``
            batch_size: Maximum number of owner keys per relation query
        """
        self._backend = backend
        self._strategy = FetchStrategy(strategy)
        self._batch_size = batch_size

    @property
    def strategy(self) -> FetchStrategy:
        return self._strategy

    def fetch(
        self,
        entity: EntityType,
        expression: str | Mapping[str, Any] | RelationExpression | None = None,
        *,
        ids: Sequence[Any] | None = None,
        where: Mapping[str, Any] | None = None,
        modify_root: RootModifier | None = None,
        modifiers: Mapping[str, ModifierRef | Sequence[ModifierRef]] | None = None,
        allow: str | Mapping[str, Any] | RelationExpression | None = None,
        strategy: FetchStrategy | str | None = None,
        require: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch root rows with the relations named by ``expression``.

        Args:
            entity: Root entity type
            expression: Relations to load
            ids: Root identities (scalars, or tuples for composite keys)
            where: Equality filters on root fields
            modify_root: Callable ``(select, tables)`` applied to the root
                query; ``tables`` maps relation paths to their from-clauses
                (``""`` is the root table)
            modifiers: Path expression -> modifier(s) for nested relations
            allow: Allowed graph
            strategy: Override the default strategy for this call
            require: Raise when a requested identity (or, without ids, any
                root) is not found

        Returns:
            Root rows as dicts, relations nested under their names

        Raises:
            ModelNotFoundError: If ``require`` and rows are missing
        """
        parsed = prepare_expression(expression, allow, modifiers)
        plan = plan_fetch(entity, parsed)
        root_modifiers = [entity.resolve_modifier(m) for m in parsed.modifiers]
        keys = None if ids is None else [_as_key(key) for key in ids]
        chosen = FetchStrategy(strategy) if strategy is not None else self._strategy

        logger.debug(
            f"Fetching {entity.name} with '{parsed.to_string()}' using {chosen.value} strategy"
        )
        if chosen == FetchStrategy.JOIN:
            roots = JoinFetch(self._backend).fetch(
                entity, plan, keys=keys, where=where, modifiers=root_modifiers, modify_root=modify_root
            )
        else:
            roots = self._select_roots(entity, keys, where, root_modifiers, modify_root)
            self.load(roots, plan)

        if require:
            _check_required(entity, roots, keys, where)
        return roots

    def _select_roots(
        self,
        entity: EntityType,
        keys: list[Key] | None,
        where: Mapping[str, Any] | None,
        modifiers: list[Modifier],
        modify_root: RootModifier | None,
    ) -> list[dict[str, Any]]:
        def modify(statement: Select) -> Select:
            for modifier in modifiers:
                statement = modifier(statement)
            if modify_root is not None:
                statement = modify_root(statement, {"": entity.table})
            return statement

        query = TableQuery(self._backend, entity, self._batch_size)
        return query.select(where=where, keys=keys, modify=modify)

    def load(self, owners: list[dict[str, Any]], plan: list[FetchNode]) -> None:
        """Load the relations of ``plan`` into already fetched owner rows."""
        queue = deque((owners, node) for node in plan)
        while queue:
            level_owners, node = queue.popleft()
            related = self._load_edge(level_owners, node)
            if related:
                queue.extend((related, child) for child in node.children)

    def related(
        self,
        relation: Relation,
        owners: list[dict[str, Any]],
        modifiers: Sequence[ModifierRef] = (),
    ) -> list[dict[str, Any]]:
        """Load one relation into ``owners`` and return the unique related rows."""
        node = FetchNode(
            relation=relation,
            path=relation.name,
            modifiers=[relation.related.resolve_modifier(m) for m in modifiers],
        )
        return self._load_edge(owners, node)

    def _load_edge(self, owners: list[dict[str, Any]], node: FetchNode) -> list[dict[str, Any]]:
        relation = node.relation
        related_entity = relation.related

        by_key: dict[Key, list[dict[str, Any]]] = {}
        for owner in owners:
            owner[relation.name] = relation.empty_value()
            key = relation.owner_key(owner)
            if key is not None:
                by_key.setdefault(key, []).append(owner)
        if not by_key:
            logger.debug(f"No owner keys for '{node.path}', skipping query")
            return []

        keys = list(by_key)
        shared: dict[Key, dict[str, Any]] = {}
        attached: set[tuple[int, Key]] = set()
        for start in range(0, len(keys), self._batch_size):
            chunk = keys[start : start + self._batch_size]
            statement = relation.build_fetch(chunk, node.modifiers)
            related_entity.run_before("fetch", statement)
            logger.debug(f"Fetching '{node.path}' for {len(chunk)} owner key(s)")

            batch = []
            for row in self._backend.execute(statement).rows:
                data = related_entity.from_row(row)
                identity = related_entity.identity(data)
                if identity is None:
                    continue
                obj = shared.setdefault(identity, data)
                batch.append(obj)
                for owner in by_key.get(relation.match_key(row), []):
                    if (id(owner), identity) in attached:
                        continue
                    attached.add((id(owner), identity))
                    if relation.to_many:
                        owner[relation.name].append(obj)
                    else:
                        owner[relation.name] = obj
            related_entity.run_after("fetch", batch)

        return list(shared.values())


def _as_key(key: Any) -> Key:
    if isinstance(key, tuple):
        return key
    if isinstance(key, list):
        return tuple(key)
    return (key,)


def _check_required(
    entity: EntityType,
    roots: list[dict[str, Any]],
    keys: list[Key] | None,
    where: Mapping[str, Any] | None,
) -> None:
    if keys is None:
        if not roots:
            raise ModelNotFoundError(entity.name, dict(where or {}))
        return
    found = {entity.identity(row) for row in roots}
    for key in keys:
        if key not in found:
            raise ModelNotFoundError(entity.name, key if len(key) > 1 else key[0])
