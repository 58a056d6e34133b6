"""Main RelGraph engine and Entity class."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from relgraph.core.backend import SQLAlchemyBackend
from relgraph.core.connection import DatabaseConnection
from relgraph.core.types import (
    EntityInfo,
    FetchStrategy,
    InsertGraphOptions,
    UpsertGraphOptions,
)
from relgraph.data.table_query import TableQuery
from relgraph.exceptions import UniqueViolationError
from relgraph.graph.expression import ModifierRef, RelationExpression
from relgraph.graph.fetch import GraphFetcher, RootModifier
from relgraph.graph.insert import InsertGraphPlanner
from relgraph.graph.upsert import UpsertGraphPlanner

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.engine.url import URL

    from relgraph.core.backend import Transaction
    from relgraph.graph.nodes import GraphNode
    from relgraph.graph.write import WritePlan
    from relgraph.schema.models import EntityType
    from relgraph.schema.registry import EntityRegistry

logger = logging.getLogger(__name__)

Expression = str | Mapping[str, Any] | RelationExpression | None
Graph = Mapping[str, Any] | list[Any]


class Entity:
    """Represents one registered entity type with row and graph operations.

    Rows are plain dicts keyed by the entity's logical field names.
    """

    def __init__(self, name: str, db: RelGraph) -> None:
        """Initialize entity.

        Args:
            name: Entity name
            db: Parent RelGraph instance
        """
        self._name = name
        self._db = db
        self._query: TableQuery | None = None

    @property
    def name(self) -> str:
        """Get entity name."""
        return self._name

    @property
    def entity_type(self) -> EntityType:
        return self._db.registry.resolve(self._name)

    def _get_query(self) -> TableQuery:
        """Get or create the table query."""
        if self._query is None:
            self._query = TableQuery(self._db.backend, self.entity_type, self._db.batch_size)
            self._db.registry.freeze()
        return self._query

    # === Rows ===

    def find_by_id(self, key: Any, require: bool = False) -> dict[str, Any] | None:
        """Find a row by identity.

        Args:
            key: Identity value, or tuple for composite keys
            require: Raise ``ModelNotFoundError`` instead of returning None

        Returns:
            Row dict or None if not found
        """
        return self._get_query().find_by_id(key, require=require)

    def query(
        self,
        where: Mapping[str, Any] | None = None,
        modify: Any = None,
    ) -> list[dict[str, Any]]:
        """Select rows by equality filters.

        Args:
            where: Field -> value equality filters
            modify: Optional callable applied to the SELECT statement

        Returns:
            Matching rows ordered by identity
        """
        return self._get_query().select(where=where, modify=modify)

    def insert(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one row.

        Returns:
            The inserted row with its identity filled in
        """
        return self._get_query().insert(data)

    def update(self, key: Any, patch: Mapping[str, Any]) -> int:
        """Update fields of one row. Returns the number of affected rows."""
        return self._get_query().update(key, patch)

    def delete(self, key: Any) -> int:
        """Delete one row by identity. Returns the number of deleted rows."""
        return self._get_query().delete(key)

    # === Relations ===

    def related(self, relation: str, owner_key: Any, modifiers: Sequence[ModifierRef] = ()) -> Any:
        """Fetch the rows related to one owner through ``relation``.

        Args:
            relation: Relation name
            owner_key: Identity of the owner row
            modifiers: Modifiers (names or callables) for the related query

        Returns:
            List of rows for to-many relations, a row or None for to-one

        Raises:
            ModelNotFoundError: If the owner does not exist
            UnknownRelationError: If the relation is not defined
        """
        rel = self.entity_type.get_relation(relation)
        owner = self._get_query().find_by_id(owner_key, require=True) or {}
        self._db.fetcher.related(rel, [owner], modifiers)
        return owner[relation]

    def relate(self, relation: str, owner_key: Any, related_key: Any) -> bool:
        """Attach an existing related row to an existing owner.

        Returns:
            True if attached, False if a middle-table row already existed
        """
        owner, related, rel = self._endpoints(relation, owner_key, related_key)
        try:
            self._db.backend.execute(rel.relate_statement(owner, related))
        except UniqueViolationError:
            logger.debug(f"{self._name}.{relation} {owner_key} -> {related_key} already related")
            return False
        return True

    def unrelate(self, relation: str, owner_key: Any, related_key: Any) -> bool:
        """Detach a related row from an owner without deleting either.

        Returns:
            True if a relation was removed
        """
        owner, related, rel = self._endpoints(relation, owner_key, related_key)
        return self._db.backend.execute(rel.unrelate_statement(owner, related)).rowcount > 0

    def _endpoints(self, relation: str, owner_key: Any, related_key: Any) -> tuple[Any, Any, Any]:
        rel = self.entity_type.get_relation(relation)
        owner = self._get_query().find_by_id(owner_key, require=True)
        related = TableQuery(self._db.backend, rel.related, self._db.batch_size).find_by_id(
            related_key, require=True
        )
        return owner, related, rel

    # === Graphs ===

    def fetch_graph(self, expression: Expression = None, **kwargs: Any) -> list[dict[str, Any]]:
        """Fetch rows of this entity with related rows. See ``RelGraph.fetch_graph``."""
        return self._db.fetch_graph(self._name, expression, **kwargs)

    def insert_graph(self, graph: Graph, **kwargs: Any) -> Any:
        """Insert a graph rooted at this entity. See ``RelGraph.insert_graph``."""
        return self._db.insert_graph(self._name, graph, **kwargs)

    def upsert_graph(self, graph: Graph, **kwargs: Any) -> Any:
        """Upsert a graph rooted at this entity. See ``RelGraph.upsert_graph``."""
        return self._db.upsert_graph(self._name, graph, **kwargs)

    def describe(self) -> EntityInfo:
        """Get entity information."""
        return self._db.registry.describe_entity(self._name)


class RelGraph:
    """Relation graph engine.

    Fetches, inserts and upserts object graphs over the entities of an
    ``EntityRegistry``. The registry is frozen after the first query.

    Example:
        db = RelGraph("sqlite:///:memory:", registry)
        db.create_tables()
        people = db.fetch_graph("Person", "[pets, movies.actors]", ids=[1])
    """

    def __init__(
        self,
        url: str | URL | Engine,
        registry: EntityRegistry,
        echo: bool = False,
        fetch_strategy: FetchStrategy | str = FetchStrategy.SEPARATE,
        batch_size: int = 500,
    ) -> None:
        """Initialize RelGraph.

        Args:
            url: Database URL (postgresql://... or sqlite:///...) or an engine
            registry: Entity registry to operate on
            echo: Echo SQL statements (for debugging)
            fetch_strategy: Default fetch strategy, ``separate`` or ``join``
            batch_size: Maximum number of keys per ``IN`` list
        """
        self._connection = DatabaseConnection(url, echo=echo)
        self.registry = registry
        self.batch_size = batch_size
        self.backend = SQLAlchemyBackend(self._connection)
        self.fetcher = GraphFetcher(self.backend, fetch_strategy, batch_size)
        self._entities: dict[str, Entity] = {}

    @property
    def connection(self) -> DatabaseConnection:
        return self._connection

    def close(self) -> None:
        """Close database connection."""
        self._connection.close()

    def __enter__(self) -> RelGraph:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    # === Schema ===

    def entity(self, name: str) -> Entity:
        """Get an entity handle by name.

        Raises:
            UnknownEntityError: If the entity is not registered
        """
        self.registry.resolve(name)
        if name not in self._entities:
            self._entities[name] = Entity(name, self)
        return self._entities[name]

    def create_tables(self) -> None:
        """Create the registered tables (tests and prototypes)."""
        self.registry.create_all(self._connection.engine)

    def describe(self) -> list[EntityInfo]:
        """Describe every registered entity."""
        return self.registry.describe()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a block in one transaction.

        Graph operations inside the block reuse it; an error rolls back the
        whole block.
        """
        with self.backend.transaction() as trx:
            yield trx

    # === Graph operations ===

    def fetch_graph(
        self,
        entity: str,
        expression: Expression = None,
        *,
        ids: Sequence[Any] | None = None,
        where: Mapping[str, Any] | None = None,
        modify_root: RootModifier | None = None,
        modifiers: Mapping[str, ModifierRef | Sequence[ModifierRef]] | None = None,
        allow: Expression = None,
        strategy: FetchStrategy | str | None = None,
        require: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch rows of ``entity`` with the relations named by ``expression``.

        Args:
            entity: Root entity name
            expression: Relation expression, e.g. ``"[pets, movies.actors]"``
            ids: Root identities (tuples for composite keys)
            where: Equality filters on root fields
            modify_root: Callable ``(select, tables)`` applied to the root query
            modifiers: Path expression -> modifier(s) for nested relations
            allow: Allowed graph; anything outside it is rejected
            strategy: ``separate`` or ``join`` (defaults to the engine setting)
            require: Raise ``ModelNotFoundError`` for missing identities

        Returns:
            Root rows with relations nested as lists (to-many) or dict/None
        """
        entity_type = self.registry.resolve(entity)
        result = self.fetcher.fetch(
            entity_type,
            expression,
            ids=ids,
            where=where,
            modify_root=modify_root,
            modifiers=modifiers,
            allow=allow,
            strategy=strategy,
            require=require,
        )
        self.registry.freeze()
        return result

    def plan_insert_graph(
        self, entity: str, graph: Graph, *, relate: bool | list[str] = False
    ) -> WritePlan:
        """Build the write plan of an insert graph without executing it."""
        options = InsertGraphOptions(relate=relate)
        _, plan = InsertGraphPlanner(options).plan(self.registry.resolve(entity), graph)
        return plan

    def insert_graph(
        self, entity: str, graph: Graph, *, relate: bool | list[str] = False
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Insert a graph of new rows in one transaction.

        Args:
            entity: Root entity name
            graph: Dict (or list of dicts) with nested relations and the
                ``#id``, ``#ref`` and ``#dbRef`` markers
            relate: Relate nodes that carry their identity instead of
                inserting them; True or a list of relation paths

        Returns:
            The input shape with identities and foreign keys filled in
        """
        entity_type = self.registry.resolve(entity)
        roots, plan = InsertGraphPlanner(InsertGraphOptions(relate=relate)).plan(
            entity_type, graph
        )
        with self.backend.transaction():
            plan.execute(self.backend, self.batch_size)
        self.registry.freeze()
        return self._output(graph, roots, plan)

    def insert_graph_and_fetch(
        self, entity: str, graph: Graph, *, relate: bool | list[str] = False
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Insert a graph, then fetch it back with every relation it contains."""
        with self.transaction():
            entity_type = self.registry.resolve(entity)
            roots, plan = InsertGraphPlanner(InsertGraphOptions(relate=relate)).plan(
                entity_type, graph
            )
            plan.execute(self.backend, self.batch_size)
            return self._fetch_back(entity_type, graph, roots)

    def upsert_graph(self, entity: str, graph: Graph, **options: Any) -> dict[str, Any] | list[dict[str, Any]]:
        """Insert, update, relate, unrelate and delete rows to match ``graph``.

        Args:
            entity: Root entity name
            graph: Dict (or list of dicts) describing the desired state
            **options: ``UpsertGraphOptions`` fields: ``relate``,
                ``unrelate``, ``no_delete``, ``no_insert``, ``no_update``
                (bool or list of relation paths) and ``update_only``

        Returns:
            The input shape with identities and foreign keys filled in
        """
        entity_type = self.registry.resolve(entity)
        upsert_options = UpsertGraphOptions(**options)
        with self.transaction():
            roots, plan = UpsertGraphPlanner(self.fetcher, upsert_options).plan(entity_type, graph)
            plan.execute(self.backend, self.batch_size)
        self.registry.freeze()
        return self._output(graph, roots, plan)

    def upsert_graph_and_fetch(
        self, entity: str, graph: Graph, **options: Any
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Upsert a graph, then fetch it back with every relation it contains."""
        entity_type = self.registry.resolve(entity)
        upsert_options = UpsertGraphOptions(**options)
        with self.transaction():
            roots, plan = UpsertGraphPlanner(self.fetcher, upsert_options).plan(entity_type, graph)
            plan.execute(self.backend, self.batch_size)
            return self._fetch_back(entity_type, graph, roots)

    def _fetch_back(
        self, entity: EntityType, graph: Graph, roots: list[GraphNode]
    ) -> dict[str, Any] | list[dict[str, Any]]:
        keys = [root.identity for root in roots if root.identity is not None]
        fetched = self.fetcher.fetch(entity, RelationExpression.from_graph(roots), ids=keys)
        self.registry.freeze()
        by_identity = {entity.identity(row): row for row in fetched}
        result = [by_identity[root.identity] for root in roots if root.identity in by_identity]
        return result if isinstance(graph, list) else (result[0] if result else {})

    def _output(
        self, graph: Graph, roots: list[GraphNode], plan: WritePlan
    ) -> dict[str, Any] | list[dict[str, Any]]:
        resolve = {
            node.node.graph_id: node.node for node in plan.nodes if node.node.graph_id
        }
        result = [root.to_dict(resolve) for root in roots]
        return result if isinstance(graph, list) else result[0]

    # === Statistics ===

    @property
    def statement_count(self) -> int:
        """Number of statements executed so far."""
        return self.backend.statement_count

    def reset_statistics(self) -> None:
        self.backend.reset_statistics()
