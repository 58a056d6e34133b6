"""Tests for the entity registry and relation descriptors."""

from typing import Any

import pytest
from sqlalchemy import Column, Integer, String, Table

from relgraph import (
    EntityAlreadyExistsError,
    EntityRegistry,
    RegistryFrozenError,
    RelGraph,
    RelationKind,
    UnknownEntityError,
    UnknownFieldError,
    UnknownModifierError,
    UnknownRelationError,
)
from relgraph.schema.relations import (
    BelongsToOneRelation,
    HasManyRelation,
    ManyToManyRelation,
)


def _simple(name: str, table: str, relations: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "name": name,
        "table": table,
        "fields": [
            {"name": "id", "type": "int"},
            {"name": "label"},
            {"name": "parentId", "type": "int"},
        ],
        "relations": relations or [],
    }


class TestRegistration:
    """Test declaring entity types."""

    def test_relations_resolve_in_any_order(self) -> None:
        """Test that a relation may target an entity registered later."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Parent",
                "parents",
                [
                    {
                        "name": "items",
                        "kind": "has_many",
                        "target": "Item",
                        "join_from": "id",
                        "join_to": "parentId",
                    }
                ],
            )
        )
        registry.register(_simple("Item", "items"))

        relation = registry.resolve("Parent").get_relation("items")
        assert isinstance(relation, HasManyRelation)
        assert relation.related is registry.resolve("Item")

    def test_relation_kinds(self, registry: EntityRegistry) -> None:
        """Test that each kind resolves to its descriptor."""
        person = registry.resolve("Person")
        assert isinstance(person.get_relation("pets"), HasManyRelation)
        assert isinstance(person.get_relation("parent"), BelongsToOneRelation)
        assert isinstance(person.get_relation("movies"), ManyToManyRelation)
        assert person.get_relation("pets").fk_side == "related"
        assert person.get_relation("parent").fk_side == "owner"
        assert person.get_relation("movies").fk_side is None
        assert person.get_relation("parent").to_many is False

    def test_duplicate_name(self, registry: EntityRegistry) -> None:
        """Test that names are unique within a registry."""
        with pytest.raises(EntityAlreadyExistsError):
            registry.register(_simple("Person", "people"))

    def test_unknown_identity_field(self) -> None:
        """Test that identity fields must be declared."""
        registry = EntityRegistry()
        spec = _simple("Thing", "things")
        spec["id"] = "code"
        with pytest.raises(UnknownFieldError) as exc_info:
            registry.register(spec)
        assert exc_info.value.field_name == "code"

    def test_unknown_target_entity(self) -> None:
        """Test that a relation to an unregistered entity fails on first use."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [{"name": "x", "kind": "has_many", "target": "Nope", "join_from": "id", "join_to": "id"}],
            )
        )
        with pytest.raises(UnknownEntityError) as exc_info:
            registry.resolve("Thing")
        assert exc_info.value.entity_name == "Nope"
        assert exc_info.value.available_entities == ["Thing"]

    def test_unknown_join_field(self) -> None:
        """Test that join fields must exist on both sides."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [
                    {
                        "name": "children",
                        "kind": "has_many",
                        "target": "Thing",
                        "join_from": "id",
                        "join_to": "ownerId",
                    }
                ],
            )
        )
        with pytest.raises(UnknownFieldError):
            registry.finalize()

    def test_join_field_count_mismatch(self) -> None:
        """Test that both sides of a join need the same number of fields."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [
                    {
                        "name": "children",
                        "kind": "has_many",
                        "target": "Thing",
                        "join_from": ["id", "label"],
                        "join_to": "parentId",
                    }
                ],
            )
        )
        with pytest.raises(ValueError, match="same count"):
            registry.finalize()

    def test_many_to_many_needs_through(self) -> None:
        """Test that many-to-many relations require a middle table."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [
                    {
                        "name": "peers",
                        "kind": "many_to_many",
                        "target": "Thing",
                        "join_from": "id",
                        "join_to": "id",
                    }
                ],
            )
        )
        with pytest.raises(ValueError, match="through"):
            registry.finalize()

    def test_through_only_for_many_to_many(self) -> None:
        """Test that other kinds reject a middle table."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [
                    {
                        "name": "children",
                        "kind": "has_many",
                        "target": "Thing",
                        "join_from": "id",
                        "join_to": "parentId",
                        "through": {"table": "x", "from_columns": "a", "to_columns": "b"},
                    }
                ],
            )
        )
        with pytest.raises(ValueError, match="cannot have"):
            registry.finalize()

    def test_unknown_filter_modifier(self) -> None:
        """Test that a relation filter naming a missing modifier fails."""
        registry = EntityRegistry()
        registry.register(
            _simple(
                "Thing",
                "things",
                [
                    {
                        "name": "children",
                        "kind": "has_many",
                        "target": "Thing",
                        "join_from": "id",
                        "join_to": "parentId",
                        "filter": "active",
                    }
                ],
            )
        )
        with pytest.raises(UnknownModifierError):
            registry.finalize()

    def test_middle_table_is_declared(self, registry: EntityRegistry) -> None:
        """Test that the middle table is built from the join field types."""
        registry.finalize()
        through = registry.metadata.tables["persons_movies"]
        assert sorted(column.name for column in through.columns) == ["movie_id", "person_id"]
        assert sorted(column.name for column in through.primary_key.columns) == [
            "movie_id",
            "person_id",
        ]

    def test_bind_existing_table(self) -> None:
        """Test registering an entity on a table that already exists."""
        registry = EntityRegistry()
        table = Table(
            "tags",
            registry.metadata,
            Column("id", Integer, primary_key=True),
            Column("tag_label", String(50), nullable=False),
        )
        entity = registry.register(
            {"name": "Tag", "table": "tags", "fields": [{"name": "label", "column_name": "tag_label"}]},
            table=table,
        )
        assert list(entity.fields) == ["id", "label"]
        assert entity.fields["id"].type == "int"
        assert entity.fields["label"].required is True
        assert entity.column("label") is table.c.tag_label


class TestLookup:
    """Test resolving entities and relations."""

    def test_unknown_entity(self, registry: EntityRegistry) -> None:
        """Test that unknown names list the registered ones."""
        with pytest.raises(UnknownEntityError) as exc_info:
            registry.resolve("Dragon")
        assert exc_info.value.available_entities == ["Animal", "Movie", "Person"]

    def test_unknown_relation(self, registry: EntityRegistry) -> None:
        """Test that unknown relations list the available ones."""
        with pytest.raises(UnknownRelationError) as exc_info:
            registry.resolve("Person").get_relation("friends")
        assert exc_info.value.available_relations == ["children", "movies", "parent", "pets"]

    def test_column_mapping(self, registry: EntityRegistry) -> None:
        """Test logical <-> storage name translation."""
        animal = registry.resolve("Animal")
        assert animal.column_name("ownerId") == "owner_id"
        assert animal.to_storage({"ownerId": 1, "name": "Rex"}) == {"owner_id": 1, "name": "Rex"}
        assert animal.from_row({"owner_id": 1, "name": "Rex", "other": 2}) == {
            "ownerId": 1,
            "name": "Rex",
        }

    def test_identity(self, registry: EntityRegistry) -> None:
        """Test identity extraction."""
        person = registry.resolve("Person")
        assert person.identity({"id": 5, "name": "x"}) == (5,)
        assert person.identity({"name": "x"}) is None


class TestFreezing:
    """Test that the registry is frozen after the first query."""

    def test_frozen_after_fetch(self, db: RelGraph, registry: EntityRegistry) -> None:
        """Test that registration fails once queries ran."""
        assert not registry.is_frozen
        db.fetch_graph("Person")
        assert registry.is_frozen
        with pytest.raises(RegistryFrozenError):
            registry.register(_simple("Late", "late"))

    def test_frozen_after_row_query(self, db: RelGraph, registry: EntityRegistry) -> None:
        """Test that row level queries freeze the registry too."""
        db.entity("Person").query()
        assert registry.is_frozen


class TestDescribe:
    """Test schema descriptions."""

    def test_describe_entity(self, registry: EntityRegistry) -> None:
        """Test describing one entity."""
        info = registry.describe_entity("Person")
        assert info.table_name == "persons"
        assert info.id == ["id"]
        assert [f.name for f in info.fields] == ["id", "name", "age", "parentId"]
        assert info.modifiers == ["adults", "orderByName"]
        relations = {r.name: r for r in info.relations}
        assert relations["pets"].kind == RelationKind.HAS_MANY.value
        assert relations["movies"].through_table == "persons_movies"
        assert relations["parent"].join_from == ["parentId"]

    def test_describe_all(self, registry: EntityRegistry) -> None:
        """Test describing every entity, sorted by name."""
        assert [info.name for info in registry.describe()] == ["Animal", "Movie", "Person"]

    def test_composite_keys(self) -> None:
        """Test describing composite identities and joins."""
        from sample_models import build_order_registry

        info = build_order_registry().describe_entity("OrderLine")
        assert info.id == ["tenant", "orderNumber", "line"]
        assert info.relations[0].join_from == ["tenant", "orderNumber"]
        assert info.relations[0].join_to == ["tenant", "number"]
