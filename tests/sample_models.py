"""Entity registries shared by the tests and the CLI tests (``--models``)."""

from typing import Any

from relgraph import EntityRegistry


def order_by_name(query: Any) -> Any:
    return query.order_by(query.selected_columns.name)


def adults(query: Any) -> Any:
    return query.where(query.selected_columns.age >= 18)


def dogs(query: Any) -> Any:
    return query.where(query.selected_columns.species == "dog")


def build_registry() -> EntityRegistry:
    """Person / Animal / Movie with all four relation kinds."""
    registry = EntityRegistry()
    registry.register(
        {
            "name": "Person",
            "table": "persons",
            "fields": [
                {"name": "id", "type": "int"},
                {"name": "name", "required": True},
                {"name": "age", "type": "int"},
                {
                    "name": "parentId",
                    "type": "int",
                    "column_name": "parent_id",
                    "references": "persons.id",
                },
            ],
            "relations": [
                {
                    "name": "pets",
                    "kind": "has_many",
                    "target": "Animal",
                    "join_from": "id",
                    "join_to": "ownerId",
                },
                {
                    "name": "children",
                    "kind": "has_many",
                    "target": "Person",
                    "join_from": "id",
                    "join_to": "parentId",
                },
                {
                    "name": "parent",
                    "kind": "belongs_to_one",
                    "target": "Person",
                    "join_from": "parentId",
                    "join_to": "id",
                },
                {
                    "name": "movies",
                    "kind": "many_to_many",
                    "target": "Movie",
                    "join_from": "id",
                    "join_to": "id",
                    "through": {
                        "table": "persons_movies",
                        "from_columns": "person_id",
                        "to_columns": "movie_id",
                    },
                },
            ],
            "modifiers": {"orderByName": order_by_name, "adults": adults},
        }
    )
    registry.register(
        {
            "name": "Animal",
            "table": "animals",
            "fields": [
                {"name": "id", "type": "int"},
                {"name": "name", "required": True},
                {"name": "species"},
                {
                    "name": "ownerId",
                    "type": "int",
                    "column_name": "owner_id",
                    "references": "persons.id",
                },
            ],
            "relations": [
                {
                    "name": "owner",
                    "kind": "belongs_to_one",
                    "target": "Person",
                    "join_from": "ownerId",
                    "join_to": "id",
                },
            ],
            "modifiers": {"orderByName": order_by_name, "dogs": dogs},
        }
    )
    registry.register(
        {
            "name": "Movie",
            "table": "movies",
            "fields": [
                {"name": "id", "type": "int"},
                {"name": "name", "required": True, "unique": True},
            ],
            "relations": [
                {
                    "name": "actors",
                    "kind": "many_to_many",
                    "target": "Person",
                    "join_from": "id",
                    "join_to": "id",
                    "through": {
                        "table": "persons_movies",
                        "from_columns": "movie_id",
                        "to_columns": "person_id",
                    },
                },
            ],
        }
    )
    return registry


def build_order_registry() -> EntityRegistry:
    """Order / OrderLine joined on a two-column key."""
    registry = EntityRegistry()
    registry.register(
        {
            "name": "Order",
            "table": "orders",
            "id": ["tenant", "number"],
            "fields": [
                {"name": "tenant"},
                {"name": "number", "type": "int"},
                {"name": "customer"},
            ],
            "relations": [
                {
                    "name": "lines",
                    "kind": "has_many",
                    "target": "OrderLine",
                    "join_from": ["tenant", "number"],
                    "join_to": ["tenant", "orderNumber"],
                },
            ],
        }
    )
    registry.register(
        {
            "name": "OrderLine",
            "table": "order_lines",
            "id": ["tenant", "orderNumber", "line"],
            "fields": [
                {"name": "tenant"},
                {"name": "orderNumber", "type": "int", "column_name": "order_number"},
                {"name": "line", "type": "int"},
                {"name": "product"},
            ],
            "relations": [
                {
                    "name": "order",
                    "kind": "belongs_to_one",
                    "target": "Order",
                    "join_from": ["tenant", "orderNumber"],
                    "join_to": ["tenant", "number"],
                },
            ],
        }
    )
    return registry
