"""relgraph - Relation graphs for SQL databases.

Declare entities and their relations once, then fetch, insert and upsert
whole object graphs. Each graph operation is planned into a correctly
ordered sequence of SQL statements and the flat rows are reassembled into
nested dicts.

Example:
    from relgraph import EntityRegistry, RelGraph

    registry = EntityRegistry()
    registry.register({
        "name": "Person",
        "table": "persons",
        "fields": [{"name": "id", "type": "int"}, {"name": "name"}],
        "relations": [{
            "name": "pets", "kind": "has_many", "target": "Animal",
            "join_from": "id", "join_to": "ownerId",
        }],
    })
    registry.register({
        "name": "Animal",
        "table": "animals",
        "fields": [
            {"name": "id", "type": "int"},
            {"name": "name"},
            {"name": "ownerId", "type": "int", "column_name": "owner_id",
             "references": "persons.id"},
        ],
    })

    db = RelGraph("sqlite:///:memory:", registry)
    db.create_tables()

    # Insert a person with two pets in one transaction
    person = db.insert_graph("Person", {
        "name": "Jennifer",
        "pets": [{"name": "Doggo"}, {"name": "Kat"}],
    })

    # Fetch it back with its relations
    people = db.fetch_graph("Person", "pets", ids=[person["id"]])
"""

from relgraph.core.engine import Entity, RelGraph
from relgraph.core.types import (
    EntityInfo,
    EntitySpec,
    FetchStrategy,
    FieldInfo,
    FieldSpec,
    FieldType,
    InsertGraphOptions,
    RelationInfo,
    RelationKind,
    RelationSpec,
    ThroughSpec,
    UpsertGraphOptions,
)
from relgraph.exceptions import (
    CheckViolationError,
    ConstraintViolationError,
    CyclicGraphError,
    DanglingReferenceError,
    DataError,
    DBError,
    EntityAlreadyExistsError,
    ForeignKeyViolationError,
    GraphExpressionSyntaxError,
    ModelNotFoundError,
    NotNullViolationError,
    OperationVetoedError,
    RegistryFrozenError,
    RelationNotAllowedError,
    RelGraphError,
    UniqueViolationError,
    UnknownEntityError,
    UnknownFieldError,
    UnknownModifierError,
    UnknownRelationError,
    ValidationError,
)
from relgraph.graph import RelationExpression, parse_expression
from relgraph.schema import EntityHooks, EntityRegistry, EntityType, PydanticValidator, Validator

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "RelGraph",
    "Entity",
    "EntityRegistry",
    "EntityType",
    "RelationExpression",
    "parse_expression",
    # Capabilities
    "Validator",
    "PydanticValidator",
    "EntityHooks",
    # Types
    "FieldType",
    "FieldSpec",
    "EntitySpec",
    "RelationKind",
    "RelationSpec",
    "ThroughSpec",
    "FieldInfo",
    "EntityInfo",
    "RelationInfo",
    "FetchStrategy",
    "InsertGraphOptions",
    "UpsertGraphOptions",
    # Exceptions
    "RelGraphError",
    "UnknownEntityError",
    "EntityAlreadyExistsError",
    "UnknownFieldError",
    "UnknownRelationError",
    "UnknownModifierError",
    "RegistryFrozenError",
    "GraphExpressionSyntaxError",
    "RelationNotAllowedError",
    "CyclicGraphError",
    "DanglingReferenceError",
    "ModelNotFoundError",
    "ValidationError",
    "OperationVetoedError",
    # Database errors
    "DBError",
    "ConstraintViolationError",
    "UniqueViolationError",
    "NotNullViolationError",
    "ForeignKeyViolationError",
    "CheckViolationError",
    "DataError",
]
