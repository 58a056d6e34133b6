"""Entity registry and relation descriptors."""

from relgraph.schema.capabilities import EntityHooks, PydanticValidator, Validator
from relgraph.schema.models import EntityType, FieldDef
from relgraph.schema.registry import EntityRegistry
from relgraph.schema.relations import (
    BelongsToOneRelation,
    HasManyRelation,
    HasOneRelation,
    ManyToManyRelation,
    Relation,
)

__all__ = [
    "EntityRegistry",
    "EntityType",
    "FieldDef",
    "Relation",
    "BelongsToOneRelation",
    "HasManyRelation",
    "HasOneRelation",
    "ManyToManyRelation",
    "Validator",
    "PydanticValidator",
    "EntityHooks",
]
