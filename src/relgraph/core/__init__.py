"""Core components for relgraph."""

from relgraph.core.backend import SQLAlchemyBackend, StatementResult, Transaction
from relgraph.core.connection import DatabaseConnection
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
    WriteAction,
)

__all__ = [
    "DatabaseConnection",
    "SQLAlchemyBackend",
    "StatementResult",
    "Transaction",
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
    "WriteAction",
    "InsertGraphOptions",
    "UpsertGraphOptions",
]
