"""Custom exceptions for relgraph.

Every error carries a human-readable message plus a structured ``context``
dict so callers can act on the failure without parsing strings:
- the offending relation path or graph node when one exists
- the available options (entities, relations, fields) when relevant
"""

from __future__ import annotations

from typing import Any


class RelGraphError(Exception):
    """Base exception for all relgraph errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(RelGraphError):
    """Failed to connect to the database."""

    pass


# === Registry Errors ===


class UnknownEntityError(RelGraphError):
    """Entity type is not registered."""

    def __init__(self, entity_name: str, available_entities: list[str] | None = None) -> None:
        available = available_entities or []
        if available:
            message = (
                f"Entity '{entity_name}' is not registered. "
                f"Registered entities: {', '.join(available)}"
            )
        else:
            message = f"Entity '{entity_name}' is not registered. No entities registered yet."

        super().__init__(message, {"entity_name": entity_name, "available_entities": available})
        self.entity_name = entity_name
        self.available_entities = available


class EntityAlreadyExistsError(RelGraphError):
    """Entity name is already registered."""

    def __init__(self, entity_name: str) -> None:
        message = (
            f"Entity '{entity_name}' is already registered. "
            "Use a different name or a separate registry."
        )
        super().__init__(message, {"entity_name": entity_name})
        self.entity_name = entity_name


class UnknownFieldError(RelGraphError):
    """Property does not exist on an entity."""

    def __init__(
        self, field_name: str, entity_name: str, available_fields: list[str] | None = None
    ) -> None:
        available = available_fields or []
        message = f"Field '{field_name}' not found on '{entity_name}'."
        if available:
            message += f" Available fields: {', '.join(available)}"

        super().__init__(
            message,
            {
                "field_name": field_name,
                "entity_name": entity_name,
                "available_fields": available,
            },
        )
        self.field_name = field_name
        self.entity_name = entity_name
        self.available_fields = available


class UnknownRelationError(RelGraphError):
    """Relation does not exist on the owner entity."""

    def __init__(
        self,
        relation_name: str,
        entity_name: str,
        path: str | None = None,
        available_relations: list[str] | None = None,
    ) -> None:
        available = available_relations or []
        path = path or relation_name
        if available:
            message = (
                f"Relation '{relation_name}' (in path '{path}') not found on '{entity_name}'. "
                f"Available relations: {', '.join(available)}"
            )
        else:
            message = (
                f"Relation '{relation_name}' (in path '{path}') not found on '{entity_name}'. "
                "No relations defined."
            )

        super().__init__(
            message,
            {
                "relation_name": relation_name,
                "entity_name": entity_name,
                "path": path,
                "available_relations": available,
            },
        )
        self.relation_name = relation_name
        self.entity_name = entity_name
        self.path = path
        self.available_relations = available


class UnknownModifierError(RelGraphError):
    """Named modifier is not defined on the entity."""

    def __init__(self, modifier_name: str, entity_name: str, available: list[str]) -> None:
        message = f"Modifier '{modifier_name}' not defined on '{entity_name}'."
        if available:
            message += f" Available modifiers: {', '.join(available)}"
        super().__init__(
            message,
            {"modifier_name": modifier_name, "entity_name": entity_name, "available": available},
        )
        self.modifier_name = modifier_name
        self.entity_name = entity_name


class RegistryFrozenError(RelGraphError):
    """The registry was modified after the first query."""

    def __init__(self, entity_name: str) -> None:
        message = (
            f"Cannot register '{entity_name}': the registry is frozen after the first query. "
            "Register every entity before querying."
        )
        super().__init__(message, {"entity_name": entity_name})
        self.entity_name = entity_name


# === Graph Expression Errors ===


class GraphExpressionSyntaxError(RelGraphError):
    """Relation expression could not be parsed."""

    def __init__(self, expression: str, reason: str, position: int | None = None) -> None:
        if position is None:
            message = f"Invalid relation expression '{expression}': {reason}"
        else:
            message = f"Invalid relation expression '{expression}' at position {position}: {reason}"
        super().__init__(
            message, {"expression": expression, "reason": reason, "position": position}
        )
        self.expression = expression
        self.reason = reason
        self.position = position


class RelationNotAllowedError(RelGraphError):
    """Requested relation path is outside the allowed graph."""

    def __init__(self, path: str, allowed: str) -> None:
        message = f"Relation path '{path}' is not allowed. Allowed graph: {allowed}"
        super().__init__(message, {"path": path, "allowed": allowed})
        self.path = path
        self.allowed = allowed


# === Write Graph Errors ===


class CyclicGraphError(RelGraphError):
    """No valid insert order exists for the graph."""

    def __init__(self, nodes: list[str]) -> None:
        cycle = " -> ".join(nodes)
        message = (
            f"The graph contains a dependency cycle: {cycle}. "
            "Break the cycle by relating one side to an existing row (#dbRef)."
        )
        super().__init__(message, {"nodes": nodes})
        self.nodes = nodes


class DanglingReferenceError(RelGraphError):
    """A #ref/#dbRef could not be resolved within the write call."""

    def __init__(self, reference: str, reason: str) -> None:
        message = f"Could not resolve reference '{reference}': {reason}"
        super().__init__(message, {"reference": reference, "reason": reason})
        self.reference = reference
        self.reason = reason


class ModelNotFoundError(RelGraphError):
    """Row with given identity does not exist."""

    def __init__(self, entity_name: str, key: Any) -> None:
        message = f"'{entity_name}' with identity {key!r} not found."
        super().__init__(message, {"entity_name": entity_name, "key": key})
        self.entity_name = entity_name
        self.key = key


class ValidationError(RelGraphError):
    """Data validation failed."""

    def __init__(
        self,
        message: str,
        field_errors: dict[str, str] | None = None,
        entity_name: str | None = None,
    ) -> None:
        super().__init__(message, {"field_errors": field_errors or {}, "entity_name": entity_name})
        self.field_errors = field_errors or {}
        self.entity_name = entity_name


class OperationVetoedError(RelGraphError):
    """A before-hook cancelled the operation."""

    def __init__(self, operation: str, entity_name: str, hook: str) -> None:
        message = f"{operation} on '{entity_name}' was cancelled by hook '{hook}'."
        super().__init__(message, {"operation": operation, "entity_name": entity_name, "hook": hook})
        self.operation = operation
        self.entity_name = entity_name
        self.hook = hook


# === Database Errors ===


class DBError(RelGraphError):
    """Statement execution failed in the database."""

    def __init__(
        self,
        message: str,
        table: str | None = None,
        columns: list[str] | None = None,
        constraint: str | None = None,
        statement: str | None = None,
    ) -> None:
        super().__init__(
            message,
            {
                "table": table,
                "columns": columns or [],
                "constraint": constraint,
                "statement": statement,
            },
        )
        self.table = table
        self.columns = columns or []
        self.constraint = constraint
        self.statement = statement


class ConstraintViolationError(DBError):
    """A database constraint rejected the statement."""

    pass


class UniqueViolationError(ConstraintViolationError):
    """Unique or primary key constraint violated."""

    pass


class NotNullViolationError(ConstraintViolationError):
    """NOT NULL constraint violated."""

    pass


class ForeignKeyViolationError(ConstraintViolationError):
    """Foreign key constraint violated."""

    pass


class CheckViolationError(ConstraintViolationError):
    """CHECK constraint violated."""

    pass


class DataError(DBError):
    """Invalid data for the column type."""

    pass
