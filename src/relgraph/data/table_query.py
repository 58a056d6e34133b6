"""Row-level operations on one entity table.

Translates between logical field names and storage columns, and runs the
entity's validators and hooks around every write. The graph planners issue
all of their row inserts, updates and deletes through this class.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select, update

from relgraph.exceptions import ModelNotFoundError, UnknownFieldError
from relgraph.schema.models import generate_uuid
from relgraph.schema.relations import key_filter

if TYPE_CHECKING:
    from sqlalchemy import Select

    from relgraph.core.backend import SQLAlchemyBackend
    from relgraph.schema.models import EntityType

logger = logging.getLogger(__name__)

Key = tuple[Any, ...]


class TableQuery:
    """CRUD operations for a single entity type.

    Rows go in and come out as dicts keyed by logical field names.
    """

    def __init__(self, backend: SQLAlchemyBackend, entity: EntityType, batch_size: int = 500) -> None:
        """Initialize table query.

        Args:
            backend: Statement execution backend
            entity: Entity type to operate on
            batch_size: Maximum number of keys per ``IN`` list
        """
        self._backend = backend
        self._entity = entity
        self._batch_size = batch_size

    @property
    def entity(self) -> EntityType:
        return self._entity

    def _validate_fields(self, data: Mapping[str, Any]) -> None:
        """Validate that all fields in data exist."""
        for name in data:
            if name not in self._entity.fields:
                raise UnknownFieldError(name, self._entity.name, sorted(self._entity.fields))

    def _key(self, key: Any) -> Key:
        if isinstance(key, tuple):
            return key
        if isinstance(key, list):
            return tuple(key)
        return (key,)

    # === Reads ===

    def select(
        self,
        where: Mapping[str, Any] | None = None,
        keys: Sequence[Any] | None = None,
        modify: Callable[[Select], Select] | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows by equality filters and/or identities.

        Args:
            where: Equality filters on logical field names
            keys: Identities to match (scalars or tuples for composite keys)
            modify: Callable applied to the statement before execution

        Returns:
            Matching rows ordered by identity
        """
        entity = self._entity
        statement = select(entity.table)
        if where:
            self._validate_fields(where)
            for name, value in where.items():
                statement = statement.where(entity.column(name) == value)
        if modify is not None:
            statement = modify(statement)
        statement = statement.order_by(*entity.id_columns)

        if keys is None:
            return self._fetch(statement)

        normalized = list(dict.fromkeys(self._key(k) for k in keys))
        rows: list[dict[str, Any]] = []
        for start in range(0, len(normalized), self._batch_size):
            chunk = normalized[start : start + self._batch_size]
            rows.extend(self._fetch(statement.where(key_filter(entity.id_columns, chunk))))
        return rows

    def _fetch(self, statement: Select) -> list[dict[str, Any]]:
        entity = self._entity
        entity.run_before("fetch", statement)
        rows = [entity.from_row(row) for row in self._backend.execute(statement).rows]
        entity.run_after("fetch", rows)
        return rows

    def find_by_id(self, key: Any, require: bool = False) -> dict[str, Any] | None:
        """Find a row by identity.

        Args:
            key: Identity value, or tuple for composite keys
            require: Raise instead of returning None when missing

        Raises:
            ModelNotFoundError: If ``require`` and the row does not exist
        """
        rows = self.select(keys=[key])
        if rows:
            return rows[0]
        if require:
            raise ModelNotFoundError(self._entity.name, self._key(key))
        return None

    # === Writes ===

    def insert(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a row.

        Args:
            data: Row data (field: value pairs)

        Returns:
            The inserted data with its identity filled in
        """
        entity = self._entity
        self._validate_fields(data)
        row = entity.validate(dict(data), patch=False)
        if entity.generates_uuid and row.get(entity.id_fields[0]) is None:
            row[entity.id_fields[0]] = generate_uuid()
        entity.run_before("insert", row)

        result = self._backend.execute(insert(entity.table).values(entity.to_storage(row)))
        if entity.identity(row) is None and result.inserted_primary_key:
            # Primary key columns are the identity columns, in table order
            pk_names = [entity.fields_by_column[c.name] for c in entity.table.primary_key.columns]
            row.update(zip(pk_names, result.inserted_primary_key))

        entity.run_after("insert", row)
        logger.debug(f"Inserted {entity.name} {entity.identity(row)}")
        return row

    def update(self, key: Any, patch: Mapping[str, Any]) -> int:
        """Update changed fields of one row.

        Args:
            key: Identity of the row to update
            patch: Fields to update

        Returns:
            Number of affected rows
        """
        entity = self._entity
        key = self._key(key)
        self._validate_fields(patch)
        values = entity.validate(dict(patch), patch=True)
        entity.run_before("update", key, values)
        result = self._backend.execute(
            update(entity.table)
            .where(key_filter(entity.id_columns, [key]))
            .values(entity.to_storage(values))
        )
        entity.run_after("update", key, values)
        logger.debug(f"Updated {entity.name} {key}: {sorted(values)}")
        return result.rowcount

    def delete(self, key: Any) -> int:
        """Delete one row by identity.

        Returns:
            Number of deleted rows
        """
        entity = self._entity
        key = self._key(key)
        entity.run_before("delete", key)
        result = self._backend.execute(
            delete(entity.table).where(key_filter(entity.id_columns, [key]))
        )
        entity.run_after("delete", key)
        logger.debug(f"Deleted {entity.name} {key}")
        return result.rowcount
