"""Statement execution backend for relgraph.

Runs SQLAlchemy Core statements, owns the transaction the graph planners
write in, and translates driver errors into the ``DBError`` family.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import exc as sa_exc

from relgraph.exceptions import (
    CheckViolationError,
    ConstraintViolationError,
    DataError,
    DBError,
    ForeignKeyViolationError,
    NotNullViolationError,
    UniqueViolationError,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine
    from sqlalchemy.engine import RootTransaction
    from sqlalchemy.sql import Executable

    from relgraph.core.connection import DatabaseConnection

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes for integrity violations
_SQLSTATE_ERRORS: dict[str, type[ConstraintViolationError]] = {
    "23505": UniqueViolationError,
    "23502": NotNullViolationError,
    "23503": ForeignKeyViolationError,
    "23514": CheckViolationError,
}

# SQLite reports the violated constraint in the message text
_SQLITE_PATTERNS: list[tuple[re.Pattern[str], type[ConstraintViolationError]]] = [
    (re.compile(r"UNIQUE constraint failed: (?P<cols>.+)"), UniqueViolationError),
    (re.compile(r"NOT NULL constraint failed: (?P<cols>.+)"), NotNullViolationError),
    (re.compile(r"FOREIGN KEY constraint failed"), ForeignKeyViolationError),
    (re.compile(r"CHECK constraint failed: ?(?P<constraint>.*)"), CheckViolationError),
]


def _statement_kind(statement: Any) -> str:
    for kind in ("insert", "update", "delete", "select"):
        if getattr(statement, f"is_{kind}", False):
            return kind
    return "other"


def translate_error(error: sa_exc.DBAPIError) -> DBError:
    """Translate a SQLAlchemy driver error into a relgraph ``DBError``.

    Args:
        error: The error raised by SQLAlchemy

    Returns:
        The most specific ``DBError`` subtype with table, columns and
        constraint name filled in where the driver reports them
    """
    orig = error.orig
    message = str(orig) if orig is not None else str(error)
    statement = error.statement

    if isinstance(error, sa_exc.DataError):
        return DataError(message, statement=statement)
    if not isinstance(error, sa_exc.IntegrityError):
        return DBError(message, statement=statement)

    # PostgreSQL (psycopg exposes sqlstate and diagnostics)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        diag = getattr(orig, "diag", None)
        column = getattr(diag, "column_name", None)
        error_class = _SQLSTATE_ERRORS.get(sqlstate, ConstraintViolationError)
        return error_class(
            message,
            table=getattr(diag, "table_name", None),
            columns=[column] if column else [],
            constraint=getattr(diag, "constraint_name", None),
            statement=statement,
        )

    for pattern, error_class in _SQLITE_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        groups = match.groupdict()
        table = None
        columns: list[str] = []
        if groups.get("cols"):
            for qualified in groups["cols"].split(","):
                table_name, _, column = qualified.strip().rpartition(".")
                table = table_name or table
                columns.append(column)
        return error_class(
            message,
            table=table,
            columns=columns,
            constraint=groups.get("constraint") or None,
            statement=statement,
        )

    return ConstraintViolationError(message, statement=statement)


@dataclass
class StatementResult:
    """Buffered result of one executed statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0
    inserted_primary_key: tuple[Any, ...] | None = None


class Transaction:
    """A database transaction owned by one graph operation or its caller."""

    def __init__(
        self, backend: SQLAlchemyBackend, connection: Connection, transaction: RootTransaction
    ) -> None:
        self._backend = backend
        self.connection = connection
        self._transaction = transaction
        self.failed = False
        self.writes = 0

    @property
    def is_active(self) -> bool:
        """Whether the transaction can still run statements."""
        return self._transaction.is_active

    def commit(self) -> None:
        """Commit the transaction and release its connection."""
        try:
            self._transaction.commit()
        except sa_exc.DBAPIError as e:
            raise translate_error(e) from e
        finally:
            self._close()

    def rollback(self) -> None:
        """Roll back the transaction and release its connection."""
        try:
            if self._transaction.is_active:
                self._transaction.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        self.connection.close()
        self._backend._release(self)


class SQLAlchemyBackend:
    """Executes statements for the graph planners.

    Statements run on the open transaction when there is one, otherwise each
    statement runs in its own short transaction. The open transaction belongs
    to the thread that opened it; other threads never see it. Every executed
    statement is counted by kind (``select``, ``insert``, ``update``,
    ``delete``).
    """

    def __init__(self, connection: DatabaseConnection) -> None:
        self._connection = connection
        self._local = threading.local()
        self.statement_counts: Counter[str] = Counter()

    @property
    def _current(self) -> Transaction | None:
        return getattr(self._local, "current", None)

    @_current.setter
    def _current(self, transaction: Transaction | None) -> None:
        self._local.current = transaction

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        return self._connection.engine

    @property
    def statement_count(self) -> int:
        """Total number of statements executed."""
        return sum(self.statement_counts.values())

    @property
    def in_transaction(self) -> bool:
        """Whether a transaction is currently open."""
        return self._current is not None and self._current.is_active

    def reset_statistics(self) -> None:
        """Reset the statement counters."""
        self.statement_counts.clear()

    def begin(self) -> Transaction:
        """Open a new transaction.

        Raises:
            DBError: If a transaction is already open on this backend
        """
        if self.in_transaction:
            raise DBError("A transaction is already open; use transaction() to reuse it.")
        connection = self.engine.connect()
        self._current = Transaction(self, connection, connection.begin())
        return self._current

    def _release(self, transaction: Transaction) -> None:
        if self._current is transaction:
            self._current = None

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a block in a transaction, reusing the open one if any.

        A transaction opened here is committed on success and rolled back on
        error. A reused transaction is marked failed when the block raises
        after writing to it; rolling it back is left to its owner. Errors
        raised before any write leave it usable.
        """
        if self._current is not None and self._current.is_active:
            outer = self._current
            writes = outer.writes
            try:
                yield outer
            except Exception:
                if outer.writes > writes:
                    outer.failed = True
                raise
            return

        trx = self.begin()
        try:
            yield trx
        except Exception:
            logger.info("Rolling back transaction after failure")
            trx.rollback()
            raise
        else:
            trx.commit()

    def execute(self, statement: Executable, params: dict[str, Any] | None = None) -> StatementResult:
        """Execute one statement and buffer its result.

        Args:
            statement: SQLAlchemy Core statement
            params: Optional bind parameters

        Returns:
            Buffered rows, affected row count and generated primary key

        Raises:
            DBError: (or a subtype) if the database rejects the statement
        """
        kind = _statement_kind(statement)
        self.statement_counts[kind] += 1
        current = self._current
        if current is not None and current.failed:
            raise DBError("Transaction is in a failed state; roll it back before continuing.")

        try:
            if current is not None and current.is_active:
                if kind != "select":
                    current.writes += 1
                return self._run(current.connection, statement, params, kind)
            with self.engine.begin() as conn:
                return self._run(conn, statement, params, kind)
        except sa_exc.DBAPIError as e:
            if current is not None:
                current.failed = True
            raise translate_error(e) from e

    def _run(
        self,
        conn: Connection,
        statement: Executable,
        params: dict[str, Any] | None,
        kind: str,
    ) -> StatementResult:
        result = conn.execute(statement, params or {})
        buffered = StatementResult(rowcount=result.rowcount if result.rowcount is not None else 0)
        if result.returns_rows:
            buffered.rows = [dict(row) for row in result.mappings()]
        elif kind == "insert":
            buffered.inserted_primary_key = tuple(result.inserted_primary_key or ())
        return buffered
