from __future__ import annotations

import re
import uuid
from typing import Any, Mapping

from sqlalchemy import Table, and_, true
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from ..errors import StoreConflictError, StoreError, UsageError

INC = "$inc"

# MySQL: ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
_MYSQL_CONFLICT_CODES = frozenset({1205, 1213})
# PostgreSQL: serialization_failure, deadlock_detected
_PG_CONFLICT_CODES = frozenset({"40001", "40P01"})
_SQLITE_CONFLICT_TOKENS = ("database is locked", "database is busy")


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that a collection or field name is a plain identifier.

    Identifiers are quoted by SQLAlchemy when statements are compiled, so this
    is not an injection guard. It rejects names that cannot map to a table or
    column before any reflection round-trip is made.

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsupported characters or is too long

    Example:
        >>> _validate_identifier("customer", "collection")
        'customer'
        >>> _validate_identifier("order-item", "collection")
        ValueError: Invalid collection 'order-item': ...
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds the 64-character limit")

    return name


def new_lock_token() -> str:
    return uuid.uuid4().hex


def field(table: Table, name: str):
    try:
        return table.c[name]
    except KeyError:
        raise UsageError(f"Unknown field {name!r} in collection {table.name!r}") from None


def where_clause(table: Table, condition: Mapping[str, Any] | None) -> ColumnElement[bool]:
    """
    Build a WHERE clause from an equality condition.

    List, tuple and set values become IN predicates and None becomes IS NULL.
    Keys are sorted so the same condition always compiles to the same SQL.
    """
    clauses = []
    for name, value in sorted((condition or {}).items()):
        col = field(table, name)
        if isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(col.in_(list(value)))
        elif value is None:
            clauses.append(col.is_(None))
        else:
            clauses.append(col == value)
    return and_(true(), *clauses)


def set_values(table: Table, values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Translate update values into an UPDATE ... SET mapping.

    Plain keys are assignments. The "$inc" key holds field -> delta counters
    that are applied relative to the stored value.
    """
    result: dict[str, Any] = {}
    for name, value in values.items():
        if name == INC:
            for counter, delta in value.items():
                col = field(table, counter)
                result[col.name] = col + delta
        else:
            result[field(table, name).name] = value
    return result


def primary_key_condition(table: Table, row: Mapping[str, Any]) -> dict[str, Any]:
    return {col.name: row[col.name] for col in table.primary_key.columns}


def is_write_conflict(exc: BaseException) -> bool:
    """
    True if a driver error is a transient write conflict that is safe to retry
    in a new transaction.
    """
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    args = getattr(orig, "args", None) or (None,)
    if args[0] in _MYSQL_CONFLICT_CODES:
        return True

    if getattr(orig, "pgcode", None) in _PG_CONFLICT_CODES:
        return True

    message = str(orig).lower()
    return any(token in message for token in _SQLITE_CONFLICT_TOKENS)


def to_store_error(exc: SQLAlchemyError, action: str) -> StoreError:
    error_cls = StoreConflictError if is_write_conflict(exc) else StoreError
    return error_cls(f"{action} failed: {exc}")
