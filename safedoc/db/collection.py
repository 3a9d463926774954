from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Mapping, TypeVar

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import Table

from ..errors import StoreError, UsageError
from .helpers import field, primary_key_condition, set_values, to_store_error, where_clause
from .metrics import observe_doc_write
from .models import BatchOperation, BatchResult, OpKind

if TYPE_CHECKING:
    from .connection import DocumentConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Collection:
    """
    Document collection backed by a single table.

    Each document is a row and each field is a column. Calls run on the
    transaction of the session bound to the connection when one is open,
    and in their own short transaction otherwise.
    """

    def __init__(self, connection: "DocumentConnection", table: Table) -> None:
        self.connection = connection
        self.table = table

    @property
    def name(self) -> str:
        return self.table.name

    @contextmanager
    def _scope(self) -> Iterator[Connection]:
        session = self.connection.session
        if session is not None and session.in_transaction:
            yield session.sa_connection
        else:
            with self.connection.engine.begin() as conn:
                yield conn

    def _run(self, action: str, work: Callable[[Connection], T], op_type: str | None = None) -> T:
        start_time = time.monotonic()
        status = "success"
        try:
            with self._scope() as conn:
                return work(conn)
        except SQLAlchemyError as exc:
            status = "error"
            raise to_store_error(exc, f"{action} on {self.name!r}") from exc
        except Exception:
            status = "error"
            raise
        finally:
            if op_type is not None:
                observe_doc_write(self.name, op_type, status, time.monotonic() - start_time)

    def _insert(self, conn: Connection, values: Mapping[str, Any]) -> Any:
        checked = {field(self.table, name).name: value for name, value in values.items()}
        result = conn.execute(insert(self.table).values(checked))
        if len(self.table.primary_key.columns) != 1:
            return None
        key = result.inserted_primary_key
        return key[0] if key else None

    def _update(
        self,
        conn: Connection,
        condition: Mapping[str, Any] | None,
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None,
    ) -> int:
        if not values:
            raise UsageError(f"update on {self.name!r} requires at least one value")
        stmt = (
            update(self.table)
            .where(where_clause(self.table, condition))
            .values(set_values(self.table, values))
        )
        result = conn.execute(stmt, execution_options=dict(options or {}))
        return int(result.rowcount)

    def _remove(
        self,
        conn: Connection,
        condition: Mapping[str, Any] | None,
        options: Mapping[str, Any] | None,
    ) -> int:
        stmt = delete(self.table).where(where_clause(self.table, condition))
        result = conn.execute(stmt, execution_options=dict(options or {}))
        return int(result.rowcount)

    def insert(self, values: Mapping[str, Any]) -> Any:
        """
        Insert one document.

        Returns:
            The primary key of the new document for single-key collections
            (generated by the store when not supplied), None otherwise.
        """
        return self._run("insert", lambda conn: self._insert(conn, values), OpKind.INSERT.value)

    def update(
        self,
        condition: Mapping[str, Any] | None,
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Update every document matching condition and return the affected count.
        A count of 0 is not an error here; callers decide what it means.
        """
        return self._run(
            "update",
            lambda conn: self._update(conn, condition, values, options),
            OpKind.UPDATE.value,
        )

    def remove(
        self,
        condition: Mapping[str, Any] | None,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Delete every document matching condition and return the deleted count.
        WARNING: an empty condition removes the whole collection.
        """
        return self._run(
            "remove",
            lambda conn: self._remove(conn, condition, options),
            OpKind.DELETE.value,
        )

    def find(self, condition: Mapping[str, Any] | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        stmt = select(self.table).where(where_clause(self.table, condition))
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._run("find", lambda conn: [dict(row) for row in conn.execute(stmt).mappings()])

    def find_one(self, condition: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        rows = self.find(condition, limit=1)
        return rows[0] if rows else None

    def count(self, condition: Mapping[str, Any] | None = None) -> int:
        stmt = select(func.count()).select_from(self.table).where(where_clause(self.table, condition))
        return int(self._run("count", lambda conn: conn.execute(stmt).scalar_one()))

    def find_and_modify(
        self,
        condition: Mapping[str, Any],
        changes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Atomically update the first document matching condition.

        The matched row is read with SELECT ... FOR UPDATE and then updated in
        the same transaction, so a concurrent writer blocks or fails with a
        write conflict instead of interleaving.

        Options:
            new: return the document after modification (default True);
                 False returns it as it was before.
            Any other option is passed to SQLAlchemy as an execution option.

        Returns:
            The document, or None if nothing matched.
        """
        options = dict(options or {})
        return_new = bool(options.pop("new", True))

        def work(conn: Connection) -> dict[str, Any] | None:
            stmt = (
                select(self.table)
                .where(where_clause(self.table, condition))
                .limit(1)
                .with_for_update()
            )
            before = conn.execute(stmt).mappings().first()
            if before is None:
                return None

            key = primary_key_condition(self.table, before)
            self._update(conn, key, changes, options)
            if not return_new:
                return dict(before)

            after = conn.execute(select(self.table).where(where_clause(self.table, key)))
            return dict(after.mappings().one())

        return self._run("find_and_modify", work, OpKind.UPDATE.value)

    def execute_batch(self, operations: Sequence[BatchOperation]) -> BatchResult:
        """
        Apply queued operations in order inside one transaction.
        Any failure aborts the whole batch.
        """
        def work(conn: Connection) -> BatchResult:
            result = BatchResult()
            for op in operations:
                if op.kind == OpKind.INSERT:
                    result.inserted_ids.append(self._insert(conn, op.values))
                    result.inserted_count += 1
                elif op.kind == OpKind.UPDATE:
                    result.updated_count += self._update(conn, op.condition, op.values, op.options)
                elif op.kind == OpKind.DELETE:
                    result.deleted_count += self._remove(conn, op.condition, op.options)
                else:
                    raise StoreError(f"Unsupported batch operation: {op.kind}")
            return result

        result = self._run("execute_batch", work)
        logger.debug(
            "Batch on %s applied %d operations (inserted=%d updated=%d deleted=%d)",
            self.name,
            len(operations),
            result.inserted_count,
            result.updated_count,
            result.deleted_count,
        )
        return result
