from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .helpers import to_store_error

if TYPE_CHECKING:
    from .connection import DocumentConnection


class DocumentSession:
    """
    Client session with explicit transaction control.

    A session owns at most one open transaction at a time. While a transaction
    is open, every collection call made through a connection this session is
    bound to runs on the transaction's SQLAlchemy Connection.

    Session options are default execution options (e.g. isolation_level) for
    every transaction started on the session; transaction options override them.

    ⚠️ IMPORTANT: Do NOT perform retry loops inside a single transaction.
    Each retry must abort and call start_transaction() again.

    Usage:
        session = connection.start_session(bind=True)
        session.start_transaction()
        try:
            connection.collection("orders").update({"_id": 42}, {"status": "paid"})
            session.commit_transaction()
        except Exception:
            session.abort_transaction()
            raise
        finally:
            session.end_session()
    """

    def __init__(
        self,
        connection: "DocumentConnection",
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.connection = connection
        self.options = dict(options or {})
        self._conn: Connection | None = None
        self._tx = None
        self._ended = False

    def __enter__(self) -> "DocumentSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.end_session()

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    @property
    def has_ended(self) -> bool:
        return self._ended

    @property
    def sa_connection(self) -> Connection:
        """The SQLAlchemy Connection of the open transaction."""
        if self._conn is None:
            raise RuntimeError("No transaction in progress")
        return self._conn

    def start_transaction(self, options: Mapping[str, Any] | None = None) -> None:
        """
        Begin a new transaction.

        Raises:
            RuntimeError: If the session has ended or a transaction is already open
            StoreError: If the connection cannot be opened
        """
        if self._ended:
            raise RuntimeError("Session has ended")
        if self._tx is not None:
            raise RuntimeError("Transaction already in progress")

        execution_options = {**self.options, **dict(options or {})}
        try:
            conn = self.connection.engine.connect()
            if execution_options:
                conn = conn.execution_options(**execution_options)
            self._conn = conn
            self._tx = conn.begin()
        except SQLAlchemyError as exc:
            self._close()
            raise to_store_error(exc, "start transaction") from exc

    def commit_transaction(self) -> None:
        """
        Commit the transaction and release its connection.

        Raises:
            RuntimeError: If no transaction is open
            StoreError: If the commit fails (the transaction is rolled back)
        """
        if self._tx is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._tx.commit()
        except SQLAlchemyError as exc:
            # Best-effort rollback on commit failure
            try:
                self._tx.rollback()
            except SQLAlchemyError:
                pass
            raise to_store_error(exc, "commit transaction") from exc
        finally:
            self._close()

    def abort_transaction(self) -> None:
        """
        Roll back the transaction and release its connection.

        Raises:
            RuntimeError: If no transaction is open
        """
        if self._tx is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._tx.rollback()
        except SQLAlchemyError as exc:
            raise to_store_error(exc, "abort transaction") from exc
        finally:
            self._close()

    def end_session(self) -> None:
        """
        Abort any open transaction and detach the session from its connection.
        Calling end_session() more than once is allowed.
        """
        if self._ended:
            return
        try:
            if self._tx is not None:
                self.abort_transaction()
        finally:
            self._ended = True
            self.connection._unbind(self)

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._tx = None
