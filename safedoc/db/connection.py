from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Mapping

from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from ..config import BatchConfig
from ..errors import UsageError
from .batch import BatchService
from .collection import Collection
from .command import BatchCommand
from .helpers import _validate_identifier, to_store_error
from .session import DocumentSession

logger = logging.getLogger(__name__)


class DocumentConnection:
    """
    Document store client over a SQLAlchemy Engine.

    Collections are tables, reflected on first use (or registered up front with
    register()). A session started with bind=True becomes the connection's
    current session: collection calls then run inside its open transaction.

    Usage:
        connection = DocumentConnection(engine)
        customers = connection.collection("customer")
        customer_id = customers.insert({"name": "A"})

        with connection.transaction():
            customers.update({"_id": customer_id}, {"status": 1})

        connection.close()
    """

    def __init__(self, engine: Engine, batch_config: BatchConfig | None = None) -> None:
        self.engine = engine
        self.batch_config = batch_config or BatchConfig()
        self._metadata = MetaData()
        self._collections: dict[str, Collection] = {}
        self._session: DocumentSession | None = None
        self._batches: BatchService | None = None

    def register(self, table: Table) -> Collection:
        """Use an already defined Table for the collection of the same name."""
        collection = Collection(self, table)
        self._collections[table.name] = collection
        return collection

    def collection(self, name: str) -> Collection:
        """
        Return the collection named name.

        Raises:
            UsageError: If no such table exists
            StoreError: If reflection fails
        """
        collection = self._collections.get(name)
        if collection is not None:
            return collection

        _validate_identifier(name, "collection")
        try:
            table = Table(name, self._metadata, autoload_with=self.engine)
        except NoSuchTableError:
            raise UsageError(f"Collection {name!r} does not exist") from None
        except SQLAlchemyError as exc:
            raise to_store_error(exc, f"reflect collection {name!r}") from exc
        logger.debug("Reflected collection %s with fields %s", name, list(table.c.keys()))
        return self.register(table)

    def create_command(self) -> BatchCommand:
        return BatchCommand(self)

    @property
    def batches(self) -> BatchService:
        """The batch queues of this connection, created on first use."""
        if self._batches is None:
            self._batches = BatchService(self, self.batch_config)
        return self._batches

    @property
    def session(self) -> DocumentSession | None:
        return self._session

    def start_session(
        self,
        options: Mapping[str, Any] | None = None,
        bind: bool = False,
    ) -> DocumentSession:
        """
        Start a new client session.

        With bind=True the session becomes the connection's current session,
        replacing (not ending) any previously bound one.
        """
        session = DocumentSession(self, options)
        if bind:
            self._session = session
        return session

    def _unbind(self, session: DocumentSession) -> None:
        if self._session is session:
            self._session = None

    def transaction_ready(self, operation: str) -> DocumentSession:
        """
        Return the bound session if it has an open transaction.

        Raises:
            UsageError: If there is no open transaction on this connection
        """
        session = self._session
        if session is None or not session.in_transaction:
            raise UsageError(f"transaction not ready: {operation}")
        return session

    @contextmanager
    def transaction(self, options: Mapping[str, Any] | None = None) -> Iterator[DocumentSession]:
        """
        Run the block inside a transaction.

        Commits when the block finishes, rolls back and re-raises when it
        raises. If the bound session already has an open transaction the
        block joins it and leaves commit/rollback to its owner.
        """
        session = self._session
        if session is not None and session.in_transaction:
            yield session
            return

        owns_session = session is None
        if owns_session:
            session = self.start_session(bind=True)

        try:
            session.start_transaction(options)
            try:
                yield session
            except BaseException:
                # Best-effort rollback; do not swallow original exception.
                try:
                    session.abort_transaction()
                finally:
                    raise
            else:
                session.commit_transaction()
        finally:
            if owns_session:
                session.end_session()

    def close(self) -> None:
        """
        Report unflushed batch queues and end the bound session.
        The engine is left to its owner.
        """
        try:
            if self._batches is not None:
                self._batches.close()
        finally:
            if self._session is not None:
                self._session.end_session()
