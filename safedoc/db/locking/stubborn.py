from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from ...config import StubbornLockConfig
from ...errors import StoreConflictError
from ..metrics import observe_lock_acquisition, observe_lock_retry
from ..session import DocumentSession
from .document_lock import DEFAULT_LOCK_FIELD, DocumentLock
from .strategy import LockStrategy

if TYPE_CHECKING:
    from ..connection import DocumentConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Locked:
    document: dict[str, Any] | None


@dataclass(frozen=True)
class Conflict:
    error: StoreConflictError


@dataclass(frozen=True)
class Exhausted:
    error: StoreConflictError
    attempts: int


RetryOutcome = Union[Locked, Conflict, Exhausted]


class StubbornDocumentLock:
    """
    Document lock that waits for contended documents by retrying.

    Use it OUTSIDE an open transaction. It starts its own session, binds it to
    the connection and then loops:

        begin transaction -> lock attempt -> Locked: return
                                          -> write conflict: roll back,
                                             give up after max_retries attempts,
                                             otherwise sleep delay_us and retry

    On success the transaction is left open on connection.session (also
    available as self.session); the caller commits or aborts it and ends the
    session. Errors other than write conflicts roll back, end the session and
    propagate without retry.

    With max_retries=0 there is no bound on the total wait: the lock waits
    until the document is free.

    Usage:
        lock = StubbornDocumentLock(connection, "account", config=StubbornLockConfig(max_retries=5))
        doc = lock.acquire(42)
        try:
            connection.collection("account").update({"_id": 42}, {"balance": doc["balance"] - 10})
            lock.session.commit_transaction()
        finally:
            lock.session.end_session()
    """

    def __init__(
        self,
        connection: "DocumentConnection",
        collection: str,
        key_field: str = "_id",
        lock_field: str = DEFAULT_LOCK_FIELD,
        config: StubbornLockConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connection = connection
        self.config = config or StubbornLockConfig()
        self.session: DocumentSession | None = None
        self._lock = DocumentLock(connection, collection, key_field, lock_field)
        self._sleep = sleep

    def _attempt(self, session: DocumentSession, id_value: Any) -> RetryOutcome:
        session.start_transaction(self.config.transaction_options)
        try:
            document = self._lock.acquire(id_value, self.config.modify_options)
        except StoreConflictError as exc:
            session.abort_transaction()
            return Conflict(exc)
        except Exception:
            # Best-effort rollback; do not swallow original exception.
            try:
                session.abort_transaction()
            finally:
                raise
        return Locked(document)

    def acquire(self, id_value: Any) -> dict[str, Any] | None:
        """
        Lock the document whose primary key is id_value, retrying on conflicts.

        Returns:
            The locked document, or None if it does not exist (the transaction
            is left open either way)

        Raises:
            StoreConflictError: The last conflict, once max_retries attempts failed
            StoreError: Any other store failure, immediately
        """
        max_retries = self.config.max_retries
        delay_s = self.config.delay_us / 1_000_000
        session = self.connection.start_session(self.config.session_options, bind=True)
        self.session = session

        start_time = time.monotonic()
        attempts = range(1, max_retries + 1) if max_retries else itertools.count(1)
        try:
            for attempt in attempts:
                outcome = self._attempt(session, id_value)
                if isinstance(outcome, Locked):
                    observe_lock_acquisition(
                        LockStrategy.STUBBORN.value, time.monotonic() - start_time, True
                    )
                    return outcome.document

                observe_lock_retry(self._lock.collection)
                if attempt == max_retries:
                    outcome = Exhausted(outcome.error, attempt)
                    logger.warning(
                        "Stubborn lock on %s %r gave up after %d attempts: %s",
                        self._lock.collection,
                        id_value,
                        outcome.attempts,
                        outcome.error,
                    )
                    observe_lock_acquisition(
                        LockStrategy.STUBBORN.value, time.monotonic() - start_time, False
                    )
                    raise outcome.error

                logger.debug(
                    "Stubborn lock on %s %r conflicted (attempt %d), retrying in %.3fs",
                    self._lock.collection,
                    id_value,
                    attempt,
                    delay_s,
                )
                self._sleep(delay_s)
        except BaseException:
            session.end_session()
            raise
        # unreachable: the loop either returns or raises
        raise AssertionError("stubborn lock loop ended without an outcome")
