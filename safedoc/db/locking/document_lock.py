from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Mapping

from ..helpers import new_lock_token
from ..metrics import observe_lock_acquisition
from .strategy import LockStrategy

if TYPE_CHECKING:
    from ..connection import DocumentConnection

DEFAULT_LOCK_FIELD = "_lock"


class DocumentLock:
    """
    Exclusive access to one document inside an open transaction.

    Acquiring overwrites the document's lock field with a fresh token through
    find-and-modify. The write makes the store hold the document for the rest
    of the transaction, so a second transaction locking the same document
    blocks or fails with a write conflict until the first commits or rolls
    back. This is the document-store counterpart of SELECT ... FOR UPDATE.

    This is NOT a context manager - locks are transaction-scoped, not method-scoped.

    Usage:
        with connection.transaction():
            doc = DocumentLock(connection, "account").acquire(42)
            if doc is None:
                return  # document doesn't exist
            connection.collection("account").update({"_id": 42}, {"balance": doc["balance"] - 10})
    """

    def __init__(
        self,
        connection: "DocumentConnection",
        collection: str,
        key_field: str = "_id",
        lock_field: str = DEFAULT_LOCK_FIELD,
    ) -> None:
        self.connection = connection
        self.collection = collection
        self.key_field = key_field
        self.lock_field = lock_field

    def acquire(self, id_value: Any, options: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """
        Lock the document whose primary key is id_value.

        Options are find-and-modify options; "new" defaults to True so the
        locked document is returned with its new token.

        Returns:
            The locked document, or None if it does not exist

        Raises:
            UsageError: If the connection has no open transaction (no store call is made)
            StoreConflictError: If another transaction holds the document
        """
        self.connection.transaction_ready("lock document")

        start_time = time.monotonic()
        document = self.connection.collection(self.collection).find_and_modify(
            {self.key_field: id_value},
            {self.lock_field: new_lock_token()},
            {"new": True, **dict(options or {})},
        )
        observe_lock_acquisition(
            LockStrategy.DOCUMENT.value, time.monotonic() - start_time, document is not None
        )
        return document
