from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from .models import BatchOperation, BatchResult, OpKind

if TYPE_CHECKING:
    from .connection import DocumentConnection


class BatchCommand:
    """
    Accumulates write operations and submits them in one round-trip.

    The command does not clear itself after execute_batch(); the owner resets
    `documents` once the result has been handled.
    """

    def __init__(self, connection: "DocumentConnection") -> None:
        self.connection = connection
        self.documents: list[BatchOperation] = []

    def add_insert(self, values: Mapping[str, Any]) -> None:
        self.documents.append(BatchOperation(OpKind.INSERT, {}, dict(values)))

    def add_update(
        self,
        condition: Mapping[str, Any],
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.documents.append(BatchOperation(OpKind.UPDATE, dict(condition), dict(values), options))

    def add_delete(
        self,
        condition: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.documents.append(BatchOperation(OpKind.DELETE, dict(condition), {}, options))

    def execute_batch(self, collection_name: str) -> BatchResult:
        return self.connection.collection(collection_name).execute_batch(list(self.documents))
