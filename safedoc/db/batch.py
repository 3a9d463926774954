from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from ..config import BatchConfig
from .command import BatchCommand
from .metrics import observe_batch_flush
from .models import BatchResult, OpKind

if TYPE_CHECKING:
    from .connection import DocumentConnection

logger = logging.getLogger(__name__)


@dataclass
class BatchQueue:
    """
    Pending operations of one kind for one document type.

    Invariant: pending == len(command.documents) between calls.
    """
    owner: Any
    kind: OpKind
    command: BatchCommand | None = None
    pending: int = 0
    initialized: bool = False


def _owner_name(owner: Any) -> str:
    if isinstance(owner, str):
        return owner
    return getattr(owner, "__qualname__", repr(owner))


def _collection_name(owner: Any) -> str:
    if isinstance(owner, str):
        return owner
    return owner.collection_name()


class BatchService:
    """
    Registry of batch queues keyed by (document type, operation kind).

    An owner is either a document class (anything with a collection_name()
    classmethod and optional batch_insert_size / batch_update_size /
    batch_delete_size attributes) or a plain collection name.

    Queues are created on first use and live as long as the service. There is
    no internal locking: callers that share a service between threads must
    serialize access per document type.

    Usage:
        with BatchService(connection) as batches:
            for row in rows:
                batches.enqueue_insert(Customer, row)
            batches.flush(Customer, OpKind.INSERT)
    """

    def __init__(self, connection: "DocumentConnection", config: BatchConfig | None = None) -> None:
        self.connection = connection
        self.config = config or BatchConfig()
        self._queues: dict[tuple[Any, OpKind], BatchQueue] = {}

    def __enter__(self) -> "BatchService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _queue(self, owner: Any, kind: OpKind) -> BatchQueue:
        key = (owner, kind)
        queue = self._queues.get(key)
        if queue is None:
            queue = self._queues[key] = BatchQueue(owner, kind)
        return queue

    def _init(self, queue: BatchQueue) -> BatchCommand:
        if not queue.initialized:
            queue.initialized = True
            queue.command = self.connection.create_command()
            logger.debug("Batch %s queue created for %s", queue.kind.value, _owner_name(queue.owner))
        return queue.command

    def batch_size(self, owner: Any, kind: OpKind) -> int:
        size = getattr(owner, f"batch_{kind.value}_size", None)
        if size is None:
            size = getattr(self.config, f"{kind.value}_size")
        return size

    def has_pending(self, owner: Any, kind: OpKind) -> bool:
        queue = self._queues.get((owner, kind))
        return queue is not None and queue.pending > 0

    def pending(self, owner: Any, kind: OpKind) -> int:
        queue = self._queues.get((owner, kind))
        return queue.pending if queue is not None else 0

    def _appended(self, queue: BatchQueue) -> BatchResult | None:
        queue.pending += 1
        if queue.pending >= self.batch_size(queue.owner, queue.kind):
            return self.flush(queue.owner, queue.kind)
        return None

    def enqueue_insert(self, owner: Any, values: Mapping[str, Any]) -> BatchResult | None:
        """
        Queue one insert.

        Returns:
            The flush result if this call reached the threshold, None otherwise.
        """
        queue = self._queue(owner, OpKind.INSERT)
        self._init(queue).add_insert(values)
        return self._appended(queue)

    def enqueue_update(
        self,
        owner: Any,
        condition: Mapping[str, Any],
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult | None:
        """
        Queue one update. Nothing is queued when values is empty.

        The condition may match any number of documents, which is how bulk
        update_all pairs are batched.
        """
        queue = self._queue(owner, OpKind.UPDATE)
        command = self._init(queue)
        if not values:
            return None
        command.add_update(condition, values, options)
        return self._appended(queue)

    def enqueue_update_all(
        self,
        owner: Any,
        condition: Mapping[str, Any] | None,
        attributes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult | None:
        """Queue a bulk condition/attributes pair on the update queue."""
        return self.enqueue_update(owner, dict(condition or {}), attributes, options)

    def enqueue_delete(
        self,
        owner: Any,
        condition: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult | None:
        queue = self._queue(owner, OpKind.DELETE)
        self._init(queue).add_delete(condition, options)
        return self._appended(queue)

    def flush(self, owner: Any, kind: OpKind) -> BatchResult | None:
        """
        Submit the pending operations of one queue.

        Does nothing and returns None when the queue is empty. The queue is
        emptied even when the store rejects the batch; the error propagates.
        """
        queue = self._queues.get((owner, kind))
        if queue is None or queue.pending == 0:
            return None

        size = queue.pending
        queue.pending = 0
        collection_name = _collection_name(owner)
        status = "success"
        try:
            return queue.command.execute_batch(collection_name)
        except Exception:
            status = "error"
            logger.error(
                "Batch %s flush of %d operations for %s failed",
                kind.value,
                size,
                _owner_name(owner),
            )
            raise
        finally:
            queue.command.documents.clear()
            observe_batch_flush(collection_name, kind.value, status, size)

    def flush_all(self) -> dict[tuple[Any, OpKind], BatchResult]:
        """Flush every queue with pending operations, in creation order."""
        results = {}
        for key, queue in list(self._queues.items()):
            if queue.pending:
                results[key] = self.flush(queue.owner, queue.kind)
        return results

    def assert_flushed(self) -> list[tuple[str, OpKind]]:
        """
        Warn about queues that still hold operations.

        Call this at controlled shutdown points; a non-empty result means a
        caller forgot to flush.

        Returns:
            (document type name, kind) for every queue with pending operations
        """
        unflushed = []
        for queue in self._queues.values():
            if queue.pending:
                name = _owner_name(queue.owner)
                logger.warning(
                    "%s : batch %s mode not completed! %d operations were never flushed",
                    name,
                    queue.kind.value,
                    queue.pending,
                )
                unflushed.append((name, queue.kind))
        return unflushed

    def close(self) -> None:
        self.assert_flushed()
