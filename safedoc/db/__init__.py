from .batch import BatchQueue, BatchService
from .collection import Collection
from .command import BatchCommand
from .connection import DocumentConnection
from .locking.document_lock import DocumentLock
from .locking.stubborn import StubbornDocumentLock
from .models import BatchResult, Op, OpKind
from .session import DocumentSession

__all__ = [
    "DocumentConnection",
    "DocumentSession",
    "Collection",
    "BatchCommand",
    "BatchService",
    "BatchQueue",
    "BatchResult",
    "DocumentLock",
    "StubbornDocumentLock",
    "Op",
    "OpKind",
]
