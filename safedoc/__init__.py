from .db.connection import DocumentConnection
from .db.models import Op, OpKind
from .record.document import Document
from .errors import SafedocError, StaleWriteError, StoreConflictError, StoreError, UsageError

__all__ = [
    "DocumentConnection",
    "Document",
    "Op",
    "OpKind",
    "SafedocError",
    "StaleWriteError",
    "StoreConflictError",
    "StoreError",
    "UsageError",
]
