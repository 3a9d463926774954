from .document_lock import DocumentLock
from .strategy import LockStrategy
from .stubborn import Conflict, Exhausted, Locked, RetryOutcome, StubbornDocumentLock

__all__ = [
    "DocumentLock",
    "StubbornDocumentLock",
    "LockStrategy",
    "RetryOutcome",
    "Locked",
    "Conflict",
    "Exhausted",
]
