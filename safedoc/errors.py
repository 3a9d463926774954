class SafedocError(Exception):
    """Base exception for safedoc errors."""


class StoreError(SafedocError):
    """Any failure reported by the document store."""


class StoreConflictError(StoreError):
    """Transient write conflict (lock wait timeout, deadlock, busy database)."""


class StaleWriteError(SafedocError):
    """The document being updated or deleted is outdated (optimistic lock mismatch)."""


class UsageError(SafedocError):
    """The API was called in a state where the operation cannot run."""
