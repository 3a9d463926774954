from .registry import (
    BATCH_FLUSH_SIZE,
    BATCH_FLUSH_TOTAL,
    DOC_LOCK_ACQUIRE_LATENCY_SECONDS,
    DOC_LOCK_RETRY_TOTAL,
    DOC_WRITE_LATENCY_SECONDS,
    DOC_WRITE_TOTAL,
)

__all__ = [
    "DOC_WRITE_TOTAL",
    "DOC_WRITE_LATENCY_SECONDS",
    "BATCH_FLUSH_TOTAL",
    "BATCH_FLUSH_SIZE",
    "DOC_LOCK_ACQUIRE_LATENCY_SECONDS",
    "DOC_LOCK_RETRY_TOTAL",
]
