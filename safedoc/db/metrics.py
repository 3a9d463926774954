from ..metrics.registry import (
    BATCH_FLUSH_SIZE,
    BATCH_FLUSH_TOTAL,
    DOC_LOCK_ACQUIRE_LATENCY_SECONDS,
    DOC_LOCK_RETRY_TOTAL,
    DOC_WRITE_LATENCY_SECONDS,
    DOC_WRITE_TOTAL,
)


def observe_doc_write(collection: str, op_type: str, status: str, latency_s: float) -> None:
    DOC_WRITE_TOTAL.labels(collection=collection, op_type=op_type, status=status).inc()
    DOC_WRITE_LATENCY_SECONDS.labels(collection=collection, op_type=op_type).observe(latency_s)


def observe_batch_flush(collection: str, kind: str, status: str, size: int) -> None:
    BATCH_FLUSH_TOTAL.labels(collection=collection, kind=kind, status=status).inc()
    BATCH_FLUSH_SIZE.labels(collection=collection, kind=kind).observe(size)


def observe_lock_acquisition(strategy: str, latency_s: float, acquired: bool) -> None:
    DOC_LOCK_ACQUIRE_LATENCY_SECONDS.labels(
        strategy=strategy, acquired=str(acquired).lower()
    ).observe(latency_s)


def observe_lock_retry(collection: str) -> None:
    DOC_LOCK_RETRY_TOTAL.labels(collection=collection).inc()
