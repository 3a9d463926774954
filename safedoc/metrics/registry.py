from prometheus_client import Counter, Histogram

DOC_WRITE_TOTAL = Counter(
    "safedoc_doc_write_total",
    "Document store write operations",
    ["collection", "op_type", "status"],
)

DOC_WRITE_LATENCY_SECONDS = Histogram(
    "safedoc_doc_write_latency_seconds",
    "Latency of document store write operations",
    ["collection", "op_type"],
)

BATCH_FLUSH_TOTAL = Counter(
    "safedoc_batch_flush_total",
    "Batch queue flushes",
    ["collection", "kind", "status"],
)

BATCH_FLUSH_SIZE = Histogram(
    "safedoc_batch_flush_size",
    "Number of operations submitted per batch flush",
    ["collection", "kind"],
    buckets=(1, 10, 50, 100, 250, 500, 1000, 5000),
)

DOC_LOCK_ACQUIRE_LATENCY_SECONDS = Histogram(
    "safedoc_doc_lock_acquire_latency_seconds",
    "Time spent acquiring a document lock",
    ["strategy", "acquired"],
)

DOC_LOCK_RETRY_TOTAL = Counter(
    "safedoc_doc_lock_retry_total",
    "Stubborn lock attempts rolled back because of a write conflict",
    ["collection"],
)
