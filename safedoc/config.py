from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_BATCH_SIZE = 500
DEFAULT_LOCK_DELAY_US = 1_000_000


@dataclass
class BatchConfig:
    insert_size: int = DEFAULT_BATCH_SIZE
    update_size: int = DEFAULT_BATCH_SIZE
    delete_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        for name in ("insert_size", "update_size", "delete_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")


@dataclass
class StubbornLockConfig:
    """
    Retry policy for stubborn document locking.

    delay_us is the pause between attempts in microseconds. max_retries=0
    means "retry until the document is free".
    """
    session_options: Mapping[str, Any] = field(default_factory=dict)
    transaction_options: Mapping[str, Any] = field(default_factory=dict)
    modify_options: Mapping[str, Any] = field(default_factory=dict)
    delay_us: int = DEFAULT_LOCK_DELAY_US
    max_retries: int = 0

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.delay_us < 0:
            raise ValueError("delay_us must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0; use 0 for unlimited retries")
