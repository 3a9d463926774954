from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Any, Mapping, Optional


class OpKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Op(IntFlag):
    """Operation bits used in transaction declarations."""
    INSERT = 1
    UPDATE = 2
    DELETE = 4
    ALL = INSERT | UPDATE | DELETE


@dataclass
class BatchOperation:
    """
    A single write queued on a BatchCommand.
    """
    kind: OpKind
    condition: Mapping[str, Any]
    values: Mapping[str, Any]
    options: Optional[Mapping[str, Any]] = None


@dataclass
class BatchResult:
    inserted_ids: list[Any] = field(default_factory=list)
    inserted_count: int = 0
    updated_count: int = 0
    deleted_count: int = 0

    @property
    def total(self) -> int:
        return self.inserted_count + self.updated_count + self.deleted_count
