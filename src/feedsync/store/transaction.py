"""Ephemeral batches of upsert/delete operations."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic

from feedsync.store.records import R


class OperationKind(str, Enum):
    """Kind of a single transaction operation."""

    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(slots=True)
class Operation(Generic[R]):
    """One upsert (with record) or delete (by id)."""

    kind: OperationKind
    record_id: str
    record: R | None = None


@dataclass(slots=True)
class Transaction(Generic[R]):
    """Ordered batch of operations against one table.

    Later operations on the same id win when the batch is applied.
    """

    operations: list[Operation[R]] = field(default_factory=list)

    def upsert(self, record: R) -> None:
        self.operations.append(Operation(OperationKind.UPSERT, record.id, record))

    def delete(self, record_id: str) -> None:
        self.operations.append(Operation(OperationKind.DELETE, record_id))

    def group_by_shard(self, shard_of: Callable[[str], str]) -> dict[str, list[Operation[R]]]:
        grouped: dict[str, list[Operation[R]]] = {}
        for operation in self.operations:
            grouped.setdefault(shard_of(operation.record_id), []).append(operation)
        return grouped

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[Operation[R]]:
        return iter(self.operations)
