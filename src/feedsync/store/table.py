"""Generic sharded, id-keyed table."""

from __future__ import annotations

import bisect
import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic

from feedsync.errors import StorageError, not_found
from feedsync.store.records import R
from feedsync.store.shards import list_shard_keys, read_shard, shard_key, shard_path, write_shard
from feedsync.store.transaction import OperationKind, Transaction

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TableSpec(Generic[R]):
    """Physical layout of one table."""

    name: str
    kind: type[R]
    shard_chars: int = 0
    id_length: int = 14


@dataclass(slots=True)
class ApplyResult:
    """Outcome of applying one transaction to one table."""

    table: str
    shards_written: list[str] = field(default_factory=list)
    upserted: int = 0
    deleted: int = 0


class Table(Generic[R]):
    """Records of one kind, partitioned into shards by id prefix.

    Every shard file keeps its lines sorted by id, and shard keys are id
    prefixes of equal length, so walking shards in key order yields the whole
    table in ascending id order.
    """

    def __init__(self, root: Path, spec: TableSpec[R]) -> None:
        self.root = root
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def directory(self) -> Path:
        return self.root / self.spec.name

    def shard_for(self, record_id: str) -> str:
        return shard_key(record_id, self.spec.shard_chars)

    def read(self) -> Iterator[R]:
        """Lazily yield all records in ascending id order; each call is a fresh pass."""

        for key in list_shard_keys(self.directory):
            yield from self._load_shard(key)

    def __iter__(self) -> Iterator[R]:
        return self.read()

    def ids(self) -> list[str]:
        return [record.id for record in self.read()]

    def by_id(self) -> dict[str, R]:
        return {record.id: record for record in self.read()}

    def get(self, record_id: str) -> R:
        """Return one record; only its own shard is read."""

        records = self._load_shard(self.shard_for(record_id))
        ids = [record.id for record in records]
        position = bisect.bisect_left(ids, record_id)
        if position < len(ids) and ids[position] == record_id:
            return records[position]
        raise not_found(record_id, self.name)

    def apply(self, transaction: Transaction[R]) -> ApplyResult:
        """Apply a transaction shard by shard.

        Each shard is replaced atomically. If a later shard fails, shards
        already written stay written and ``StorageError`` is raised.
        """

        result = ApplyResult(table=self.name)
        grouped = transaction.group_by_shard(self.shard_for)
        if not grouped:
            return result
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StorageError(
                message=f"Cannot create table directory {self.directory}: {error}",
                code="table_dir",
                table=self.name,
            ) from error

        for key in sorted(grouped):
            current = {record.id: record for record in self._load_shard(key)}
            upserted = deleted = 0
            for operation in grouped[key]:
                if operation.kind == OperationKind.UPSERT:
                    if operation.record is None or not isinstance(operation.record, self.spec.kind):
                        raise StorageError(
                            message=(
                                f"Table {self.name!r} stores {self.spec.kind.__name__} records; "
                                f"got {type(operation.record).__name__} for id {operation.record_id}"
                            ),
                            code="record_kind",
                            table=self.name,
                            shard=key,
                        )
                    current[operation.record_id] = operation.record
                    upserted += 1
                elif current.pop(operation.record_id, None) is not None:
                    deleted += 1

            payloads = [current[record_id].to_dict() for record_id in sorted(current)]
            path = shard_path(self.directory, key)
            try:
                write_shard(path, payloads)
            except OSError as error:
                raise StorageError(
                    message=f"Failed to write shard {path}: {error}",
                    code="shard_write",
                    table=self.name,
                    shard=key,
                ) from error
            result.shards_written.append(key)
            result.upserted += upserted
            result.deleted += deleted
        logger.debug(
            "Applied %d operations to %s across %d shards",
            len(transaction),
            self.name,
            len(result.shards_written),
        )
        return result

    def _load_shard(self, key: str) -> list[R]:
        path = shard_path(self.directory, key)
        try:
            records = [self.spec.kind.from_dict(payload) for payload in read_shard(path)]
        except (OSError, ValueError, KeyError, TypeError) as error:
            raise StorageError(
                message=f"Failed to read shard {path}: {error}",
                code="shard_read",
                table=self.name,
                shard=key,
            ) from error
        records.sort(key=lambda record: record.id)
        return records


def parse_rows(content: str, spec: TableSpec[R]) -> list[R]:
    """Parse shard file content that did not come from local disk."""

    rows: list[R] = []
    for line in content.splitlines():
        if line.strip():
            rows.append(spec.kind.from_dict(json.loads(line)))
    return rows
