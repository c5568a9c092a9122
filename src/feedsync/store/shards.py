"""Shard file layout and crash-safe shard replacement."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

SHARD_FILE_PREFIX = "items_"
SHARD_FILE_SUFFIX = ".jsonl"
STAGING_SUFFIX = ".tmp"
logger = logging.getLogger(__name__)


def shard_key(record_id: str, shard_chars: int) -> str:
    """Shard of a record: the leading ``shard_chars`` characters of its id."""

    return record_id[:shard_chars]


def shard_filename(key: str) -> str:
    return f"{SHARD_FILE_PREFIX}{key}{SHARD_FILE_SUFFIX}"


def shard_path(table_dir: Path, key: str) -> Path:
    return table_dir / shard_filename(key)


def list_shard_keys(table_dir: Path) -> list[str]:
    """Return shard keys present on disk in ascending order."""

    if not table_dir.is_dir():
        return []
    keys = [
        path.name[len(SHARD_FILE_PREFIX) : -len(SHARD_FILE_SUFFIX)]
        for path in table_dir.glob(f"{SHARD_FILE_PREFIX}*{SHARD_FILE_SUFFIX}")
        if path.is_file()
    ]
    return sorted(keys)


def read_shard(path: Path) -> list[dict[str, Any]]:
    """Load every record payload of one shard file; a missing file is empty."""

    try:
        handle = path.open(encoding="utf-8")
    except FileNotFoundError:
        return []
    payloads: list[dict[str, Any]] = []
    with handle:
        for line_number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            payload = json.loads(line)
            if not isinstance(payload, dict) or "id" not in payload:
                raise ValueError(f"{path}:{line_number}: record must be a JSON object with an id")
            payloads.append(payload)
    return payloads


def serialize_record(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def write_shard(path: Path, payloads: list[dict[str, Any]]) -> None:
    """Replace one shard file atomically; an empty shard removes the file.

    Content is staged in a temporary file next to the shard, flushed to disk,
    and moved over the old file with ``os.replace``. Readers observe either
    the complete old or the complete new shard.
    """

    if not payloads:
        path.unlink(missing_ok=True)
        logger.debug("Removed empty shard %s", path)
        return

    with _staged_file(path) as handle:
        for payload in payloads:
            handle.write(serialize_record(payload))
            handle.write("\n")
    logger.debug("Wrote shard %s (%d records)", path, len(payloads))


@contextmanager
def _staged_file(path: Path) -> Iterator[IO[str]]:
    handle = tempfile.NamedTemporaryFile(  # noqa: SIM115
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=STAGING_SUFFIX,
        delete=False,
    )
    staged = Path(handle.name)
    try:
        with handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staged, path)
    except BaseException:
        staged.unlink(missing_ok=True)
        raise
    _fsync_directory(path.parent)


def _fsync_directory(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", directory)
    finally:
        os.close(fd)
