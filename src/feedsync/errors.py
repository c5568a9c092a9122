"""Error taxonomy shared by store, ingestion, and sync layers."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class FeedsyncError(Exception):
    """Base error carrying a human-readable message and a short code."""

    message: str
    code: str = "feedsync_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class NotFoundError(FeedsyncError):
    """No record matched the searched token."""

    token: str = ""
    table: str = ""


@dataclass(slots=True)
class AmbiguousError(FeedsyncError):
    """More than one record matched the searched token."""

    token: str = ""
    table: str = ""
    candidates: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class FetchError(FeedsyncError):
    """Per-feed network or timeout failure; non-fatal for a batch."""

    feed_url: str = ""


@dataclass(slots=True)
class ParseError(FeedsyncError):
    """Feed payload was not recognized by any parser in the fallback chain."""

    feed_url: str = ""


@dataclass(slots=True)
class StorageError(FeedsyncError):
    """Shard I/O failure; fatal for the transaction it occurred in."""

    table: str = ""
    shard: str | None = None


@dataclass(slots=True)
class RemoteError(FeedsyncError):
    """Remote transport (git) failure."""

    command: str = ""
    stderr: str = ""


def not_found(token: str, table: str) -> NotFoundError:
    return NotFoundError(
        message=f"No {_singular(table)} matches {token!r} in table {table!r}",
        code="not_found",
        token=token,
        table=table,
    )


def ambiguous(token: str, table: str, candidates: list[str] | tuple[str, ...]) -> AmbiguousError:
    listed = ", ".join(candidates)
    return AmbiguousError(
        message=f"Token {token!r} is ambiguous in table {table!r}; candidates: {listed}",
        code="ambiguous",
        token=token,
        table=table,
        candidates=tuple(candidates),
    )


def _singular(table: str) -> str:
    return table[:-1] if table.endswith("s") else table
