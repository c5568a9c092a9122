"""Sharded, crash-safe, id-keyed document store."""

from feedsync.store.database import CascadeResult, Changes, Database
from feedsync.store.records import Feed, Post, Record
from feedsync.store.table import ApplyResult, Table, TableSpec
from feedsync.store.transaction import Operation, OperationKind, Transaction

__all__ = [
    "ApplyResult",
    "CascadeResult",
    "Changes",
    "Database",
    "Feed",
    "Operation",
    "OperationKind",
    "Post",
    "Record",
    "Table",
    "TableSpec",
    "Transaction",
]
