"""Database root: the feeds and posts tables plus the single-writer lock."""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from feedsync.config import DB_MARKER_NAME, StoreSettings
from feedsync.errors import StorageError
from feedsync.store.records import Feed, Post
from feedsync.store.table import ApplyResult, Table, TableSpec
from feedsync.store.transaction import Transaction

LOCK_FILE_NAME = ".lock"
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Changes:
    """Per-table transactions produced by one logical operation."""

    feeds: Transaction[Feed]
    posts: Transaction[Post]

    @classmethod
    def empty(cls) -> Changes:
        return cls(feeds=Transaction(), posts=Transaction())

    def __len__(self) -> int:
        return len(self.feeds) + len(self.posts)


@dataclass(slots=True)
class CascadeResult:
    """Outcome of deleting one feed with its posts."""

    feed_id: str
    posts_deleted: int


class Database:
    """Sharded document store rooted at one directory."""

    def __init__(self, root: Path, settings: StoreSettings | None = None) -> None:
        store_settings = settings or StoreSettings()
        self.root = root
        self.feeds: Table[Feed] = Table(
            root,
            TableSpec(
                name=Feed.table_name,
                kind=Feed,
                shard_chars=store_settings.feeds_shard_chars,
                id_length=store_settings.id_length,
            ),
        )
        self.posts: Table[Post] = Table(
            root,
            TableSpec(
                name=Post.table_name,
                kind=Post,
                shard_chars=store_settings.posts_shard_chars,
                id_length=store_settings.id_length,
            ),
        )

    @property
    def id_length(self) -> int:
        return self.feeds.spec.id_length

    def ensure_initialized(self) -> None:
        """Create the root directory and its marker file."""

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            marker = self.root / DB_MARKER_NAME
            if not marker.exists():
                marker.write_text("", "utf-8")
        except OSError as error:
            raise StorageError(
                message=f"Cannot initialize database at {self.root}: {error}",
                code="init",
            ) from error

    def apply(self, changes: Changes) -> list[ApplyResult]:
        """Apply posts before feeds.

        A crash between the two tables then never leaves posts whose feed was
        removed; a repeated command or sync completes the rest.
        """

        results: list[ApplyResult] = []
        if len(changes.posts):
            results.append(self.posts.apply(changes.posts))
        if len(changes.feeds):
            results.append(self.feeds.apply(changes.feeds))
        return results

    def delete_feed(self, feed_id: str) -> CascadeResult:
        """Delete a feed and exactly the posts linked to it."""

        self.feeds.get(feed_id)
        changes = Changes.empty()
        for post in self.posts.read():
            if post.link == feed_id:
                changes.posts.delete(post.id)
        changes.feeds.delete(feed_id)
        self.apply(changes)
        logger.info("Deleted feed %s with %d posts", feed_id, len(changes.posts))
        return CascadeResult(feed_id=feed_id, posts_deleted=len(changes.posts))

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the exclusive writer lock; fails fast if another process has it."""

        self.ensure_initialized()
        lock_path = self.root / LOCK_FILE_NAME
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as error:
                raise StorageError(
                    message=f"Database {self.root} is locked by another feedsync process",
                    code="locked",
                ) from error
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
