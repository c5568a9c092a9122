"""Pull (fetch + merge + apply) and sync (pull + remote reconcile) workflows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from feedsync.config import Settings
from feedsync.ingestion.coordinator import FetchCoordinator, FetchReport
from feedsync.merge import MergeEngine, MergeSummary
from feedsync.store.database import Database
from feedsync.store.records import Feed, Post
from feedsync.store.table import ApplyResult, parse_rows
from feedsync.sync.remote import RemoteSnapshot, RemoteTransport

logger = logging.getLogger(__name__)

SYNC_COMMIT_MESSAGE = "sync"


@dataclass(slots=True)
class PullSummary:
    """Outcome of one fetch + merge + apply cycle."""

    report: FetchReport
    merge: MergeSummary
    applied: list[ApplyResult] = field(default_factory=list)

    @property
    def posts_added(self) -> int:
        return self.merge.posts.inserted

    @property
    def posts_updated(self) -> int:
        return self.merge.posts.updated


@dataclass(slots=True)
class SyncSummary:
    """Outcome of a pull followed by the remote exchange."""

    pull: PullSummary
    remote_configured: bool = False
    committed: bool = False
    remote_merge: MergeSummary | None = None
    pushed: bool = False


class SyncOrchestrator:
    """Runs the mutating workflows against one database under its writer lock."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        coordinator: FetchCoordinator,
        transport: RemoteTransport,
        merge_engine: MergeEngine | None = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.coordinator = coordinator
        self.transport = transport
        self.merge_engine = merge_engine or MergeEngine()

    def clone(self, remote: str) -> None:
        self.transport.clone(remote, self.database.root)
        self.database.ensure_initialized()

    def pull(self) -> PullSummary:
        with self.database.lock():
            return self._pull()

    def sync(self) -> SyncSummary:
        """Pull, then exchange changes with the remote when one is configured.

        The local apply finishes before any remote step starts, so a remote
        failure never loses fetched posts.
        """

        with self.database.lock():
            summary = SyncSummary(pull=self._pull())
            root = self.database.root
            if not self.transport.has_remote(root):
                logger.info("No remote configured for %s; sync stays local", root)
                return summary

            summary.remote_configured = True
            summary.committed = self.transport.commit_if_dirty(root, SYNC_COMMIT_MESSAGE)

            def reconcile(snapshot: RemoteSnapshot) -> None:
                summary.remote_merge = self._merge_remote(snapshot)

            self.transport.pull_or_merge(root, reconcile)
            self.transport.push(root)
            summary.pushed = True
            return summary

    def _pull(self) -> PullSummary:
        feeds = list(self.database.feeds.read())
        existing_posts = self.database.posts.by_id()
        report = self.coordinator.run(feeds, existing_posts=existing_posts)
        merge = self.merge_engine.merge_into(
            self.database,
            feeds=report.feed_candidates,
            posts=report.post_candidates,
        )
        applied = self.database.apply(merge.changes)
        logger.info(
            "Pulled %d feeds (%d failed): %d new posts, %d updated",
            len(feeds),
            len(report.failures),
            merge.posts.inserted,
            merge.posts.updated,
        )
        return PullSummary(report=report, merge=merge, applied=applied)

    def _merge_remote(self, snapshot: RemoteSnapshot) -> MergeSummary:
        remote_feeds: list[Feed] = []
        for content in snapshot.tables.get(Feed.table_name, []):
            remote_feeds.extend(parse_rows(content, self.database.feeds.spec))
        remote_posts: list[Post] = []
        for content in snapshot.tables.get(Post.table_name, []):
            remote_posts.extend(parse_rows(content, self.database.posts.spec))

        summary = MergeSummary(
            feeds=self.merge_engine.merge_tables(self.database.feeds.by_id(), remote_feeds),
            posts=self.merge_engine.merge_tables(self.database.posts.by_id(), remote_posts),
        )
        self.database.apply(summary.changes)
        logger.info(
            "Merged remote %s: %d feeds and %d posts changed",
            snapshot.ref,
            len(summary.feeds.transaction),
            len(summary.posts.transaction),
        )
        return summary
