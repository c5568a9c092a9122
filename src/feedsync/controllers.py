"""Controllers for feedsync CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from feedsync.config import Settings
from feedsync.errors import FeedsyncError
from feedsync.ingestion.coordinator import FetchCoordinator, FetchReport
from feedsync.ingestion.fetcher import Fetcher, HttpFetcher
from feedsync.render import parse_grouping, render_posts
from feedsync.shorthand import SHORTHAND_SIGIL, build_feed_index, build_post_index
from feedsync.store.database import Database
from feedsync.store.records import Post
from feedsync.subscriptions import add_feed, remove_feed
from feedsync.sync.orchestrator import PullSummary, SyncOrchestrator
from feedsync.sync.remote import GitRemote, RemoteTransport

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[Settings], Fetcher]
TransportFactory = Callable[[Settings], RemoteTransport]


@dataclass(slots=True)
class FeedAddCommand:
    """CLI inputs for feed add command."""

    db_path: Path | None
    url: str
    shorthand: str | None = None


@dataclass(slots=True)
class FeedRemoveCommand:
    """CLI inputs for feed rm command."""

    db_path: Path | None
    target: str


@dataclass(slots=True)
class FeedListCommand:
    """CLI inputs for feed ls command."""

    db_path: Path | None


@dataclass(slots=True)
class PullCommand:
    """CLI inputs for pull and sync commands."""

    db_path: Path | None


@dataclass(slots=True)
class CloneCommand:
    """CLI inputs for clone command."""

    db_path: Path | None
    remote: str


@dataclass(slots=True)
class GitCommand:
    """CLI inputs for git passthrough command."""

    db_path: Path | None
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class ShowCommand:
    """CLI inputs for show command."""

    db_path: Path | None
    grouping: str = ""
    feed_filter: str | None = None
    color: bool = False


@dataclass(slots=True)
class PostLookupCommand:
    """CLI inputs for open and read commands."""

    db_path: Path | None
    shorthand: str


@dataclass(slots=True)
class CommandResult:
    """Output lines plus an overall verdict for commands that can partially fail."""

    lines: list[str] = field(default_factory=list)
    success: bool = True
    failure_message: str = ""


class FeedsyncCliController:
    """Coordinates feedsync command execution."""

    def __init__(
        self,
        *,
        fetcher_factory: FetcherFactory | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.fetcher_factory = fetcher_factory or _http_fetcher
        self.transport_factory = transport_factory or _git_remote

    def add_feed(self, command: FeedAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        database = _database(settings)
        with database.lock():
            result = add_feed(database, command.url, shorthand=command.shorthand)
        index = build_feed_index(database.feeds.read())
        shorthand = index.shorthand_of(result.feed.id) or ""
        verb = "Added" if result.created else "Already subscribed:"
        return [f"{verb} {SHORTHAND_SIGIL}{shorthand} {result.feed.url}"]

    def remove_feed(self, command: FeedRemoveCommand) -> list[str]:
        settings = _settings(command.db_path)
        database = _database(settings)
        with database.lock():
            removed = remove_feed(database, command.target)
        return [f"Removed feed {removed.feed_id} and {removed.posts_deleted} posts"]

    def list_feeds(self, command: FeedListCommand) -> list[str]:
        database = _database(_settings(command.db_path))
        index = build_feed_index(database.feeds.read())
        if not index.feeds:
            raise FeedsyncError(message="No matching feeds", code="empty")
        lines: list[str] = []
        for feed, shorthand in zip(index.feeds, index.shorthands, strict=True):
            if feed.title:
                lines.append(f"{SHORTHAND_SIGIL}{shorthand} {feed.url} ({feed.title})")
            else:
                lines.append(f"{SHORTHAND_SIGIL}{shorthand} {feed.url}")
        return lines

    def pull(self, command: PullCommand) -> CommandResult:
        settings = _settings(command.db_path)
        with self._orchestrator(settings) as orchestrator:
            summary = orchestrator.pull()
        return _pull_result(summary)

    def sync(self, command: PullCommand) -> CommandResult:
        settings = _settings(command.db_path)
        with self._orchestrator(settings) as orchestrator:
            summary = orchestrator.sync()
        result = _pull_result(summary.pull)
        if not summary.remote_configured:
            result.lines.append("No remote configured; changes kept locally.")
            return result
        remote_changes = 0
        if summary.remote_merge is not None:
            remote_changes = len(summary.remote_merge.changes)
        result.lines.append(
            "Remote: "
            f"committed={'yes' if summary.committed else 'no'} "
            f"merged_records={remote_changes} "
            f"pushed={'yes' if summary.pushed else 'no'}",
        )
        return result

    def clone(self, command: CloneCommand) -> list[str]:
        settings = _settings(command.db_path)
        with self._orchestrator(settings) as orchestrator:
            orchestrator.clone(command.remote)
        return [f"Cloned {command.remote} into {settings.db_root}"]

    def git(self, command: GitCommand) -> list[str]:
        settings = _settings(command.db_path)
        database = _database(settings)
        database.ensure_initialized()
        output = GitRemote(settings.sync).passthrough(database.root, command.args)
        return output.splitlines()

    def show(self, command: ShowCommand) -> list[str]:
        keys = parse_grouping(command.grouping)
        database = _database(_settings(command.db_path))
        feed_index = build_feed_index(database.feeds.read())
        post_index = build_post_index(database.posts.read())

        posts = post_index.posts
        if command.feed_filter:
            feed_id = feed_index.resolver().resolve(command.feed_filter)
            posts = [post for post in posts if post.link == feed_id]
        if not posts:
            raise FeedsyncError(message="No matching posts", code="empty")
        return render_posts(
            posts,
            keys,
            post_index.shorthands,
            feed_index.labels(),
            color=command.color,
        )

    def post_link(self, command: PostLookupCommand) -> str:
        database = _database(_settings(command.db_path))
        post = _resolve_post(database, command.shorthand)
        if not post.url:
            raise FeedsyncError(message="Post has no link", code="no_link")
        return post.url

    @contextmanager
    def _orchestrator(self, settings: Settings) -> Iterator[SyncOrchestrator]:
        fetcher = self.fetcher_factory(settings)
        database = _database(settings)
        try:
            yield SyncOrchestrator(
                settings=settings,
                database=database,
                coordinator=FetchCoordinator(
                    fetcher,
                    settings.fetch,
                    id_length=settings.store.id_length,
                ),
                transport=self.transport_factory(settings),
            )
        finally:
            close = getattr(fetcher, "close", None)
            if callable(close):
                close()


def _pull_result(summary: PullSummary) -> CommandResult:
    report: FetchReport = summary.report
    lines = [
        "Pull completed: "
        f"feeds={len(report.outcomes)} "
        f"failed={len(report.failures)} "
        f"new_posts={summary.posts_added} "
        f"updated_posts={summary.posts_updated}",
    ]
    for stats in report.feeds:
        line = (
            f"  feed={stats.feed_url} status={stats.status} items={stats.items} "
            f"fallback={stats.fallback_items} skipped={stats.skipped_items}"
        )
        if stats.error:
            line += f" error={stats.error}"
        lines.append(line)
    result = CommandResult(lines=lines)
    if report.all_failed:
        result.success = False
        result.failure_message = f"All {len(report.outcomes)} feeds failed to fetch."
    return result


def _resolve_post(database: Database, token: str) -> Post:
    index = build_post_index(database.posts.read())
    post_id = index.resolver().resolve(token)
    return next(post for post in index.posts if post.id == post_id)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _database(settings: Settings) -> Database:
    return Database(settings.db_root, settings.store)


def _http_fetcher(settings: Settings) -> Fetcher:
    return HttpFetcher(user_agent=settings.fetch.user_agent)


def _git_remote(settings: Settings) -> RemoteTransport:
    return GitRemote(settings.sync)
