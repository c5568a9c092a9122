from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import allure
import pytest

from feedsync.config import Settings
from feedsync.errors import RemoteError
from feedsync.ingestion.coordinator import FetchCoordinator
from feedsync.merge import MergeEngine
from feedsync.store.database import Database
from feedsync.store.records import Feed, Post
from feedsync.store.shards import serialize_record
from feedsync.subscriptions import add_feed
from feedsync.sync.orchestrator import SyncOrchestrator
from feedsync.sync.remote import RemoteSnapshot

pytestmark = [
    allure.epic("Sync Orchestrator"),
    allure.feature("Pull & Sync Workflows"),
]

FEED_URL = "https://blog.example/feed.xml"


class RecordingTransport:
    """Remote stand-in that records calls and serves a fixed snapshot."""

    def __init__(self, *, configured: bool = True, snapshot: RemoteSnapshot | None = None) -> None:
        self.configured = configured
        self.snapshot = snapshot
        self.calls: list[str] = []
        self.fail_push = False

    def clone(self, remote: str, path: Path) -> None:
        self.calls.append(f"clone {remote}")
        path.mkdir(parents=True, exist_ok=True)

    def has_remote(self, path: Path) -> bool:
        return self.configured

    def commit_if_dirty(self, path: Path, message: str) -> bool:
        self.calls.append(f"commit {message}")
        return True

    def pull_or_merge(self, path: Path, reconcile) -> bool:
        self.calls.append("pull_or_merge")
        if self.snapshot is None:
            return False
        reconcile(self.snapshot)
        return True

    def push(self, path: Path) -> None:
        if self.fail_push:
            raise RemoteError(message="push rejected", code="git_failed", command="git push")
        self.calls.append("push")


def _orchestrator(
    settings: Settings,
    database: Database,
    fetcher,
    transport: RecordingTransport | None = None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        settings=settings,
        database=database,
        coordinator=FetchCoordinator(fetcher, settings.fetch),
        transport=transport or RecordingTransport(configured=False),
    )


def _three_posts(rss: Callable[..., bytes]) -> bytes:
    return rss(
        [
            {
                "title": f"Post {number}",
                "link": f"https://blog.example/{number}",
                "guid": f"https://blog.example/{number}",
                "pubDate": f"Mon, 0{number} Jan 2024 10:00:00 GMT",
            }
            for number in (1, 2, 3)
        ],
        title="Example blog",
    )


def test_pull_twice_adds_three_posts_then_nothing(
    settings: Settings,
    database: Database,
    fake_fetcher,
    rss,
) -> None:
    add_feed(database, FEED_URL)
    fake_fetcher.responses[FEED_URL] = _three_posts(rss)
    orchestrator = _orchestrator(settings, database, fake_fetcher)

    assert len(list(database.posts.read())) == 0

    first = orchestrator.pull()
    assert first.posts_added == 3
    assert len(list(database.posts.read())) == 3
    assert next(database.feeds.read()).title == "Example blog"
    before = {path: path.read_bytes() for path in database.posts.directory.iterdir()}

    second = orchestrator.pull()
    assert second.posts_added == 0
    assert second.posts_updated == 0
    assert len(second.merge.changes) == 0
    assert len(list(database.posts.read())) == 3
    assert {path: path.read_bytes() for path in database.posts.directory.iterdir()} == before


def test_repull_replaces_changed_feed_and_post_metadata(
    settings: Settings,
    database: Database,
    fake_fetcher,
    rss,
) -> None:
    add_feed(database, FEED_URL)
    orchestrator = _orchestrator(settings, database, fake_fetcher)
    item = {"guid": "https://blog.example/1", "pubDate": "Mon, 01 Jan 2024 10:00:00 GMT"}
    fake_fetcher.responses[FEED_URL] = rss([{**item, "title": "Zeta post"}], title="Zeta Blog")
    orchestrator.pull()

    fake_fetcher.responses[FEED_URL] = rss([{**item, "title": "Alpha post"}], title="Alpha Blog")
    renamed = orchestrator.pull()

    assert renamed.posts_added == 0
    assert renamed.posts_updated == 1
    assert next(database.feeds.read()).title == "Alpha Blog"
    assert [post.title for post in database.posts.read()] == ["Alpha post"]
    assert len(orchestrator.pull().merge.changes) == 0


def test_readding_a_feed_keeps_its_shorthand(database: Database) -> None:
    first = add_feed(database, FEED_URL, shorthand="blog")
    again = add_feed(database, FEED_URL, shorthand="other")

    assert first.created
    assert not again.created
    assert again.feed.shorthand == "blog"
    assert database.feeds.ids() == [first.feed.id]


def test_sync_without_remote_stays_local(
    settings: Settings,
    database: Database,
    fake_fetcher,
    rss,
) -> None:
    add_feed(database, FEED_URL)
    fake_fetcher.responses[FEED_URL] = _three_posts(rss)
    transport = RecordingTransport(configured=False)

    summary = _orchestrator(settings, database, fake_fetcher, transport).sync()

    assert not summary.remote_configured
    assert summary.pull.posts_added == 3
    assert transport.calls == []


def test_sync_commits_reconciles_remote_rows_and_pushes(
    settings: Settings,
    database: Database,
    fake_fetcher,
    rss,
) -> None:
    add_feed(database, FEED_URL)
    fake_fetcher.responses[FEED_URL] = _three_posts(rss)
    remote_feed = Feed(id="ee0000000000aa", url="https://remote.example/feed")
    remote_post = Post(id="ee0000000000bb", link=remote_feed.id, title="From elsewhere")
    snapshot = RemoteSnapshot(
        ref="refs/remotes/origin/main",
        tables={
            "feeds": [_jsonl(remote_feed)],
            "posts": [_jsonl(remote_post)],
            "unknown": ['{"id": "x"}\n'],
        },
    )
    transport = RecordingTransport(snapshot=snapshot)

    summary = _orchestrator(settings, database, fake_fetcher, transport).sync()

    assert transport.calls == ["commit sync", "pull_or_merge", "push"]
    assert summary.pushed
    assert summary.remote_merge is not None
    assert summary.remote_merge.posts.inserted == 1
    assert remote_feed.id in database.feeds.ids()
    assert len(list(database.posts.read())) == 4


def test_remote_failure_keeps_pulled_posts(
    settings: Settings,
    database: Database,
    fake_fetcher,
    rss,
) -> None:
    add_feed(database, FEED_URL)
    fake_fetcher.responses[FEED_URL] = _three_posts(rss)
    transport = RecordingTransport()
    transport.fail_push = True

    with pytest.raises(RemoteError):
        _orchestrator(settings, database, fake_fetcher, transport).sync()

    assert len(list(database.posts.read())) == 3


def test_clone_initializes_database(settings: Settings, database: Database, fake_fetcher) -> None:
    target = Database(database.root.parent / "cloned")
    transport = RecordingTransport()

    _orchestrator(settings, target, fake_fetcher, transport).clone("user/repo")

    assert transport.calls == ["clone user/repo"]
    assert (target.root / ".feedsync").is_file()


def test_merge_engine_replays_remote_merge_idempotently(database: Database) -> None:
    engine = MergeEngine()
    remote = [Post(id="ab0000000000cc", link="f", title="Remote")]

    database.apply(engine.merge_into(database, posts=remote).changes)
    replay = engine.merge_into(database, posts=remote)

    assert len(replay.changes) == 0


def _jsonl(record: Feed | Post) -> str:
    return serialize_record(record.to_dict()) + "\n"
