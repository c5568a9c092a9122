from __future__ import annotations

import allure
import pytest

from feedsync.errors import NotFoundError, StorageError
from feedsync.store.database import Changes, Database
from feedsync.store.records import Feed, Post
from feedsync.store.shards import SHARD_FILE_PREFIX
from feedsync.store.transaction import Transaction

pytestmark = [
    allure.epic("Document Store"),
    allure.feature("Tables, Transactions & Lock"),
]

IDS = ["ff0000000000a1", "00000000000001", "a1000000000002", "0f000000000003", "a1000000000001"]


def _seed(database: Database, feed_ids: list[str], posts_per_feed: int) -> None:
    changes = Changes.empty()
    for index, owner in enumerate(feed_ids):
        changes.feeds.upsert(Feed(id=owner, url=f"https://example.com/{index}"))
        for number in range(posts_per_feed):
            changes.posts.upsert(
                Post(id=f"{index:x}{number:x}" + "0" * 12, link=owner, title=f"{index}-{number}"),
            )
    database.apply(changes)


def test_read_yields_ascending_ids_across_shards(database: Database) -> None:
    transaction: Transaction[Post] = Transaction()
    for record_id in IDS:
        transaction.upsert(Post(id=record_id, link="f"))

    result = database.posts.apply(transaction)

    assert sorted(result.shards_written) == ["00", "0f", "a1", "ff"]
    assert database.posts.ids() == sorted(IDS)
    assert list(database.posts.read()) == list(database.posts.read())
    for shard_file in database.posts.directory.glob(f"{SHARD_FILE_PREFIX}*"):
        lines = shard_file.read_text("utf-8").splitlines()
        assert lines == sorted(lines)


def test_feeds_table_lives_in_a_single_shard(database: Database) -> None:
    _seed(database, ["bb0000000000f1", "aa0000000000f2"], posts_per_feed=0)

    files = sorted(path.name for path in database.feeds.directory.iterdir())

    assert files == ["items_.jsonl"]
    assert database.feeds.ids() == ["aa0000000000f2", "bb0000000000f1"]


def test_get_reads_single_record_or_raises_not_found(database: Database) -> None:
    _seed(database, ["aa0000000000f1"], posts_per_feed=0)

    assert database.feeds.get("aa0000000000f1").url == "https://example.com/0"
    with pytest.raises(NotFoundError) as error:
        database.feeds.get("aa0000000000ff")
    assert error.value.table == "feeds"


def test_later_operations_on_same_id_win(database: Database) -> None:
    transaction: Transaction[Post] = Transaction()
    transaction.upsert(Post(id="ab00000000000a", link="f", title="first"))
    transaction.delete("ab00000000000a")
    transaction.upsert(Post(id="ab00000000000a", link="f", title="last"))

    database.posts.apply(transaction)

    assert [post.title for post in database.posts.read()] == ["last"]


def test_apply_rejects_wrong_record_kind(database: Database) -> None:
    transaction = Transaction()
    transaction.upsert(Feed(id="ab00000000000a", url="https://example.com"))

    with pytest.raises(StorageError) as error:
        database.posts.apply(transaction)

    assert error.value.code == "record_kind"


def test_delete_feed_cascades_to_exactly_its_posts(database: Database) -> None:
    first, second = "aa0000000000f1", "bb0000000000f2"
    _seed(database, [first, second], posts_per_feed=3)

    result = database.delete_feed(first)

    assert result.posts_deleted == 3
    assert database.feeds.ids() == [second]
    remaining = list(database.posts.read())
    assert len(remaining) == 3
    assert {post.link for post in remaining} == {second}


def test_delete_unknown_feed_raises_not_found(database: Database) -> None:
    with pytest.raises(NotFoundError):
        database.delete_feed("00000000000000")


def test_lock_is_exclusive(database: Database) -> None:
    with database.lock():
        with pytest.raises(StorageError) as error:
            with database.lock():
                pass
    assert error.value.code == "locked"

    with database.lock():
        pass


@pytest.mark.parametrize(
    "line",
    [
        '{"id": "ab0000000000cc", "link": "f", "published_at": "yesterday"}',
        '{"id": "ab0000000000cc", "link": "f", "fallback_attempts": "many"}',
    ],
)
def test_unreadable_record_in_shard_is_a_storage_error(database: Database, line: str) -> None:
    shard = database.posts.directory / f"{SHARD_FILE_PREFIX}ab.jsonl"
    shard.parent.mkdir(parents=True, exist_ok=True)
    shard.write_text(line + "\n", "utf-8")

    with pytest.raises(StorageError) as error:
        list(database.posts.read())

    assert error.value.code == "shard_read"
    assert error.value.table == "posts"
    assert error.value.shard == "ab"
