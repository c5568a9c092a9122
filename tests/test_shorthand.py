from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from feedsync.errors import AmbiguousError, NotFoundError
from feedsync.shorthand import (
    HOME_ROW,
    POST_ALPHABET,
    ShorthandResolver,
    build_feed_index,
    build_post_index,
    compute_feed_shorthands,
    hex_to_alphabet,
    index_to_shorthand,
)
from feedsync.store.records import Feed, Post

pytestmark = [
    allure.epic("Shorthand Resolver"),
    allure.feature("Aliases For Feeds And Posts"),
]


def test_resolves_user_shorthand_and_rejects_missing() -> None:
    feeds = [
        Feed(id="3f2a0000000001", url="https://news.ycombinator.com/rss", shorthand="hn"),
        Feed(id="9c1b0000000002", url="https://lobste.rs/rss"),
    ]
    resolver = build_feed_index(feeds).resolver()

    assert resolver.resolve("@hn") == "3f2a0000000001"
    assert resolver.resolve("hn") == "3f2a0000000001"
    with pytest.raises(NotFoundError) as error:
        resolver.resolve("@missing")
    assert error.value.token == "missing"
    assert error.value.table == "feeds"


def test_resolution_order_is_id_then_shorthand_then_prefix() -> None:
    resolver = ShorthandResolver(
        "posts",
        {"abc123": ("x",), "abd456": ("abc123x",), "ffff00": ("abc",)},
    )

    assert resolver.resolve("abc123") == "abc123"
    assert resolver.resolve("abc") == "ffff00"
    assert resolver.resolve("abd") == "abd456"
    with pytest.raises(AmbiguousError) as error:
        resolver.resolve("ab")
    assert error.value.candidates == ("abc123", "abd456")


def test_hex_to_alphabet_is_positional() -> None:
    assert hex_to_alphabet("0", HOME_ROW) == "a"
    assert hex_to_alphabet("9", HOME_ROW) == "sa"
    assert index_to_shorthand(0) == "a"
    assert index_to_shorthand(len(POST_ALPHABET)) == "sa"


def test_feed_shorthands_are_shortest_unique_prefixes() -> None:
    shorthands = compute_feed_shorthands(["00000000000001", "ffffffffffffff", "fffffffffffff0"])

    assert len(set(shorthands)) == 3
    assert all(set(value) <= set(HOME_ROW) for value in shorthands)
    assert compute_feed_shorthands(["abc"]) == [hex_to_alphabet("abc", HOME_ROW)[0]]
    assert compute_feed_shorthands([]) == []


def test_feed_index_orders_by_url_and_labels_feeds() -> None:
    index = build_feed_index(
        [
            Feed(id="b" * 14, url="https://b.example/feed", title="Bee"),
            Feed(id="a" * 14, url="https://a.example/feed"),
        ],
    )

    assert [feed.url for feed in index.feeds] == ["https://a.example/feed", "https://b.example/feed"]
    labels = index.labels()
    assert labels["a" * 14].endswith(" https://a.example/feed")
    assert labels["b" * 14].endswith(" Bee")
    assert labels["b" * 14].startswith("@")


def test_post_index_labels_newest_first() -> None:
    posts = [
        Post(id="p-old", link="f", published_at=datetime(2024, 1, 1, tzinfo=UTC)),
        Post(id="p-new", link="f", published_at=datetime(2024, 3, 1, tzinfo=UTC)),
        Post(id="p-undated", link="f"),
    ]

    index = build_post_index(posts)

    assert [post.id for post in index.posts] == ["p-new", "p-old", "p-undated"]
    assert index.shorthands == {"p-new": "a", "p-old": "s", "p-undated": "d"}
    assert index.resolver().resolve("s") == "p-old"
