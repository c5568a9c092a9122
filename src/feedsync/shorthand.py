"""Short user-facing aliases for feeds and posts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from feedsync.errors import ambiguous, not_found
from feedsync.store.records import Feed, Post

HOME_ROW = "asdfghjkl"
POST_ALPHABET = "asdfghjklASDFGHJKLqwertyiopzxcvbnm"
SHORTHAND_SIGIL = "@"
_OLDEST = datetime.min.replace(tzinfo=UTC)


def hex_to_alphabet(hex_value: str, alphabet: str) -> str:
    """Re-encode a hex string in the positional base ``len(alphabet)``."""

    number = int(hex_value or "0", 16)
    base = len(alphabet)
    digits: list[str] = []
    while True:
        number, remainder = divmod(number, base)
        digits.append(alphabet[remainder])
        if number == 0:
            break
    return "".join(reversed(digits))


def index_to_shorthand(index: int) -> str:
    return hex_to_alphabet(format(index, "x"), POST_ALPHABET)


def compute_feed_shorthands(ids: list[str]) -> list[str]:
    """Shortest equal-length unique prefixes of the ids in home-row base 9."""

    if not ids:
        return []
    encoded = [hex_to_alphabet(record_id, HOME_ROW) for record_id in ids]
    if len(encoded) == 1:
        return [encoded[0][0]]
    longest = max(len(value) for value in encoded)
    for length in range(1, longest + 1):
        prefixes = [value[:length] for value in encoded]
        if len(set(prefixes)) == len(prefixes):
            return prefixes
    return encoded


@dataclass(slots=True)
class FeedIndex:
    """Feeds ordered by URL with their display shorthands."""

    feeds: list[Feed] = field(default_factory=list)
    shorthands: list[str] = field(default_factory=list)

    def shorthand_of(self, feed_id: str) -> str | None:
        for feed, shorthand in zip(self.feeds, self.shorthands, strict=True):
            if feed.id == feed_id:
                return shorthand
        return None

    def labels(self) -> dict[str, str]:
        return {
            feed.id: f"@{shorthand} {feed.label}"
            for feed, shorthand in zip(self.feeds, self.shorthands, strict=True)
        }

    def resolver(self) -> ShorthandResolver:
        return ShorthandResolver(
            Feed.table_name,
            {
                feed.id: (shorthand,)
                for feed, shorthand in zip(self.feeds, self.shorthands, strict=True)
            },
        )


@dataclass(slots=True)
class PostIndex:
    """Posts newest first, labelled by their position."""

    posts: list[Post] = field(default_factory=list)
    shorthands: dict[str, str] = field(default_factory=dict)

    def resolver(self) -> ShorthandResolver:
        return ShorthandResolver(
            Post.table_name,
            {record_id: (shorthand,) for record_id, shorthand in self.shorthands.items()},
        )


def build_feed_index(feeds: Iterable[Feed]) -> FeedIndex:
    ordered = sorted(feeds, key=lambda feed: (feed.url, feed.id))
    computed = compute_feed_shorthands([feed.id for feed in ordered])
    shorthands = [
        feed.shorthand or generated for feed, generated in zip(ordered, computed, strict=True)
    ]
    return FeedIndex(feeds=ordered, shorthands=shorthands)


def build_post_index(posts: Iterable[Post]) -> PostIndex:
    ordered = sorted(posts, key=lambda post: post.id)
    ordered.sort(key=lambda post: post.published_at or _OLDEST, reverse=True)
    return PostIndex(
        posts=ordered,
        shorthands={post.id: index_to_shorthand(index) for index, post in enumerate(ordered)},
    )


class ShorthandResolver:
    """Resolves a token to a record id.

    Lookup order: exact id, exact shorthand, unambiguous id prefix.
    """

    def __init__(self, table: str, shorthands: Mapping[str, Iterable[str]]) -> None:
        self.table = table
        self._shorthands = {record_id: tuple(values) for record_id, values in shorthands.items()}

    def resolve(self, token: str) -> str:
        needle = token.strip().removeprefix(SHORTHAND_SIGIL)
        if not needle:
            raise not_found(token, self.table)
        if needle in self._shorthands:
            return needle

        by_shorthand = sorted(
            record_id for record_id, values in self._shorthands.items() if needle in values
        )
        if len(by_shorthand) == 1:
            return by_shorthand[0]
        if by_shorthand:
            raise ambiguous(needle, self.table, by_shorthand)

        by_prefix = sorted(
            record_id for record_id in self._shorthands if record_id.startswith(needle)
        )
        if len(by_prefix) == 1:
            return by_prefix[0]
        if by_prefix:
            raise ambiguous(needle, self.table, by_prefix)
        raise not_found(needle, self.table)
