"""Plain-text rendering of post listings, optionally grouped by date and feed."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from itertools import groupby

import rich_click as click

from feedsync.errors import FeedsyncError
from feedsync.store.records import Post

UNKNOWN_DATE = "unknown"
INDENT = "  "


class GroupKey(str, Enum):
    """Dimension a listing can be grouped by."""

    DATE = "d"
    FEED = "f"


def parse_grouping(value: str) -> list[GroupKey]:
    """Parse ``""``, ``d``, ``f``, ``df`` or ``fd`` into group keys."""

    try:
        keys = [GroupKey(char) for char in value]
    except ValueError as error:
        raise FeedsyncError(
            message=f"Unknown grouping: {value}. Use: d, f, df, fd",
            code="invalid_grouping",
        ) from error
    if len(set(keys)) != len(keys):
        raise FeedsyncError(
            message=f"Unknown grouping: {value}. Use: d, f, df, fd",
            code="invalid_grouping",
        )
    return keys


def format_date(post: Post) -> str:
    if post.published_at is None:
        return UNKNOWN_DATE
    return post.published_at.strftime("%Y-%m-%d")


def feed_label(post: Post, labels: Mapping[str, str]) -> str:
    return labels.get(post.link, post.link)


def format_item(
    post: Post,
    grouped: Sequence[GroupKey],
    shorthand: str,
    labels: Mapping[str, str],
    *,
    color: bool = False,
) -> str:
    """One listing line: ``date  shorthand title (feed)`` minus grouped columns."""

    line = f"{_style(shorthand, color, bold=True)} {post.title}"
    if GroupKey.DATE not in grouped:
        line = f"{_style(format_date(post), color, fg='cyan')}  {line}"
    if GroupKey.FEED not in grouped:
        line += " " + _style(f"({feed_label(post, labels)})", color, dim=True, italic=True)
    return line


def render_posts(
    posts: Sequence[Post],
    keys: Sequence[GroupKey],
    shorthands: Mapping[str, str],
    labels: Mapping[str, str],
    *,
    color: bool = False,
) -> list[str]:
    """Render posts as lines; nested groups get ``===`` then ``---`` headers."""

    lines: list[str] = []
    _render_level(lines, list(posts), list(keys), list(keys), shorthands, labels, color)
    return lines


def _render_level(
    lines: list[str],
    posts: list[Post],
    remaining: list[GroupKey],
    all_keys: list[GroupKey],
    shorthands: Mapping[str, str],
    labels: Mapping[str, str],
    color: bool,
) -> None:
    depth = len(all_keys) - len(remaining)
    indent = INDENT * depth
    if not remaining:
        for post in posts:
            item = format_item(post, all_keys, shorthands.get(post.id, ""), labels, color=color)
            lines.append(f"{indent}{item}")
        return

    key, rest = remaining[0], remaining[1:]
    ordered = _sort_for(key, posts, labels)
    prefix, suffix = ("=== ", " ===") if depth == 0 else ("--- ", " ---")
    for value, group in groupby(ordered, key=lambda post: _group_value(key, post, labels)):
        lines.append(f"{indent}{_style(f'{prefix}{value}{suffix}', color, bold=True)}")
        if depth == 0:
            lines.append("")
        _render_level(lines, list(group), rest, all_keys, shorthands, labels, color)
        lines.append("")
        if depth == 0:
            lines.append("")


def _group_value(key: GroupKey, post: Post, labels: Mapping[str, str]) -> str:
    if key is GroupKey.DATE:
        return format_date(post)
    return feed_label(post, labels)


def _sort_for(key: GroupKey, posts: list[Post], labels: Mapping[str, str]) -> list[Post]:
    # Stable sorts keep the incoming newest-first order inside each group.
    if key is GroupKey.DATE:
        return sorted(posts, key=format_date, reverse=True)
    return sorted(posts, key=lambda post: feed_label(post, labels))


def _style(text: str, color: bool, **styles: bool | str) -> str:
    if not color:
        return text
    return click.style(text, **styles)
