"""Adding and removing feed subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse

from feedsync.errors import FeedsyncError, NotFoundError, not_found
from feedsync.merge import MergeEngine
from feedsync.shorthand import SHORTHAND_SIGIL, build_feed_index
from feedsync.store.database import CascadeResult, Changes, Database
from feedsync.store.ids import feed_id
from feedsync.store.records import Feed, stamp_observed
from feedsync.store.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AddFeedResult:
    """Feed as stored after ``add_feed`` and whether it was new."""

    feed: Feed
    created: bool


def validate_feed_url(value: str) -> str:
    url = value.strip()
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise FeedsyncError(
            message=(
                f"Invalid feed URL: {value!r}. "
                "Expected an absolute URL with http:// or https:// scheme."
            ),
            code="invalid_feed_url",
        )
    return url


def validate_shorthand(value: str) -> str:
    shorthand = value.strip().removeprefix(SHORTHAND_SIGIL)
    if not shorthand or any(char.isspace() for char in shorthand):
        raise FeedsyncError(
            message=f"Invalid shorthand: {value!r}. Use a non-empty word without spaces.",
            code="invalid_shorthand",
        )
    return shorthand


def add_feed(
    database: Database,
    url: str,
    *,
    shorthand: str | None = None,
    engine: MergeEngine | None = None,
) -> AddFeedResult:
    """Subscribe to ``url``; adding the same URL again only fills in a missing shorthand."""

    clean_url = validate_feed_url(url)
    clean_shorthand = validate_shorthand(shorthand) if shorthand is not None else None
    record_id = feed_id(clean_url, database.id_length)

    current = database.feeds.by_id()
    existing = current.get(record_id)
    if existing is not None and existing.shorthand:
        clean_shorthand = None
    if clean_shorthand is not None:
        taken_by = [
            feed.url
            for feed in current.values()
            if feed.id != record_id and feed.shorthand == clean_shorthand
        ]
        if taken_by:
            raise FeedsyncError(
                message=f"Shorthand @{clean_shorthand} is already used by {taken_by[0]}",
                code="shorthand_taken",
            )

    candidate = stamp_observed(
        Feed(id=record_id, url=clean_url, shorthand=clean_shorthand),
        existing,
        datetime.now(UTC),
    )
    outcome = (engine or MergeEngine()).merge_batch(current, [candidate])
    database.apply(Changes(feeds=outcome.transaction, posts=Transaction()))
    stored = database.feeds.get(candidate.id)
    logger.info("Subscribed to %s as %s", clean_url, stored.id)
    return AddFeedResult(feed=stored, created=outcome.inserted > 0)


def remove_feed(database: Database, token: str) -> CascadeResult:
    """Unsubscribe by URL or ``@shorthand``, deleting the feed's posts too."""

    value = token.strip()
    if value.startswith(SHORTHAND_SIGIL):
        index = build_feed_index(database.feeds.read())
        target = index.resolver().resolve(value)
    else:
        target = feed_id(value, database.id_length)
    try:
        return database.delete_feed(target)
    except NotFoundError as error:
        raise not_found(value, Feed.table_name) from error
