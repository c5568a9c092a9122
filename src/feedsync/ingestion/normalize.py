"""Turns parsed feeds into candidate Feed/Post records."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from feedsync.ingestion.parsers import ParsedFeed, ParsedItem
from feedsync.store.ids import (
    DEFAULT_ID_LENGTH,
    FallbackTracker,
    fallback_id,
    post_id,
    post_natural_key,
)
from feedsync.store.records import Feed, Post, stamp_observed


@dataclass(slots=True)
class NormalizedFeed:
    """Candidates produced from one successfully parsed feed."""

    feed: Feed
    posts: list[Post] = field(default_factory=list)
    fallback_items: int = 0
    skipped_items: int = 0


class PostNormalizer:
    """Assigns ids to parsed items and applies the fallback retry cap.

    Items without a natural key get a fallback id. Each later fetch that
    still cannot resolve the item counts as one attempt; after
    ``tracker.max_attempts`` the item is skipped. When an item later gains a
    natural key, its old fallback record is retired by raising its attempt
    counter to the cap.

    Candidate fields are stamped with ``observed_at`` where they differ from
    the stored record, so a re-pulled title or link replaces the old one.
    """

    def __init__(
        self,
        *,
        existing_posts: Mapping[str, Post],
        tracker: FallbackTracker,
        id_length: int = DEFAULT_ID_LENGTH,
        observed_at: datetime | None = None,
    ) -> None:
        self.existing_posts = existing_posts
        self.tracker = tracker
        self.id_length = id_length
        self.observed_at = observed_at or datetime.now(UTC)

    def normalize(self, feed: Feed, parsed: ParsedFeed) -> NormalizedFeed:
        metadata = parsed.metadata
        candidate = Feed(
            id=feed.id,
            url=feed.url,
            title=metadata.title,
            site_url=metadata.site_url,
            description=metadata.description,
            updated_at=metadata.updated_at,
        )
        result = NormalizedFeed(feed=stamp_observed(candidate, feed, self.observed_at))
        for item in parsed.items:
            post = self._normalize_item(feed, item, result)
            if post is not None:
                result.posts.append(post)
        result.posts = [
            stamp_observed(post, self.existing_posts.get(post.id), self.observed_at)
            for post in result.posts
        ]
        return result

    def _normalize_item(self, feed: Feed, item: ParsedItem, result: NormalizedFeed) -> Post | None:
        key = post_natural_key(feed.id, guid=item.guid, url=item.url, title=item.title)
        stale_fallback = self._fallback_candidate_id(feed, item)
        if key is not None:
            retired = self.existing_posts.get(stale_fallback)
            if retired is not None and retired.fallback and self.tracker.should_retry(
                retired.fallback_attempts,
            ):
                result.posts.append(
                    Post(
                        id=retired.id,
                        link=feed.id,
                        fallback=True,
                        fallback_attempts=self.tracker.max_attempts,
                    ),
                )
            return Post(
                id=post_id(key, self.id_length),
                link=feed.id,
                title=item.title,
                url=item.url or "",
                published_at=item.published_at,
                updated_at=item.updated_at,
            )

        existing = self.existing_posts.get(stale_fallback)
        attempts = existing.fallback_attempts if existing is not None else 0
        if not self.tracker.should_retry(attempts):
            result.skipped_items += 1
            return None
        self.tracker.warn(feed.url, item.title)
        result.fallback_items += 1
        return Post(
            id=stale_fallback,
            link=feed.id,
            title=item.title,
            published_at=item.published_at,
            updated_at=item.updated_at,
            fallback=True,
            fallback_attempts=attempts + 1,
        )

    def _fallback_candidate_id(self, feed: Feed, item: ParsedItem) -> str:
        return fallback_id(
            feed.id,
            title=item.title,
            published_at=item.published_at,
            fingerprint=item.fingerprint,
            length=self.id_length,
        )
