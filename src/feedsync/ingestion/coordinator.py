"""Parallel per-feed fetch + parse with isolated failures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

from feedsync.config import FetchSettings
from feedsync.errors import FetchError, ParseError
from feedsync.ingestion.fetcher import Fetcher
from feedsync.ingestion.normalize import PostNormalizer
from feedsync.ingestion.parsers import ParsedFeed, parse_feed
from feedsync.store.ids import DEFAULT_ID_LENGTH, FallbackTracker
from feedsync.store.records import Feed, Post

logger = logging.getLogger(__name__)

FeedParser = Callable[[bytes, str], ParsedFeed]


@dataclass(slots=True)
class FeedFetchSucceeded:
    """Tagged worker result for a feed that was fetched and parsed."""

    feed: Feed
    parsed: ParsedFeed


@dataclass(slots=True)
class FeedFetchFailed:
    """Tagged worker result for a feed whose fetch or parse failed."""

    feed: Feed
    error: FetchError | ParseError


FeedFetchOutcome = FeedFetchSucceeded | FeedFetchFailed


@dataclass(slots=True)
class FeedStats:
    """Per-feed counters shown after a pull."""

    feed_url: str
    status: str
    items: int = 0
    fallback_items: int = 0
    skipped_items: int = 0
    error: str | None = None


@dataclass(slots=True)
class FetchReport:
    """Joined results of one fetch batch."""

    outcomes: list[FeedFetchOutcome] = field(default_factory=list)
    feed_candidates: list[Feed] = field(default_factory=list)
    post_candidates: list[Post] = field(default_factory=list)
    feeds: list[FeedStats] = field(default_factory=list)

    @property
    def failures(self) -> list[FetchError | ParseError]:
        return [
            outcome.error for outcome in self.outcomes if isinstance(outcome, FeedFetchFailed)
        ]

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, FeedFetchSucceeded))

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and self.succeeded == 0


class FetchCoordinator:
    """Fetches all feeds concurrently and normalizes successful results.

    Each worker returns a tagged outcome instead of raising, so one broken
    feed never aborts the batch. Workers are joined before any result is
    normalized, and a feed whose items cannot be normalized is turned into a
    failed outcome of its own.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        settings: FetchSettings | None = None,
        *,
        parser: FeedParser = parse_feed,
        id_length: int = DEFAULT_ID_LENGTH,
    ) -> None:
        self.fetcher = fetcher
        self.settings = settings or FetchSettings()
        self.parser = parser
        self.id_length = id_length

    def run(
        self,
        feeds: Sequence[Feed],
        *,
        existing_posts: Mapping[str, Post] | None = None,
    ) -> FetchReport:
        report = FetchReport()
        if not feeds:
            return report

        workers = min(len(feeds), self.settings.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feedsync-fetch") as pool:
            futures = [pool.submit(self._fetch_one, feed) for feed in feeds]
            report.outcomes = [future.result() for future in futures]

        normalizer = PostNormalizer(
            existing_posts=existing_posts or {},
            tracker=FallbackTracker(max_attempts=self.settings.fallback_max_attempts),
            id_length=self.id_length,
            observed_at=datetime.now(UTC),
        )
        for index, outcome in enumerate(report.outcomes):
            if isinstance(outcome, FeedFetchFailed):
                report.feeds.append(
                    FeedStats(
                        feed_url=outcome.feed.url,
                        status="failed",
                        error=str(outcome.error),
                    ),
                )
                continue
            try:
                normalized = normalizer.normalize(outcome.feed, outcome.parsed)
            except ValueError as error:
                failed = FeedFetchFailed(
                    feed=outcome.feed,
                    error=ParseError(
                        message=f"Cannot normalize items of {outcome.feed.url}: {error}",
                        code="normalize",
                        feed_url=outcome.feed.url,
                    ),
                )
                logger.warning("Skipping feed %s: %s", outcome.feed.url, failed.error)
                report.outcomes[index] = failed
                report.feeds.append(
                    FeedStats(
                        feed_url=outcome.feed.url,
                        status="failed",
                        error=str(failed.error),
                    ),
                )
                continue
            report.feed_candidates.append(normalized.feed)
            report.post_candidates.extend(normalized.posts)
            report.feeds.append(
                FeedStats(
                    feed_url=outcome.feed.url,
                    status=outcome.parsed.format or "fetched",
                    items=len(outcome.parsed.items),
                    fallback_items=normalized.fallback_items,
                    skipped_items=normalized.skipped_items,
                ),
            )
        if normalizer.tracker.suppressed:
            logger.info(
                "Suppressed %d repeated fallback-id warnings",
                normalizer.tracker.suppressed,
            )
        return report

    def _fetch_one(self, feed: Feed) -> FeedFetchOutcome:
        try:
            raw = self.fetcher.fetch(feed.url, self.settings.timeout_seconds)
            parsed = self.parser(raw, feed.url)
        except (FetchError, ParseError) as error:
            logger.warning("Skipping feed %s: %s", feed.url, error)
            return FeedFetchFailed(feed=feed, error=error)
        return FeedFetchSucceeded(feed=feed, parsed=parsed)
