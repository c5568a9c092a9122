"""Idempotent, order-independent union of candidate records into tables."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Generic

from feedsync.store.database import Changes, Database
from feedsync.store.records import Feed, Post, R
from feedsync.store.transaction import Transaction

logger = logging.getLogger(__name__)


def merge_records(left: R, right: R) -> R:
    """Field-level union of two versions of one record; argument order does not matter."""

    return left.merge(right)


@dataclass(slots=True)
class MergeOutcome(Generic[R]):
    """Upserts needed to bring one table up to date, with counters."""

    transaction: Transaction[R] = field(default_factory=Transaction)
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


@dataclass(slots=True)
class MergeSummary:
    """Counters for one merge across the feeds and posts tables."""

    feeds: MergeOutcome[Feed]
    posts: MergeOutcome[Post]

    @property
    def changes(self) -> Changes:
        return Changes(feeds=self.feeds.transaction, posts=self.posts.transaction)


class MergeEngine:
    """Folds candidate batches into current table contents.

    Candidates are merged field by field with ``Record.merge``; ids that are
    new become inserts. Only records whose merged value differs from what is
    stored are written, so replaying a batch produces an empty transaction.
    """

    def merge_batch(self, current: Mapping[str, R], candidates: Iterable[R]) -> MergeOutcome[R]:
        staged: dict[str, R] = {}
        for candidate in candidates:
            base = staged.get(candidate.id)
            if base is None:
                base = current.get(candidate.id)
            staged[candidate.id] = candidate if base is None else merge_records(base, candidate)

        outcome: MergeOutcome[R] = MergeOutcome()
        for record_id in sorted(staged):
            merged = staged[record_id]
            existing = current.get(record_id)
            if existing is None:
                outcome.inserted += 1
            elif merged != existing:
                outcome.updated += 1
            else:
                outcome.unchanged += 1
                continue
            outcome.transaction.upsert(merged)
        return outcome

    def merge_tables(self, local: Mapping[str, R], remote: Iterable[R]) -> MergeOutcome[R]:
        """Reconcile a diverged remote copy of a table as one more candidate batch."""

        return self.merge_batch(local, remote)

    def merge_into(
        self,
        database: Database,
        *,
        feeds: Iterable[Feed] = (),
        posts: Iterable[Post] = (),
    ) -> MergeSummary:
        """Merge candidates against the database's current contents."""

        summary = MergeSummary(
            feeds=self.merge_batch(database.feeds.by_id(), feeds),
            posts=self.merge_batch(database.posts.by_id(), posts),
        )
        logger.debug(
            "Merged feeds(+%d ~%d =%d) posts(+%d ~%d =%d)",
            summary.feeds.inserted,
            summary.feeds.updated,
            summary.feeds.unchanged,
            summary.posts.inserted,
            summary.posts.updated,
            summary.posts.unchanged,
        )
        return summary
