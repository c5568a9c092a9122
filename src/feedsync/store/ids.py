"""Deterministic content-derived identifiers and the fallback scheme."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_ID_LENGTH = 14
DEFAULT_PORTS = {"http": 80, "https": 443}
TRACKING_QUERY_PARAMS = frozenset({"fbclid", "gclid", "ref", "mc_cid", "mc_eid"})
TRACKING_QUERY_PREFIXES = ("utm_",)
FALLBACK_PREFIX = "fallback:"
UNTITLED_PLACEHOLDER = "untitled"
logger = logging.getLogger(__name__)


def content_id(key: str, length: int = DEFAULT_ID_LENGTH) -> str:
    """Return the first ``length`` hex chars of SHA-256 over ``key``."""

    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:length]


def canonicalize_url(url: str) -> str:
    """Normalize a URL so the same logical resource always yields the same key.

    A URL that cannot be split (bad IPv6 literal, non-numeric port) is returned
    stripped but otherwise unchanged.
    """

    raw = url.strip()
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    netloc = f"[{host}]" if ":" in host else host
    if parts.username:
        netloc = f"{parts.username}@{netloc}"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query_pairs = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(name)
    ]
    query = urlencode(sorted(query_pairs))
    return urlunsplit((scheme, netloc, path, query, ""))


def feed_id(url: str, length: int = DEFAULT_ID_LENGTH) -> str:
    return content_id(canonicalize_url(url), length)


def post_natural_key(
    feed_id_value: str,
    *,
    guid: str | None,
    url: str | None,
    title: str | None,
) -> str | None:
    """Build the natural key of a post, or ``None`` when there is no stable one.

    Permalink guids and item URLs identify a post on any machine. Opaque guids
    are only unique within their feed, so they are scoped by feed id. A URL is
    combined with the title because some feeds reuse one link for many items.
    """

    if guid and guid.strip():
        value = guid.strip()
        if "://" in value:
            return f"guid:{canonicalize_url(value)}"
        return f"guid:{feed_id_value}:{value}"
    if url and url.strip() and "://" in url:
        return f"url:{canonicalize_url(url)}\n{(title or '').strip()}"
    return None


def post_id(natural_key: str, length: int = DEFAULT_ID_LENGTH) -> str:
    return content_id(natural_key, length)


def fallback_id(
    feed_id_value: str,
    *,
    title: str | None,
    published_at: datetime | None,
    fingerprint: str | None = None,
    length: int = DEFAULT_ID_LENGTH,
) -> str:
    """Locally generated id for items without a natural key.

    Title and date are used when present so that a re-fetch of the same broken
    item maps onto the same fallback record. Without them the item's content
    fingerprint is used, and only when that is missing too a random key.
    """

    stable_title = (title or "").strip()
    if stable_title.lower() == UNTITLED_PLACEHOLDER:
        stable_title = ""
    if stable_title or published_at is not None:
        stamp = published_at.isoformat() if published_at is not None else ""
        key = f"{FALLBACK_PREFIX}{feed_id_value}\n{stable_title}\n{stamp}"
    elif fingerprint:
        key = f"{FALLBACK_PREFIX}{feed_id_value}\n#{fingerprint}"
    else:
        key = f"{FALLBACK_PREFIX}{uuid.uuid4()}"
    return content_id(key, length)


@dataclass(slots=True)
class FallbackTracker:
    """Caps re-resolution attempts for fallback records and dedupes warnings."""

    max_attempts: int = 3
    _warned_feeds: set[str] = field(default_factory=set)
    suppressed: int = 0

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def warn(self, feed_url: str, title: str | None) -> None:
        if feed_url in self._warned_feeds:
            self.suppressed += 1
            return
        self._warned_feeds.add(feed_url)
        logger.warning(
            "Item without guid or link in %s (title=%r); stored with fallback id.",
            feed_url,
            title or "",
        )


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    if lowered in TRACKING_QUERY_PARAMS:
        return True
    return lowered.startswith(TRACKING_QUERY_PREFIXES)
