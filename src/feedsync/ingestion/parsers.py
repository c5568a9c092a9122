"""RSS and Atom parsers with a format fallback chain."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from defusedxml import DefusedXmlException, ElementTree

from feedsync.errors import ParseError
from feedsync.store.ids import UNTITLED_PLACEHOLDER

RSS_ROOTS = frozenset({"rss", "rdf"})
ATOM_ROOTS = frozenset({"feed"})
UNTITLED = UNTITLED_PLACEHOLDER
_RDF_ABOUT = "{http://www.w3.org/1999/02/22-rdf-syntax-ns#}about"


@dataclass(slots=True)
class FeedMetadata:
    """Channel-level information of a feed."""

    title: str = ""
    site_url: str = ""
    description: str = ""
    updated_at: datetime | None = None


@dataclass(slots=True)
class ParsedItem:
    """One entry as published by the source, before id assignment."""

    title: str
    guid: str | None = None
    url: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None
    fingerprint: str | None = None


@dataclass(slots=True)
class ParsedFeed:
    """Parser output: metadata plus items in document order."""

    metadata: FeedMetadata
    items: list[ParsedItem] = field(default_factory=list)
    format: str = ""


Parser = Callable[[bytes, str], ParsedFeed]


def parse_feed(raw: bytes, feed_url: str, parsers: Sequence[Parser] | None = None) -> ParsedFeed:
    """Try each parser in turn; raise ``ParseError`` once the chain is exhausted."""

    chain = parsers if parsers is not None else (parse_rss, parse_atom)
    reasons: list[str] = []
    for parser in chain:
        try:
            return parser(raw, feed_url)
        except ParseError as error:
            reasons.append(error.message)
    raise ParseError(
        message=f"Unrecognized feed format from {feed_url}: {'; '.join(reasons)}",
        code="unsupported_feed_format",
        feed_url=feed_url,
    )


def parse_rss(raw: bytes, feed_url: str) -> ParsedFeed:
    root = _parse_xml(raw, feed_url, "RSS")
    channel = next((child for child in root if _local_name(child.tag) == "channel"), None)
    if _local_name(root.tag) not in RSS_ROOTS and channel is None:
        raise ParseError(
            message=f"RSS: unexpected root element <{_local_name(root.tag)}>",
            code="not_rss",
            feed_url=feed_url,
        )
    container = channel if channel is not None else root
    metadata = FeedMetadata(
        title=_child_text(container, "title") or "",
        site_url=_child_text(container, "link") or "",
        description=_child_text(container, "description") or "",
        updated_at=_parse_datetime(
            _child_text(container, "lastBuildDate") or _child_text(container, "pubDate"),
        ),
    )

    # RSS 1.0 keeps items next to the channel instead of inside it.
    items_parent = root if _local_name(root.tag) == "rdf" else container
    items: list[ParsedItem] = []
    for item in items_parent:
        if _local_name(item.tag) != "item":
            continue
        published_at = _parse_datetime(_child_text(item, "pubDate") or _child_text(item, "date"))
        items.append(
            ParsedItem(
                title=_child_text(item, "title") or UNTITLED,
                guid=_child_text(item, "guid") or item.attrib.get(_RDF_ABOUT),
                url=_child_text(item, "link"),
                published_at=published_at,
                updated_at=published_at,
                fingerprint=_fingerprint(item),
            ),
        )
    return ParsedFeed(metadata=metadata, items=items, format="rss")


def parse_atom(raw: bytes, feed_url: str) -> ParsedFeed:
    root = _parse_xml(raw, feed_url, "Atom")
    if _local_name(root.tag) not in ATOM_ROOTS:
        raise ParseError(
            message=f"Atom: unexpected root element <{_local_name(root.tag)}>",
            code="not_atom",
            feed_url=feed_url,
        )
    metadata = FeedMetadata(
        title=_child_text(root, "title") or "",
        site_url=_atom_link(root) or "",
        description=_child_text(root, "subtitle") or "",
        updated_at=_parse_datetime(_child_text(root, "updated")),
    )

    items: list[ParsedItem] = []
    for entry in root:
        if _local_name(entry.tag) != "entry":
            continue
        updated_at = _parse_datetime(_child_text(entry, "updated"))
        published_at = _parse_datetime(_child_text(entry, "published")) or updated_at
        items.append(
            ParsedItem(
                title=_child_text(entry, "title") or UNTITLED,
                guid=_child_text(entry, "id"),
                url=_atom_link(entry),
                published_at=published_at,
                updated_at=updated_at or published_at,
                fingerprint=_fingerprint(entry),
            ),
        )
    return ParsedFeed(metadata=metadata, items=items, format="atom")


def _parse_xml(raw: bytes, feed_url: str, label: str) -> ElementTree.Element:
    try:
        return ElementTree.fromstring(raw)
    except (ElementTree.ParseError, DefusedXmlException) as error:
        raise ParseError(
            message=f"{label}: invalid XML ({error})",
            code="invalid_feed_xml",
            feed_url=feed_url,
        ) from error


def _atom_link(element: ElementTree.Element) -> str | None:
    for child in element:
        if _local_name(child.tag) != "link":
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        href = child.attrib.get("href", "").strip()
        if not href:
            continue
        if not rel or rel == "alternate":
            return href
    for child in element:
        if _local_name(child.tag) == "link":
            href = child.attrib.get("href", "").strip()
            if href:
                return href
    return None


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) != target:
            continue
        if child.text and child.text.strip():
            return child.text.strip()
        full_text = "".join(child.itertext()).strip()
        if full_text:
            return full_text
    return None


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def _fingerprint(element: ElementTree.Element) -> str:
    text = "\n".join(part.strip() for part in element.itertext() if part.strip())
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _parse_datetime(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None

    try:
        parsed = parsedate_to_datetime(raw_value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (TypeError, ValueError):
        pass

    try:
        iso = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
        if iso.tzinfo is None:
            return iso.replace(tzinfo=UTC)
        return iso.astimezone(UTC)
    except ValueError:
        return None
