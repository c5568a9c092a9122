from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import allure
import pytest

from feedsync.errors import ParseError
from feedsync.ingestion.parsers import parse_atom, parse_feed, parse_rss

pytestmark = [
    allure.epic("Fetch Coordinator"),
    allure.feature("RSS & Atom Parsing"),
]

ATOM_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom example</title>
  <subtitle>Notes</subtitle>
  <link rel="self" href="https://example.org/feed.atom"/>
  <link href="https://example.org/"/>
  <updated>2024-03-02T10:00:00Z</updated>
  <entry>
    <title>First entry</title>
    <id>urn:uuid:1225c695</id>
    <link rel="alternate" href="https://example.org/1"/>
    <updated>2024-03-02T10:00:00Z</updated>
  </entry>
  <entry>
    <title>Second entry</title>
    <id>urn:uuid:7788aa</id>
    <published>2024-03-01T08:30:00+02:00</published>
    <updated>2024-03-01T09:00:00+02:00</updated>
  </entry>
</feed>
"""

RDF_XML = b"""<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://example.net/">
    <title>RDF example</title>
    <link>https://example.net/</link>
  </channel>
  <item rdf:about="https://example.net/a">
    <title>RDF item</title>
    <link>https://example.net/a</link>
    <dc:date>2024-02-01T00:00:00Z</dc:date>
  </item>
</rdf:RDF>
"""


def test_parse_rss_reads_channel_and_items(rss: Callable[..., bytes]) -> None:
    raw = rss(
        [
            {
                "title": "Hello",
                "link": "https://example.com/hello",
                "guid": "hello-1",
                "pubDate": "Mon, 15 Jan 2024 12:00:00 GMT",
            },
            {"description": "no title, no link"},
        ],
        title="Example",
    )

    parsed = parse_rss(raw, "https://example.com/feed")

    assert parsed.format == "rss"
    assert parsed.metadata.title == "Example"
    assert parsed.metadata.site_url == "https://example.com/"
    first, second = parsed.items
    assert first.guid == "hello-1"
    assert first.url == "https://example.com/hello"
    assert first.published_at == datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    assert second.title == "untitled"
    assert second.guid is None and second.url is None
    assert second.fingerprint


def test_parse_rss_handles_rdf_layout() -> None:
    parsed = parse_rss(RDF_XML, "https://example.net/rss")

    assert parsed.metadata.title == "RDF example"
    assert len(parsed.items) == 1
    assert parsed.items[0].guid == "https://example.net/a"
    assert parsed.items[0].published_at == datetime(2024, 2, 1, tzinfo=UTC)


def test_parse_atom_reads_entries_and_prefers_alternate_link() -> None:
    parsed = parse_atom(ATOM_XML, "https://example.org/feed.atom")

    assert parsed.format == "atom"
    assert parsed.metadata.site_url == "https://example.org/"
    assert parsed.metadata.description == "Notes"
    first, second = parsed.items
    assert first.url == "https://example.org/1"
    assert first.published_at == datetime(2024, 3, 2, 10, 0, tzinfo=UTC)
    assert second.url is None
    assert second.published_at == datetime(2024, 3, 1, 6, 30, tzinfo=UTC)
    assert second.updated_at == datetime(2024, 3, 1, 7, 0, tzinfo=UTC)


def test_parse_feed_falls_back_to_atom() -> None:
    parsed = parse_feed(ATOM_XML, "https://example.org/feed.atom")

    assert parsed.format == "atom"


def test_parse_feed_raises_parse_error_when_chain_is_exhausted() -> None:
    with pytest.raises(ParseError) as error:
        parse_feed(b"<html><body>not a feed</body></html>", "https://example.com/page")

    assert error.value.code == "unsupported_feed_format"
    assert error.value.feed_url == "https://example.com/page"


def test_parse_feed_rejects_invalid_xml() -> None:
    with pytest.raises(ParseError, match="invalid XML"):
        parse_feed(b"<rss><channel>", "https://example.com/feed")
