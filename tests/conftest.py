"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from xml.sax.saxutils import escape

import pytest

from feedsync.config import Settings, StoreSettings
from feedsync.errors import FetchError
from feedsync.store.database import Database


class FakeFetcher:
    """In-memory fetcher: URL -> payload bytes, or an exception to raise."""

    def __init__(self, responses: dict[str, bytes | Exception] | None = None) -> None:
        self.responses: dict[str, bytes | Exception] = dict(responses or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, timeout: float) -> bytes:
        with self._lock:
            self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise FetchError(message=f"Connection refused: {url}", code="transport", feed_url=url)
        if isinstance(response, Exception):
            raise response
        return response


def build_rss(items: list[dict[str, str]], *, title: str = "Example feed") -> bytes:
    """Render a minimal RSS 2.0 document from item dicts (title/link/guid/pubDate)."""

    parts = [
        '<?xml version="1.0"?>',
        '<rss version="2.0"><channel>',
        f"<title>{escape(title)}</title>",
        "<link>https://example.com/</link>",
    ]
    for item in items:
        parts.append("<item>")
        for name in ("title", "link", "guid", "pubDate", "description"):
            if name in item:
                parts.append(f"<{name}>{escape(item[name])}</{name}>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "\n".join(parts).encode("utf-8")


@pytest.fixture()
def db_root(tmp_path: Path) -> Path:
    return tmp_path / "db"


@pytest.fixture()
def database(db_root: Path) -> Database:
    db = Database(db_root, StoreSettings())
    db.ensure_initialized()
    return db


@pytest.fixture()
def settings(db_root: Path) -> Settings:
    return Settings(db_root=db_root)


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def rss() -> Callable[..., bytes]:
    return build_rss


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "FEEDSYNC_DB_PATH",
        "FEEDSYNC_FETCH_WORKERS",
        "FEEDSYNC_FETCH_TIMEOUT_SECONDS",
        "FEEDSYNC_FALLBACK_MAX_ATTEMPTS",
        "FEEDSYNC_POSTS_SHARD_CHARS",
        "FEEDSYNC_ID_LENGTH",
        "FEEDSYNC_GIT_EXECUTABLE",
        "FEEDSYNC_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
