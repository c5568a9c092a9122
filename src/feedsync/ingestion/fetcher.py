"""HTTP client for feed sources with a per-request wall-clock deadline."""

from __future__ import annotations

import logging
import time
from typing import Protocol

import httpx

from feedsync.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_USER_AGENT = "feedsync/0.1 (+https://github.com/feedsync/feedsync)"
ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"


class Fetcher(Protocol):
    """Fetch raw feed bytes or raise ``FetchError``."""

    def fetch(self, url: str, timeout: float) -> bytes:
        raise NotImplementedError


class HttpFetcher:
    """httpx wrapper; safe to share between worker threads."""

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": user_agent, "Accept": ACCEPT_HEADER}
        if headers:
            base_headers.update(headers)
        self._client = httpx.Client(
            timeout=httpx.Timeout(DEFAULT_TIMEOUT_SECONDS),
            headers=base_headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def fetch(self, url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> bytes:
        """Fetch URL body; the whole request must finish within ``timeout`` seconds."""

        deadline = time.monotonic() + timeout
        try:
            with self._client.stream("GET", url, timeout=httpx.Timeout(timeout)) as response:
                if not response.is_success:
                    raise FetchError(
                        message=f"HTTP {response.status_code} fetching {url}",
                        code=str(response.status_code),
                        feed_url=url,
                    )
                chunks: list[bytes] = []
                for chunk in response.iter_bytes():
                    if time.monotonic() > deadline:
                        raise _timeout_error(url, timeout)
                    chunks.append(chunk)
                return b"".join(chunks)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout fetching %s", url)
            raise _timeout_error(url, timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            raise FetchError(
                message=f"Transport error fetching {url}: {exc}",
                code="transport",
                feed_url=url,
            ) from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _timeout_error(url: str, timeout: float) -> FetchError:
    return FetchError(
        message=f"Timed out after {timeout:g}s fetching {url}",
        code="timeout",
        feed_url=url,
    )
