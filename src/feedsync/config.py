"""Runtime configuration for store, fetch, and sync layers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DB_MARKER_NAME = ".feedsync"
DEFAULT_DATA_DIR_NAME = "feedsync"
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(slots=True)
class StoreSettings:
    """Sharding layout of the on-disk tables."""

    id_length: int = 14
    feeds_shard_chars: int = 0
    posts_shard_chars: int = 2


@dataclass(slots=True)
class FetchSettings:
    """Concurrent fetch settings."""

    max_workers: int = 8
    timeout_seconds: float = 30.0
    fallback_max_attempts: int = 3
    user_agent: str = "feedsync/0.1 (+https://github.com/feedsync/feedsync)"


@dataclass(slots=True)
class SyncSettings:
    """Remote transport settings."""

    git_executable: str = "git"
    remote_name: str = "origin"
    fallback_branches: tuple[str, ...] = ("main", "master")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_root: Path = Path(DEFAULT_DATA_DIR_NAME)
    log_level: str = "WARNING"
    store: StoreSettings = field(default_factory=StoreSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None, cwd: Path | None = None) -> Settings:
        """Load settings from environment; database root is resolved once here."""

        return cls(
            db_root=resolve_db_root(db_path, cwd=cwd),
            log_level=os.getenv("FEEDSYNC_LOG_LEVEL", "WARNING").strip().upper(),
            store=StoreSettings(
                id_length=int(os.getenv("FEEDSYNC_ID_LENGTH", "14")),
                posts_shard_chars=int(os.getenv("FEEDSYNC_POSTS_SHARD_CHARS", "2")),
            ),
            fetch=FetchSettings(
                max_workers=int(os.getenv("FEEDSYNC_FETCH_WORKERS", "8")),
                timeout_seconds=float(os.getenv("FEEDSYNC_FETCH_TIMEOUT_SECONDS", "30")),
                fallback_max_attempts=int(os.getenv("FEEDSYNC_FALLBACK_MAX_ATTEMPTS", "3")),
            ),
            sync=SyncSettings(
                git_executable=os.getenv("FEEDSYNC_GIT_EXECUTABLE", "git").strip() or "git",
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if not 8 <= self.store.id_length <= 64:
            raise ValueError("FEEDSYNC_ID_LENGTH must be between 8 and 64.")
        if not 0 <= self.store.posts_shard_chars < self.store.id_length:
            raise ValueError(
                "FEEDSYNC_POSTS_SHARD_CHARS must be >= 0 and shorter than FEEDSYNC_ID_LENGTH.",
            )
        if self.fetch.max_workers <= 0:
            raise ValueError("FEEDSYNC_FETCH_WORKERS must be a positive integer.")
        if self.fetch.timeout_seconds <= 0:
            raise ValueError("FEEDSYNC_FETCH_TIMEOUT_SECONDS must be > 0.")
        if self.fetch.fallback_max_attempts < 0:
            raise ValueError("FEEDSYNC_FALLBACK_MAX_ATTEMPTS must be >= 0.")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid FEEDSYNC_LOG_LEVEL: {self.log_level!r}")


def resolve_db_root(override: Path | None = None, *, cwd: Path | None = None) -> Path:
    """Locate the database: override, env, nearest marked ancestor, user data dir."""

    if override is not None:
        return override
    from_env = os.getenv("FEEDSYNC_DB_PATH", "").strip()
    if from_env:
        return Path(from_env).expanduser()
    marked = find_marked_ancestor(cwd or Path.cwd())
    if marked is not None:
        return marked
    return _user_data_dir() / DEFAULT_DATA_DIR_NAME


def find_marked_ancestor(start: Path) -> Path | None:
    """Return the nearest directory at or above ``start`` holding the db marker."""

    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / DB_MARKER_NAME).is_file():
            return candidate
    return None


def _user_data_dir() -> Path:
    xdg = os.getenv("XDG_DATA_HOME", "").strip()
    if xdg:
        return Path(xdg)
    return Path.home() / ".local" / "share"
