"""Remote transport backed by the git command line."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from feedsync.config import DB_MARKER_NAME, SyncSettings
from feedsync.errors import RemoteError
from feedsync.store.shards import SHARD_FILE_PREFIX, SHARD_FILE_SUFFIX

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "feedsync"
DEFAULT_AUTHOR_EMAIL = "feedsync@localhost"
MERGE_MESSAGE = "merge remote (ours)"


@dataclass(slots=True)
class RemoteSnapshot:
    """Shard file contents of the remote tracking ref, grouped by table."""

    ref: str
    tables: dict[str, list[str]] = field(default_factory=dict)


Reconcile = Callable[[RemoteSnapshot], None]


class RemoteTransport(Protocol):
    """Operations the sync orchestrator needs from a remote."""

    def clone(self, remote: str, path: Path) -> None:
        raise NotImplementedError

    def has_remote(self, path: Path) -> bool:
        raise NotImplementedError

    def commit_if_dirty(self, path: Path, message: str) -> bool:
        raise NotImplementedError

    def pull_or_merge(self, path: Path, reconcile: Reconcile) -> bool:
        raise NotImplementedError

    def push(self, path: Path) -> None:
        raise NotImplementedError


def expand_remote_url(url: str) -> str:
    """Expand ``user/repo`` to a GitHub SSH URL; leave anything else untouched."""

    if ":" in url or url.startswith("."):
        return url
    user, sep, repo = url.partition("/")
    if sep and user and repo and "/" not in repo:
        return f"git@github.com:{user}/{repo}.git"
    return url


def is_data_file(path: str) -> bool:
    """Files that hold database state: table shards and the db marker."""

    if path == DB_MARKER_NAME:
        return True
    name = path.rsplit("/", 1)[-1]
    return (
        "/" in path
        and name.startswith(SHARD_FILE_PREFIX)
        and name.endswith(SHARD_FILE_SUFFIX)
    )


class GitRemote:
    """Clone, commit, reconcile, and push a database directory with git."""

    def __init__(self, settings: SyncSettings | None = None) -> None:
        self.settings = settings or SyncSettings()

    def clone(self, remote: str, path: Path) -> None:
        if path.exists() and any(path.iterdir()):
            raise RemoteError(
                message=(
                    f"A local database already exists at {path}; "
                    "remove it first if you want to re-clone"
                ),
                code="clone_target_not_empty",
                command="clone",
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        self._git(None, "clone", "--depth", "1", expand_remote_url(remote), str(path))
        logger.info("Cloned %s into %s", remote, path)

    def is_repository(self, path: Path) -> bool:
        completed = self._git(path, "rev-parse", "--show-toplevel", check=False)
        if completed.returncode != 0:
            return False
        return Path(completed.stdout.strip()).resolve() == path.resolve()

    def has_remote(self, path: Path) -> bool:
        if not self.is_repository(path):
            return False
        completed = self._git(path, "remote", "get-url", self.settings.remote_name, check=False)
        return completed.returncode == 0

    def dirty_paths(self, path: Path) -> list[str]:
        completed = self._git(path, "status", "--porcelain", "--untracked-files=all")
        paths: list[str] = []
        for line in completed.stdout.splitlines():
            entry = line[3:]
            if " -> " in entry:
                entry = entry.split(" -> ", 1)[1]
            entry = entry.strip().strip('"')
            if is_data_file(entry):
                paths.append(entry)
        return paths

    def commit_if_dirty(self, path: Path, message: str) -> bool:
        """Stage changed data files and commit them; no empty commits."""

        changed = self.dirty_paths(path)
        if not changed:
            return False
        self._git(path, "add", "-A", "--", *changed)
        self._git(path, *self._identity(path), "commit", "-q", "-m", message)
        logger.info("Committed %d changed files (%s)", len(changed), message)
        return True

    def pull_or_merge(self, path: Path, reconcile: Reconcile) -> bool:
        """Fetch the remote and fold its tables into the local database.

        Local shard files are never merged line by line. ``reconcile`` merges
        the remote records structurally into the store, the result is
        committed, and the remote head is recorded as a second parent so the
        following push fast-forwards. When the local head is already part of the
        remote history and no data file is dirty, the branch is fast-forwarded
        instead. Returns ``False`` when there was nothing to reconcile.
        """

        remote = self.settings.remote_name
        self._git(path, "fetch", "-q", remote)
        remote_ref = self.find_remote_ref(path)
        if remote_ref is None:
            return False
        remote_sha = self._rev_parse(path, remote_ref)
        head_sha = self._rev_parse(path, "HEAD")
        if remote_sha is None or remote_sha == head_sha:
            return False
        if head_sha is not None and self._is_ancestor(path, remote_sha, head_sha):
            return False
        if (
            head_sha is not None
            and self._is_ancestor(path, head_sha, remote_sha)
            and not self.dirty_paths(path)
        ):
            self._git(path, "merge", "-q", "--ff-only", remote_sha)
            logger.info("Fast-forwarded to %s", remote_ref)
            return True

        reconcile(self.read_snapshot(path, remote_ref))
        self.commit_if_dirty(path, "sync: merge remote tables")
        if self._rev_parse(path, "HEAD") is None:
            self._git(path, "reset", "-q", "--hard", remote_sha)
            return True
        self._git(
            path,
            *self._identity(path),
            "merge",
            "-q",
            "-s",
            "ours",
            "--allow-unrelated-histories",
            "--no-ff",
            "--no-edit",
            "-m",
            MERGE_MESSAGE,
            remote_sha,
        )
        logger.info("Merged %s into local history", remote_ref)
        return True

    def passthrough(self, path: Path, args: Sequence[str]) -> str:
        """Run any git command inside the database directory and return its stdout."""

        return self._git(path, *args).stdout

    def push(self, path: Path) -> None:
        self._git(path, "push", "-q", self.settings.remote_name, "HEAD")
        logger.info("Pushed %s to %s", path, self.settings.remote_name)

    def find_remote_ref(self, path: Path) -> str | None:
        """Tracking ref of the current branch, else of a conventional default branch."""

        remote = self.settings.remote_name
        candidates: list[str] = []
        branch = self._git(path, "symbolic-ref", "--short", "-q", "HEAD", check=False)
        if branch.returncode == 0 and branch.stdout.strip():
            candidates.append(branch.stdout.strip())
        candidates.extend(
            name for name in self.settings.fallback_branches if name not in candidates
        )
        for name in candidates:
            ref = f"refs/remotes/{remote}/{name}"
            if self._rev_parse(path, ref) is not None:
                return ref
        return None

    def read_snapshot(self, path: Path, ref: str) -> RemoteSnapshot:
        listing = self._git(path, "ls-tree", "-r", "--name-only", ref)
        snapshot = RemoteSnapshot(ref=ref)
        for file_path in listing.stdout.splitlines():
            if file_path == DB_MARKER_NAME or not is_data_file(file_path):
                continue
            table = file_path.split("/", 1)[0]
            content = self._git(path, "show", f"{ref}:{file_path}").stdout
            snapshot.tables.setdefault(table, []).append(content)
        return snapshot

    def _rev_parse(self, path: Path, ref: str) -> str | None:
        completed = self._git(path, "rev-parse", "--verify", "-q", f"{ref}^{{commit}}", check=False)
        if completed.returncode != 0:
            return None
        return completed.stdout.strip() or None

    def _is_ancestor(self, path: Path, ancestor: str, descendant: str) -> bool:
        completed = self._git(
            path,
            "merge-base",
            "--is-ancestor",
            ancestor,
            descendant,
            check=False,
        )
        return completed.returncode == 0

    def _identity(self, path: Path) -> list[str]:
        name = self._git(path, "config", "user.name", check=False).stdout.strip()
        email = self._git(path, "config", "user.email", check=False).stdout.strip()
        return [
            "-c",
            f"user.name={name or DEFAULT_AUTHOR_NAME}",
            "-c",
            f"user.email={email or DEFAULT_AUTHOR_EMAIL}",
        ]

    def _git(
        self,
        path: Path | None,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        argv = [self.settings.git_executable]
        if path is not None:
            argv.extend(["-C", str(path)])
        argv.extend(args)
        command = " ".join(["git", *args])
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                check=False,
                capture_output=True,
                text=True,
            )
        except OSError as error:
            raise RemoteError(
                message=f"Failed to start {self.settings.git_executable}: {error}",
                code="git_unavailable",
                command=command,
            ) from error
        if check and completed.returncode != 0:
            stderr = completed.stderr.strip()
            raise RemoteError(
                message=f"{command} failed: {stderr or f'exit code {completed.returncode}'}",
                code="git_failed",
                command=command,
                stderr=stderr,
            )
        return completed
