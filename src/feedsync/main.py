"""CLI entrypoint for feedsync."""

import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from feedsync import __version__
from feedsync.controllers import (
    CloneCommand,
    CommandResult,
    FeedAddCommand,
    FeedListCommand,
    FeedRemoveCommand,
    FeedsyncCliController,
    GitCommand,
    PostLookupCommand,
    PullCommand,
    ShowCommand,
)
from feedsync.errors import FeedsyncError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = FeedsyncCliController()
T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="feedsync")
@click.option(
    "--db-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Database directory. Defaults to `FEEDSYNC_DB_PATH`, the nearest marked ancestor, "
    "or the user data directory.",
)
@click.pass_context
def feedsync(ctx: click.Context, db_path: Path | None) -> None:
    """Local-first feed reader that syncs through a git remote."""

    level = os.getenv("FEEDSYNC_LOG_LEVEL", "WARNING").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = db_path


@feedsync.group()
def feed() -> None:
    """Manage feed subscriptions."""


@feed.command("add")
@click.argument("url")
@click.option("--shorthand", default=None, help="Alias to use instead of the generated one.")
@click.pass_obj
def feed_add(db_path: Path | None, url: str, shorthand: str | None) -> None:
    """Subscribe to an RSS or Atom feed."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.add_feed(
                FeedAddCommand(db_path=db_path, url=url, shorthand=shorthand),
            ),
        ),
    )


@feed.command("rm")
@click.argument("target")
@click.pass_obj
def feed_rm(db_path: Path | None, target: str) -> None:
    """Unsubscribe by URL or `@shorthand`; the feed's posts are deleted too."""

    _emit_lines(
        _run(lambda: CONTROLLER.remove_feed(FeedRemoveCommand(db_path=db_path, target=target))),
    )


@feed.command("ls")
@click.pass_obj
def feed_ls(db_path: Path | None) -> None:
    """List subscribed feeds with their shorthands."""

    _emit_lines(_run(lambda: CONTROLLER.list_feeds(FeedListCommand(db_path=db_path))))


@feedsync.command("pull")
@click.pass_obj
def pull(db_path: Path | None) -> None:
    """Fetch all feeds and merge new posts into the local database."""

    _emit_result(_run(lambda: CONTROLLER.pull(PullCommand(db_path=db_path))))


@feedsync.command("sync")
@click.pass_obj
def sync(db_path: Path | None) -> None:
    """Pull, then merge with and push to the git remote."""

    _emit_result(_run(lambda: CONTROLLER.sync(PullCommand(db_path=db_path))))


@feedsync.command("clone")
@click.argument("remote")
@click.pass_obj
def clone(db_path: Path | None, remote: str) -> None:
    """Clone a database from a git remote (`user/repo` means GitHub)."""

    _emit_lines(_run(lambda: CONTROLLER.clone(CloneCommand(db_path=db_path, remote=remote))))


@feedsync.command(
    "git",
    context_settings={"ignore_unknown_options": True, "help_option_names": []},
)
@click.argument("git_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def git(db_path: Path | None, git_args: tuple[str, ...]) -> None:
    """Run `git` inside the database directory, e.g. `feedsync git remote add origin URL`."""

    _emit_lines(_run(lambda: CONTROLLER.git(GitCommand(db_path=db_path, args=git_args))))


@feedsync.command("show")
@click.argument("grouping", required=False, default="")
@click.argument("feed_filter", required=False, default=None, metavar="[@SHORTHAND]")
@click.pass_obj
def show(db_path: Path | None, grouping: str, feed_filter: str | None) -> None:
    """Show posts newest first, grouped by `d` (date), `f` (feed), `df` or `fd`."""

    if feed_filter is None and grouping.startswith("@"):
        grouping, feed_filter = "", grouping
    _emit_lines(
        _run(
            lambda: CONTROLLER.show(
                ShowCommand(
                    db_path=db_path,
                    grouping=grouping,
                    feed_filter=feed_filter,
                    color=sys.stdout.isatty(),
                ),
            ),
        ),
    )


@feedsync.command("open")
@click.argument("shorthand")
@click.pass_obj
def open_post(db_path: Path | None, shorthand: str) -> None:
    """Open a post in the browser."""

    command = PostLookupCommand(db_path=db_path, shorthand=shorthand)
    link = _run(lambda: CONTROLLER.post_link(command))
    if click.launch(link) != 0:
        raise click.ClickException(f"Could not open URL: {link}")
    click.echo(f"Opened in browser: {link}", err=True)


@feedsync.command("read")
@click.argument("shorthand")
@click.pass_obj
def read(db_path: Path | None, shorthand: str) -> None:
    """Print the link of a post."""

    command = PostLookupCommand(db_path=db_path, shorthand=shorthand)
    click.echo(_run(lambda: CONTROLLER.post_link(command)))


def _run(action: Callable[[], T]) -> T:
    try:
        return action()
    except (FeedsyncError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(result.failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    feedsync()
