"""Local-first feed reader with a sharded, git-synchronized store."""

__version__ = "0.1.0"
