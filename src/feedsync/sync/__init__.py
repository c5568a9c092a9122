"""Synchronization of the local database through a git remote."""
