"""Concurrent feed fetching, parsing, and normalization."""
