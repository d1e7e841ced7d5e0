"""Shared helpers: logging, URLs, text cleanup, worker pool."""
