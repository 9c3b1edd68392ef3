"""Couchbase Eventing watcher: polls eventing functions, records their status and alerts on changes."""

__version__ = "1.0.0"
