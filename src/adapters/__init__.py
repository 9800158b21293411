"""Adapters binding the core ports to SQLite stores and the bridge HTTP API."""
