"""Replicated key-value store: commands, an in-memory store, a consensus-backed node and an HTTP server."""

__version__ = "0.1.0"
__all__ = ["command", "store", "node", "server"]