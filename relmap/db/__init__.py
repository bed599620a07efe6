"""Stores executing translated writes."""

from relmap.db.base import BaseStore

__all__ = ["BaseStore"]


def __getattr__(name):
    """Lazy import stores to avoid importing database drivers."""
    if name == "DuckDBStore":
        from relmap.db.duckdb import DuckDBStore

        return DuckDBStore
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
