"""SQLite store for the catalog, sessions and counted lines."""

from .catalog import CatalogDB
from .schema import closing_store, open_store
from .sessions import SessionDB

__all__ = [
    "CatalogDB",
    "SessionDB",
    "open_store",
    "closing_store",
]
