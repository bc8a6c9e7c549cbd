"""Index store: durable SQLite storage for searchable provider rows."""

from discovery.store.repository import IndexSession, IndexStore
from discovery.store.schema import PROVIDER_COLUMNS, row_to_provider

__all__ = [
    "IndexSession",
    "IndexStore",
    "PROVIDER_COLUMNS",
    "row_to_provider",
]
