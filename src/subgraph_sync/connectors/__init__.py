"""Store connectors for Subgraph Sync."""

from subgraph_sync.connectors.base import StoreAdapter
from subgraph_sync.connectors.sqlalchemy_store import SQLAlchemyStore

__all__ = ["StoreAdapter", "SQLAlchemyStore"]
