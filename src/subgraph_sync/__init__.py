"""Subgraph Sync - copy a bounded sample of related records between databases."""

__version__ = "1.0.0"
__author__ = "Subgraph Sync Contributors"

from subgraph_sync.config import Settings, SyncOptions

__all__ = ["Settings", "SyncOptions", "__version__"]
