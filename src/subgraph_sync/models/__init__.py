"""Entity type metadata for Subgraph Sync."""

from subgraph_sync.models.registry import ModelRegistry

__all__ = ["ModelRegistry"]
