"""Core engine components for Subgraph Sync."""

from subgraph_sync.core.engine import RunStats, SampleSyncEngine
from subgraph_sync.core.replication import ReplicationStats, Replicator
from subgraph_sync.core.traversal import AssociationTraverser, TraversalStats

__all__ = [
    "SampleSyncEngine",
    "RunStats",
    "AssociationTraverser",
    "TraversalStats",
    "Replicator",
    "ReplicationStats",
]
