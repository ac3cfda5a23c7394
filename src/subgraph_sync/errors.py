"""
Error taxonomy for Subgraph Sync.

Only connection-level errors are fatal for a run. Everything else is raised
by a store or engine call and caught at the smallest enclosing unit (one
relation, one record, one join pairing), then logged and skipped.
"""

from __future__ import annotations

from typing import Any


class SubgraphSyncError(Exception):
    """Base exception for all Subgraph Sync errors."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        identifier: Any = None,
    ) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.identifier = identifier


class StoreConnectionError(SubgraphSyncError):
    """Raised when a source or target store cannot be reached."""

    def __init__(self, message: str, store: str = "") -> None:
        super().__init__(message)
        self.store = store


class StoreConfigError(StoreConnectionError):
    """Raised when required connection settings are missing or invalid."""

    def __init__(self, store: str, missing: list[str]) -> None:
        super().__init__(
            f"{store} store is not configured, missing: {', '.join(missing)}",
            store=store,
        )
        self.missing = missing


class MetadataLookupError(SubgraphSyncError):
    """Raised when an entity type is not known to the model registry."""

    def __init__(self, entity_type: str, known: list[str] | None = None) -> None:
        message = f"Unknown entity type: {entity_type}"
        if known:
            message += f" (known: {', '.join(sorted(known))})"
        super().__init__(message, entity_type=entity_type)
        self.known = known or []


class FetchError(SubgraphSyncError):
    """Raised when reading a record or relation from a store fails."""

    pass


class WriteError(SubgraphSyncError):
    """Raised when creating, updating or rewiring a record fails."""

    pass


class UnsupportedAssociationError(SubgraphSyncError):
    """Raised when a relation cannot be resolved on a store."""

    def __init__(self, entity_type: str, relation: str, reason: str = "") -> None:
        message = f"Relation {entity_type}.{relation} is not supported"
        if reason:
            message += f": {reason}"
        super().__init__(message, entity_type=entity_type)
        self.relation = relation
