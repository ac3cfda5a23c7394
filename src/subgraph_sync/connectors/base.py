"""
Store Adapter interface.

Every operation is a coroutine and works on plain Records, so the engines
never hold a store session or ORM instance between calls.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from sqlalchemy import MetaData

from subgraph_sync.graph import EntityDescription, Record, RelationDescriptor


@runtime_checkable
class StoreAdapter(Protocol):
    """Operations the engines need from a source or target store."""

    name: str

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def reflect(self) -> Any:
        """Reload entity types from the live database; returns the registry."""
        ...

    def describe(self, entity_type: str) -> EntityDescription: ...

    async def find_by_identifier(
        self, entity_type: str, identifier: Any
    ) -> Record | None: ...

    async def find_all_by_foreign_key(
        self, entity_type: str, foreign_key: str, value: Any
    ) -> list[Record]: ...

    async def find_related(
        self, owner: Record, relation: RelationDescriptor
    ) -> list[Record]: ...

    async def find_page(
        self, entity_type: str, limit: int, order_by: str | None = None
    ) -> list[Record]: ...

    async def create(self, entity_type: str, fields: dict[str, Any]) -> Record: ...

    async def update(self, record: Record, fields: dict[str, Any]) -> Record: ...

    async def add_join_membership(
        self, owner: Record, relation: RelationDescriptor, member: Record
    ) -> bool: ...

    async def ensure_schema(self, metadata: MetaData | None = None) -> None: ...
