"""
Graph data model shared by the traversal and replication engines.

Provides:
- Relation descriptors (closed set of relation kinds)
- Plain records detached from any store session
- Association tree nodes
- Per-root cycle guard (VisitedSet) and write guard (InsertedMap)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

# (entity type name, identifier)
RecordKey = tuple[str, Any]


class RelationKind(str, Enum):
    """Kind of relationship between two entity types."""

    TO_ONE = "to_one"
    TO_MANY = "to_many"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class RelationDescriptor:
    """
    Metadata describing one relationship of an entity type.

    For TO_ONE the owner holds ``foreign_key``. For TO_MANY the target
    holds ``foreign_key`` pointing back at the owner. For MANY_TO_MANY
    ``foreign_key`` and ``join_key`` are the join table columns referencing
    the owner and the target respectively.
    """

    name: str
    kind: RelationKind
    target_type: str
    foreign_key: str
    join_key: str | None = None
    join_table: str | None = None

    @property
    def is_collection(self) -> bool:
        return self.kind is not RelationKind.TO_ONE


@dataclass(frozen=True)
class EntityDescription:
    """Field set and relations of one entity type."""

    name: str
    fields: tuple[str, ...]
    primary_key: tuple[str, ...]
    relations: tuple[RelationDescriptor, ...] = ()

    def relation(self, name: str) -> RelationDescriptor | None:
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None


@dataclass
class Record:
    """A single row, detached from the store it was read from."""

    entity_type: str
    identifier: Any
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> RecordKey:
        return (self.entity_type, self.identifier)

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.identifier}"


@dataclass
class AssociationNode:
    """
    A record plus its expanded relations.

    ``children`` maps a relation name to a single node (TO_ONE) or an
    ordered list of nodes (TO_MANY / MANY_TO_MANY). An empty mapping means
    the node was truncated by the depth bound or already expanded elsewhere
    in the same tree.
    """

    record: Record
    children: dict[str, AssociationNode | list[AssociationNode]] = field(
        default_factory=dict
    )

    @property
    def entity_type(self) -> str:
        return self.record.entity_type

    @property
    def identifier(self) -> Any:
        return self.record.identifier

    @property
    def key(self) -> RecordKey:
        return self.record.key

    def iter_children(self) -> Iterator[tuple[str, AssociationNode]]:
        """Yield (relation name, child) pairs in relation order."""
        for name, value in self.children.items():
            if isinstance(value, list):
                for child in value:
                    yield name, child
            else:
                yield name, value

    def walk(self) -> Iterator[AssociationNode]:
        """Depth-first iteration over this node and all descendants."""
        yield self
        for _, child in self.iter_children():
            yield from child.walk()

    def depth(self) -> int:
        """Length in edges of the longest path below this node."""
        return max(
            (child.depth() + 1 for _, child in self.iter_children()),
            default=0,
        )

    def distinct_keys(self) -> set[RecordKey]:
        return {node.key for node in self.walk()}

    def to_dict(self) -> dict[str, Any]:
        """Plain nested representation, relations under ``associations``."""
        associations: dict[str, Any] = {}
        for name, value in self.children.items():
            if isinstance(value, list):
                associations[name] = [child.to_dict() for child in value]
            else:
                associations[name] = value.to_dict()
        return {**self.record.fields, "associations": associations}


class VisitedSet:
    """Cycle guard for one traversal of one root record."""

    def __init__(self) -> None:
        self._keys: set[RecordKey] = set()

    def claim(self, key: RecordKey) -> bool:
        """Mark ``key`` visited. Returns False if it already was."""
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class InsertedMap:
    """
    Write guard and identifier remap for one replication run.

    Maps a source record key to the target record written for it (or None
    if the write failed). ``claim`` is an atomic insert-or-fetch: the first
    caller for a key owns the write and must ``resolve`` it; every later
    caller receives the same future and awaits the owner's result.
    """

    def __init__(self) -> None:
        self._entries: dict[RecordKey, asyncio.Future[Record | None]] = {}
        self._lock = asyncio.Lock()

    async def claim(
        self, key: RecordKey
    ) -> tuple[bool, asyncio.Future[Record | None]]:
        async with self._lock:
            future = self._entries.get(key)
            if future is not None:
                return False, future
            future = asyncio.get_running_loop().create_future()
            self._entries[key] = future
            return True, future

    def resolve(self, key: RecordKey, record: Record | None) -> None:
        future = self._entries[key]
        if not future.done():
            future.set_result(record)

    def get(self, key: RecordKey) -> Record | None:
        """Return the written record for ``key`` if its write has finished."""
        future = self._entries.get(key)
        if future is None or not future.done():
            return None
        return future.result()

    def target_identifier(self, key: RecordKey) -> Any:
        record = self.get(key)
        return record.identifier if record else None

    def identifier_map(self) -> dict[RecordKey, Any]:
        """Source key -> target identifier for every successful write."""
        return {
            key: future.result().identifier
            for key, future in self._entries.items()
            if future.done() and future.result() is not None
        }

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
