"""Shared fixtures: an in-memory store and a small sample schema."""

from __future__ import annotations

import asyncio
from copy import deepcopy
from typing import Any

import pytest

from subgraph_sync.errors import FetchError, MetadataLookupError, WriteError
from subgraph_sync.graph import (
    EntityDescription,
    Record,
    RelationDescriptor,
    RelationKind,
)


SCHEMA = {
    "User": EntityDescription(
        name="User",
        fields=("id", "username", "created_at"),
        primary_key=("id",),
        relations=(
            RelationDescriptor("orders", RelationKind.TO_MANY, "Order", "customer_id"),
            RelationDescriptor(
                "roles",
                RelationKind.MANY_TO_MANY,
                "Role",
                "user_id",
                join_key="role_id",
                join_table="users_roles",
            ),
        ),
    ),
    "Order": EntityDescription(
        name="Order",
        fields=("id", "reference", "customer_id", "product_id", "created_at"),
        primary_key=("id",),
        relations=(
            RelationDescriptor("customer", RelationKind.TO_ONE, "User", "customer_id"),
            RelationDescriptor("product", RelationKind.TO_ONE, "Product", "product_id"),
        ),
    ),
    "Product": EntityDescription(
        name="Product",
        fields=("id", "name", "created_at"),
        primary_key=("id",),
    ),
    "Role": EntityDescription(
        name="Role",
        fields=("id", "name", "created_at"),
        primary_key=("id",),
        relations=(
            RelationDescriptor(
                "users",
                RelationKind.MANY_TO_MANY,
                "User",
                "role_id",
                join_key="user_id",
                join_table="users_roles",
            ),
        ),
    ),
}


class MemoryStore:
    """
    In-memory StoreAdapter with failure injection.

    Rows live in ``tables[entity_type][identifier]``; join rows are dicts in
    ``joins[join_table]``. With ``check_references`` writes are rejected when
    a to-one foreign key names a row that does not exist, like a database
    enforcing its foreign key constraints.
    """

    def __init__(
        self,
        name: str = "memory",
        next_id: int = 100,
        schema: dict[str, EntityDescription] | None = None,
        check_references: bool = False,
    ) -> None:
        self.name = name
        self.schema = schema or SCHEMA
        self.check_references = check_references
        self.tables: dict[str, dict[Any, dict[str, Any]]] = {n: {} for n in self.schema}
        self.joins: dict[str, list[dict[str, Any]]] = {"users_roles": []}
        self.next_id = next_id
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_create: set[tuple[str, Any]] = set()
        self.fail_relations: set[str] = set()
        self.connected = False
        self.closed = False
        self.schema_ensured = False

    # -- seeding helpers --------------------------------------------------
    def add(self, entity_type: str, **fields: Any) -> Record:
        self.tables[entity_type][fields["id"]] = dict(fields)
        return Record(entity_type, fields["id"], dict(fields))

    def link(self, user_id: Any, role_id: Any) -> None:
        self.joins["users_roles"].append({"user_id": user_id, "role_id": role_id})

    def count(self, entity_type: str) -> int:
        return len(self.tables[entity_type])

    def row(self, entity_type: str, identifier: Any) -> dict[str, Any]:
        return self.tables[entity_type][identifier]

    def join_pairs(self) -> list[tuple[Any, Any]]:
        return sorted((r["user_id"], r["role_id"]) for r in self.joins["users_roles"])

    def creates(self, entity_type: str) -> int:
        return sum(1 for op, et, _ in self.calls if op == "create" and et == entity_type)

    def _record(self, entity_type: str, identifier: Any) -> Record:
        return Record(
            entity_type, identifier, deepcopy(self.tables[entity_type][identifier])
        )

    # -- StoreAdapter -----------------------------------------------------
    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def reflect(self) -> Any:
        return None

    def describe(self, entity_type: str) -> EntityDescription:
        if entity_type not in self.schema:
            raise MetadataLookupError(entity_type, list(self.schema))
        return self.schema[entity_type]

    async def ensure_schema(self, metadata: Any = None) -> None:
        self.schema_ensured = True

    async def find_by_identifier(self, entity_type: str, identifier: Any) -> Record | None:
        await asyncio.sleep(0)
        if identifier not in self.tables[entity_type]:
            return None
        return self._record(entity_type, identifier)

    async def find_all_by_foreign_key(
        self, entity_type: str, foreign_key: str, value: Any
    ) -> list[Record]:
        await asyncio.sleep(0)
        if f"{entity_type}.{foreign_key}" in self.fail_relations:
            raise FetchError(f"injected failure on {entity_type}.{foreign_key}")
        return [
            self._record(entity_type, identifier)
            for identifier, row in self.tables[entity_type].items()
            if row.get(foreign_key) == value
        ]

    async def find_related(self, owner: Record, relation: RelationDescriptor) -> list[Record]:
        await asyncio.sleep(0)
        if relation.name in self.fail_relations:
            raise FetchError(f"injected failure on {relation.name}")
        return [
            self._record(relation.target_type, row[relation.join_key])
            for row in self.joins[relation.join_table]
            if row[relation.foreign_key] == owner.identifier
        ]

    async def find_page(
        self, entity_type: str, limit: int, order_by: str | None = None
    ) -> list[Record]:
        rows = sorted(
            self.tables[entity_type].values(),
            key=lambda row: row.get(order_by or "created_at") or 0,
            reverse=True,
        )
        return [self._record(entity_type, row["id"]) for row in rows[:limit]]

    async def create(self, entity_type: str, fields: dict[str, Any]) -> Record:
        await asyncio.sleep(0)
        self.calls.append(("create", entity_type, fields.get("id")))
        if (entity_type, fields.get("id")) in self.fail_create:
            raise WriteError(f"injected failure creating {entity_type}")
        values = dict(fields)
        if values.get("id") is None:
            values["id"] = self.next_id
            self.next_id += 1
        if values["id"] in self.tables[entity_type]:
            raise WriteError(f"duplicate {entity_type}:{values['id']}")
        self._check_references(entity_type, values)
        self.tables[entity_type][values["id"]] = values
        return self._record(entity_type, values["id"])

    async def update(self, record: Record, fields: dict[str, Any]) -> Record:
        await asyncio.sleep(0)
        self.calls.append(("update", record.entity_type, record.identifier))
        row = self.tables[record.entity_type].get(record.identifier)
        if row is None:
            raise WriteError(f"{record} does not exist")
        changes = {k: v for k, v in fields.items() if k != "id"}
        self._check_references(record.entity_type, {**row, **changes})
        row.update(changes)
        return self._record(record.entity_type, record.identifier)

    def _check_references(self, entity_type: str, values: dict[str, Any]) -> None:
        if not self.check_references:
            return
        for relation in self.schema[entity_type].relations:
            if relation.kind is not RelationKind.TO_ONE:
                continue
            value = values.get(relation.foreign_key)
            if value is not None and value not in self.tables[relation.target_type]:
                raise WriteError(
                    f"{entity_type}.{relation.foreign_key}={value} references "
                    f"a missing {relation.target_type}"
                )

    async def add_join_membership(
        self, owner: Record, relation: RelationDescriptor, member: Record
    ) -> bool:
        await asyncio.sleep(0)
        row = {relation.foreign_key: owner.identifier, relation.join_key: member.identifier}
        if row in self.joins[relation.join_table]:
            return False
        self.joins[relation.join_table].append(row)
        return True


@pytest.fixture
def source() -> MemoryStore:
    """
    Source store with two users.

    User 1 has orders 10 and 11, both for product 7, and role 5.
    User 2 (newest) has order 12 for product 7 and role 5.
    """
    store = MemoryStore("source")
    store.add("User", id=1, username="alice", created_at=1)
    store.add("User", id=2, username="bob", created_at=2)
    store.add("Product", id=7, name="widget", created_at=1)
    store.add("Order", id=10, reference="A-10", customer_id=1, product_id=7, created_at=1)
    store.add("Order", id=11, reference="A-11", customer_id=1, product_id=7, created_at=2)
    store.add("Order", id=12, reference="B-12", customer_id=2, product_id=7, created_at=3)
    store.add("Role", id=5, name="admin", created_at=1)
    store.link(1, 5)
    store.link(2, 5)
    return store


@pytest.fixture
def target() -> MemoryStore:
    return MemoryStore("target")
