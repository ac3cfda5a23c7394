"""
Replication Engine - writes an association tree into the target store.

Each distinct record is written at most once per tree (InsertedMap), via
upsert keyed by identifier. Relationships are then rewired using the
identifiers the target store returned:
- to-one: the parent is written with the foreign key NULL, then pointed at
  the child once the child exists
- to-many: each child's foreign key is pointed at the parent
- many-to-many: a join row is added for each (parent, child) pair

Failures are isolated to the record or link they affect; nothing is rolled
back.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from subgraph_sync.errors import UnsupportedAssociationError
from subgraph_sync.graph import (
    AssociationNode,
    EntityDescription,
    InsertedMap,
    Record,
    RelationDescriptor,
    RelationKind,
)
from subgraph_sync.utils.logger import get_logger

if TYPE_CHECKING:
    from subgraph_sync.connectors.base import StoreAdapter

logger = get_logger(__name__)


@dataclass
class ReplicationStats:
    """Statistics for the replication of one or more trees."""

    records_created: int = 0
    records_updated: int = 0
    records_reused: int = 0
    records_failed: int = 0
    links_rewired: int = 0
    links_failed: int = 0
    relations_skipped: int = 0
    errors: list[str] = field(default_factory=list)


class Replicator:
    """
    Writes association trees into a target store.

    Example:
        replicator = Replicator(target, concurrency=4)
        record, inserted = await replicator.replicate_tree(tree)
        print(inserted.identifier_map())
    """

    def __init__(
        self,
        store: StoreAdapter,
        preserve_identifiers: bool = True,
        concurrency: int = 1,
        stats: ReplicationStats | None = None,
    ) -> None:
        """
        Initialize replicator.

        Args:
            store: Target store
            preserve_identifiers: Write source primary keys to the target and
                upsert by them. When False the target assigns identifiers.
            concurrency: Children of one collection replicated at once
            stats: Shared statistics object (optional)
        """
        self.store = store
        self.preserve_identifiers = preserve_identifiers
        self.concurrency = max(1, concurrency)
        self.stats = stats or ReplicationStats()

    async def replicate_tree(
        self, tree: AssociationNode
    ) -> tuple[Record | None, InsertedMap]:
        """Replicate one tree with its own InsertedMap."""
        inserted = InsertedMap()
        record = await self.replicate(tree, inserted)
        return record, inserted

    async def replicate(
        self, node: AssociationNode, inserted: InsertedMap
    ) -> Record | None:
        """
        Write ``node`` and its subtree.

        Returns:
            The target record, or None if it could not be written
        """
        claimed, pending = await inserted.claim(node.key)
        if not claimed:
            self.stats.records_reused += 1
            written = await pending
            # The expanded occurrence may come after a truncated one
            if written is not None and node.children:
                await self._replicate_children(node, written, inserted)
            return written

        record: Record | None = None
        try:
            record = await self._upsert(node, inserted)
        except Exception as e:
            self.stats.records_failed += 1
            self.stats.errors.append(f"{node.record}: {e}")
            logger.error(
                f"Error inserting {node.entity_type} (ID: {node.identifier}): {e}",
                extra={"entity_type": node.entity_type, "identifier": node.identifier},
            )
        finally:
            inserted.resolve(node.key, record)

        if record is None:
            return None

        if node.children:
            await self._replicate_children(node, record, inserted)

        return record

    async def _replicate_children(
        self, node: AssociationNode, record: Record, inserted: InsertedMap
    ) -> None:
        description = self.store.describe(node.entity_type)
        for name, value in node.children.items():
            relation = description.relation(name)
            if relation is None:
                self.stats.relations_skipped += 1
                logger.warning(
                    str(UnsupportedAssociationError(node.entity_type, name, "not found on target"))
                )
                continue
            await self._replicate_relation(record, relation, value, inserted)

    async def _upsert(self, node: AssociationNode, inserted: InsertedMap) -> Record:
        """
        Update the target record with the same identifier, or create it.

        To-one foreign keys only ever point at rows already in the target.
        Expanded to-one relations are written as NULL on create and left
        unchanged on update; ``_replicate_to_one`` sets them once the child
        exists.
        """
        description = self.store.describe(node.entity_type)
        fields, unresolved = await self._resolve_foreign_keys(node, description, inserted)

        if self.preserve_identifiers:
            existing = await self.store.find_by_identifier(
                node.entity_type, node.identifier
            )
            if existing is not None:
                for key in unresolved:
                    fields.pop(key, None)
                record = await self.store.update(existing, fields)
                self.stats.records_updated += 1
                logger.info(
                    f"Updated existing {node.entity_type} record ID: {node.identifier}"
                )
                return record
        else:
            for key in description.primary_key:
                fields.pop(key, None)

        record = await self.store.create(node.entity_type, fields)
        self.stats.records_created += 1
        logger.info(f"Created new {node.entity_type} record ID: {record.identifier}")
        return record

    async def _resolve_foreign_keys(
        self,
        node: AssociationNode,
        description: EntityDescription,
        inserted: InsertedMap,
    ) -> tuple[dict[str, Any], list[str]]:
        """
        Map the node's to-one foreign keys onto target identifiers.

        Returns:
            The field values to write, and the foreign keys that were set to
            NULL because their target row is not (yet) known
        """
        fields = dict(node.record.fields)
        unresolved: list[str] = []

        for relation in description.relations:
            if relation.kind is not RelationKind.TO_ONE:
                continue
            value = fields.get(relation.foreign_key)
            if value is None:
                continue

            target_id = None
            if relation.name not in node.children:
                target_id = inserted.target_identifier((relation.target_type, value))
                if target_id is None and self.preserve_identifiers:
                    existing = await self.store.find_by_identifier(
                        relation.target_type, value
                    )
                    target_id = existing.identifier if existing else None

            fields[relation.foreign_key] = target_id
            if target_id is None:
                unresolved.append(relation.foreign_key)

        return fields, unresolved

    async def _replicate_relation(
        self,
        record: Record,
        relation: RelationDescriptor,
        value: AssociationNode | list[AssociationNode],
        inserted: InsertedMap,
    ) -> None:
        if relation.kind is RelationKind.TO_ONE:
            if isinstance(value, AssociationNode):
                await self._replicate_to_one(record, relation, value, inserted)
            return

        children = value if isinstance(value, list) else [value]
        logger.debug(
            f"Processing {len(children)} {relation.name} for "
            f"{record.entity_type} ID: {record.identifier}"
        )

        if relation.kind is RelationKind.TO_MANY:

            async def link(child: Record) -> None:
                updated = await self.store.update(
                    child, {relation.foreign_key: record.identifier}
                )
                child.fields.update(updated.fields)

        elif relation.kind is RelationKind.MANY_TO_MANY:

            async def link(child: Record) -> None:
                await self.store.add_join_membership(record, relation, child)

        else:
            self.stats.relations_skipped += 1
            logger.warning(
                str(UnsupportedAssociationError(record.entity_type, relation.name))
            )
            return

        await self._for_each(
            children,
            lambda child_node: self._replicate_member(
                record, relation, child_node, inserted, link
            ),
        )

    async def _replicate_to_one(
        self,
        record: Record,
        relation: RelationDescriptor,
        child_node: AssociationNode,
        inserted: InsertedMap,
    ) -> None:
        child = await self.replicate(child_node, inserted)
        if child is None:
            return
        try:
            updated = await self.store.update(
                record, {relation.foreign_key: child.identifier}
            )
        except Exception as e:
            self._link_failed(record, relation, child_node, e)
            return
        record.fields.update(updated.fields)
        self.stats.links_rewired += 1
        logger.debug(
            f"Set {relation.name} for {record.entity_type} ID: {record.identifier}"
        )

    async def _replicate_member(
        self,
        record: Record,
        relation: RelationDescriptor,
        child_node: AssociationNode,
        inserted: InsertedMap,
        link: Callable[[Record], Awaitable[None]],
    ) -> None:
        """Replicate one collection member and link it to ``record``."""
        child = await self.replicate(child_node, inserted)
        if child is None:
            return
        try:
            await link(child)
        except Exception as e:
            self._link_failed(record, relation, child_node, e)
            return
        self.stats.links_rewired += 1
        logger.debug(
            f"Set {relation.name} association for "
            f"{child.entity_type} ID: {child.identifier}"
        )

    def _link_failed(
        self,
        record: Record,
        relation: RelationDescriptor,
        child_node: AssociationNode,
        error: Exception,
    ) -> None:
        self.stats.links_failed += 1
        self.stats.errors.append(
            f"{record}.{relation.name} -> {child_node.record}: {error}"
        )
        logger.error(
            f"Error linking {relation.name} of {record.entity_type} "
            f"(ID: {record.identifier}) to {child_node.record}: {error}",
            extra={"entity_type": record.entity_type, "relation": relation.name},
        )

    async def _for_each(
        self,
        nodes: list[AssociationNode],
        handler: Callable[[AssociationNode], Awaitable[None]],
    ) -> None:
        """Run ``handler`` over ``nodes``, at most ``concurrency`` at a time."""
        if self.concurrency == 1:
            for node in nodes:
                await handler(node)
            return

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(node: AssociationNode) -> None:
            async with semaphore:
                await handler(node)

        await asyncio.gather(*(bounded(node) for node in nodes))
