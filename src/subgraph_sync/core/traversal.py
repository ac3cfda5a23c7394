"""
Association Traversal Engine.

Expands a root record into an association tree by following every declared
relation of the source store. Depth is bounded by ``max_depth`` and cycles
are broken by a per-root VisitedSet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from subgraph_sync.errors import UnsupportedAssociationError
from subgraph_sync.graph import (
    AssociationNode,
    Record,
    RelationDescriptor,
    RelationKind,
    VisitedSet,
)
from subgraph_sync.utils.logger import get_logger

if TYPE_CHECKING:
    from subgraph_sync.connectors.base import StoreAdapter

logger = get_logger(__name__)


@dataclass
class TraversalStats:
    """Statistics for the traversal of one or more roots."""

    records_expanded: int = 0
    repeats: int = 0
    truncated: int = 0
    relations_skipped: int = 0
    errors: list[str] = field(default_factory=list)


class AssociationTraverser:
    """
    Builds association trees from a source store.

    Example:
        traverser = AssociationTraverser(source, max_depth=3)
        tree = await traverser.build_tree(user_record)
        print(len(tree.distinct_keys()))
    """

    def __init__(
        self,
        store: StoreAdapter,
        max_depth: int = 3,
        stats: TraversalStats | None = None,
    ) -> None:
        self.store = store
        self.max_depth = max_depth
        self.stats = stats or TraversalStats()

    async def build_tree(self, root: Record) -> AssociationNode:
        """Build the tree for one root with its own VisitedSet."""
        return await self.traverse(root, 0, self.max_depth, VisitedSet())

    async def traverse(
        self,
        root: Record,
        depth: int,
        max_depth: int,
        visited: VisitedSet,
    ) -> AssociationNode:
        """
        Expand ``root`` and everything reachable from it.

        A record deeper than ``max_depth`` or already expanded elsewhere in
        this tree is returned without children.
        """
        node = AssociationNode(root)

        if depth >= max_depth:
            self.stats.truncated += 1
            return node

        if not visited.claim(root.key):
            self.stats.repeats += 1
            return node

        self.stats.records_expanded += 1

        for relation in self.store.describe(root.entity_type).relations:
            try:
                children = await self._expand(root, relation, depth, max_depth, visited)
            except UnsupportedAssociationError as e:
                self.stats.relations_skipped += 1
                logger.warning(f"Skipping {root.entity_type}.{relation.name}: {e}")
                continue
            except Exception as e:
                self.stats.relations_skipped += 1
                self.stats.errors.append(f"{root}.{relation.name}: {e}")
                logger.error(
                    f"Error getting {relation.name} for {root.entity_type} "
                    f"(ID: {root.identifier}): {e}",
                    extra={"entity_type": root.entity_type, "relation": relation.name},
                )
                continue

            if children:
                node.children[relation.name] = children

        return node

    async def _expand(
        self,
        root: Record,
        relation: RelationDescriptor,
        depth: int,
        max_depth: int,
        visited: VisitedSet,
    ) -> AssociationNode | list[AssociationNode] | None:
        """Fetch and expand the records on the far side of one relation."""
        if relation.kind is RelationKind.TO_ONE:
            value = root.fields.get(relation.foreign_key)
            if value is None:
                return None
            record = await self.store.find_by_identifier(relation.target_type, value)
            if record is None:
                return None
            logger.debug(
                f"Found {relation.name} for {root.entity_type} ID: {root.identifier}"
            )
            return await self.traverse(record, depth + 1, max_depth, visited)

        if relation.kind is RelationKind.TO_MANY:
            records = await self.store.find_all_by_foreign_key(
                relation.target_type, relation.foreign_key, root.identifier
            )
        elif relation.kind is RelationKind.MANY_TO_MANY:
            records = await self.store.find_related(root, relation)
        else:
            raise UnsupportedAssociationError(
                root.entity_type, relation.name, f"unknown kind {relation.kind}"
            )

        if records:
            logger.debug(
                f"Found {len(records)} {relation.name} for "
                f"{root.entity_type} ID: {root.identifier}"
            )
        return [
            await self.traverse(record, depth + 1, max_depth, visited)
            for record in records
        ]
