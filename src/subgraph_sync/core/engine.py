"""
Sample Sync Engine - Main orchestration for a sample copy run.

Coordinates all components for one run:
- Source and target store connectors
- Association traversal (one tree per root record)
- Replication of each tree into the target
- Run statistics and progress reporting
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from subgraph_sync.config import Settings
from subgraph_sync.core.replication import ReplicationStats, Replicator
from subgraph_sync.core.traversal import AssociationTraverser, TraversalStats
from subgraph_sync.errors import WriteError
from subgraph_sync.graph import AssociationNode, Record
from subgraph_sync.utils.logger import get_logger

if TYPE_CHECKING:
    from subgraph_sync.connectors.base import StoreAdapter

logger = get_logger(__name__)


@dataclass
class RunStats:
    """Statistics for a sample sync run."""

    entity_type: str
    roots_total: int = 0
    roots_processed: int = 0
    roots_failed: int = 0
    current_root: str = ""
    traversal: TraversalStats = field(default_factory=TraversalStats)
    replication: ReplicationStats = field(default_factory=ReplicationStats)
    trees: list[AssociationNode] = field(default_factory=list)  # dry run only
    start_time: float = 0.0
    end_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    @property
    def percent_complete(self) -> float:
        """Completion percentage."""
        if self.roots_total > 0:
            done = self.roots_processed + self.roots_failed
            return (done / self.roots_total) * 100
        return 0.0

    def all_errors(self) -> list[str]:
        """Root, traversal and replication errors in one list."""
        return self.errors + self.traversal.errors + self.replication.errors


# Progress callback type
ProgressCallback = Callable[[RunStats], None]


class SampleSyncEngine:
    """
    Main engine copying a sample of root records with their associations.

    Example:
        engine = SampleSyncEngine(settings, source, target)

        stats = await engine.run(
            on_progress=lambda s: print(f"{s.percent_complete:.1f}%")
        )
    """

    def __init__(
        self,
        settings: Settings,
        source: StoreAdapter,
        target: StoreAdapter,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            settings: Application settings
            source: Store the sample is read from
            target: Store the sample is written to
        """
        self.settings = settings
        self.source = source
        self.target = target

    async def run(self, on_progress: ProgressCallback | None = None) -> RunStats:
        """
        Copy the newest ``limit`` root records and their associations.

        Connection, schema and root selection errors propagate. A failure
        while processing one root is recorded and the next root proceeds.

        Args:
            on_progress: Optional progress callback

        Returns:
            RunStats with operation results
        """
        options = self.settings.sync
        stats = RunStats(entity_type=options.entity_type)
        stats.start_time = time.time()

        logger.info(
            f"Starting migration of {options.limit} {options.entity_type} "
            f"records with max depth {options.max_depth}..."
        )

        try:
            await self._open_stores()

            self.source.describe(options.entity_type)
            roots = await self.source.find_page(
                options.entity_type, options.limit, options.order_by
            )
            stats.roots_total = len(roots)
            logger.info(
                f"Found {len(roots)} {options.entity_type} records in source database."
            )

            if on_progress:
                on_progress(stats)

            for index, root in enumerate(roots, start=1):
                stats.current_root = str(root)
                logger.info(
                    f"Processing {root.entity_type} record {index} of {len(roots)} "
                    f"(ID: {root.identifier})..."
                )
                try:
                    tree = await self.process_root(root, stats)
                    if options.dry_run:
                        stats.trees.append(tree)
                    stats.roots_processed += 1
                except Exception as e:
                    stats.roots_failed += 1
                    stats.errors.append(f"{root}: {e}")
                    logger.error(f"Failed processing {root}: {e}")

                if on_progress:
                    on_progress(stats)

        finally:
            await self.source.close()
            await self.target.close()

        stats.current_root = ""
        stats.end_time = time.time()
        logger.info(
            f"Migration completed. {stats.roots_processed} of {stats.roots_total} "
            f"{options.entity_type} records migrated with their associations."
        )
        return stats

    async def process_root(
        self, root: Record, stats: RunStats | None = None
    ) -> AssociationNode:
        """
        Traverse one root and replicate its tree.

        A fresh VisitedSet and InsertedMap are used for every call.

        Raises:
            WriteError: if the root record itself could not be written
        """
        options = self.settings.sync
        stats = stats or RunStats(entity_type=root.entity_type)

        traverser = AssociationTraverser(
            self.source, max_depth=options.max_depth, stats=stats.traversal
        )
        tree = await traverser.build_tree(root)
        logger.info(
            f"Completed gathering associations for {root.entity_type} "
            f"ID: {root.identifier} ({len(tree.distinct_keys())} records)"
        )

        if options.dry_run:
            return tree

        replicator = Replicator(
            self.target,
            preserve_identifiers=options.preserve_identifiers,
            concurrency=options.concurrent_children,
            stats=stats.replication,
        )
        record, inserted = await replicator.replicate_tree(tree)
        if record is None:
            raise WriteError(
                f"{root} could not be written to the target store",
                entity_type=root.entity_type,
                identifier=root.identifier,
            )
        logger.info(
            f"Completed processing {root.entity_type} ID: {root.identifier} "
            f"({len(inserted.identifier_map())} records written)"
        )
        return tree

    async def _open_stores(self) -> None:
        """Connect both stores and prepare entity types and target schema."""
        options = self.settings.sync

        await self.source.connect()
        logger.info("Source database connection established successfully.")
        await self.target.connect()
        logger.info("Target database connection established successfully.")

        create_schema = options.sync_schema and not options.dry_run
        if options.reflect:
            registry = await self.source.reflect()
            if create_schema:
                await self.target.ensure_schema(registry.metadata)
            await self.target.reflect()
        elif create_schema:
            await self.target.ensure_schema()

        if create_schema:
            logger.info("Schema synchronization complete.")
