"""
Subgraph Sync CLI - Command Line Interface.

Copies a sample of records, with everything they reference, from a source
database into a target database.

Commands:
    run       Copy the newest N root records and their associations (default)
    describe  Show the relations of an entity type
    config    Manage configuration
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import click
import typer
from rich.console import Console
from rich.table import Table
from typer.core import TyperGroup

from subgraph_sync import __version__
from subgraph_sync.config import (
    Settings,
    SourceStoreSettings,
    TargetStoreSettings,
    load_settings,
    load_store_settings,
)
from subgraph_sync.connectors.sqlalchemy_store import SQLAlchemyStore
from subgraph_sync.core.engine import RunStats, SampleSyncEngine
from subgraph_sync.errors import SubgraphSyncError
from subgraph_sync.models.registry import ModelRegistry
from subgraph_sync.utils.display import (
    ProgressDisplay,
    build_tree_view,
    print_error,
    print_info,
    print_success,
    print_summary,
    print_warning,
)
from subgraph_sync.utils.logger import setup_logging


class DefaultRunGroup(TyperGroup):
    """Treat `subgraph-sync User 2 3` as `subgraph-sync run User 2 3`."""

    default_command = "run"

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if args and args[0] not in self.commands and not args[0].startswith("-"):
            args = [self.default_command, *args]
        return super().parse_args(ctx, args)


# Create the Typer app
app = typer.Typer(
    name="subgraph-sync",
    cls=DefaultRunGroup,
    help=(
        "Copy a bounded sample of related records between databases.\n\n"
        "ENTITY_TYPE LIMIT MAX_DEPTH without a command runs `run`."
    ),
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]subgraph-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Subgraph Sync - copy related records from a source to a target database."""
    pass


# =============================================================================
# RUN Command
# =============================================================================
@app.command()
def run(
    entity_type: Optional[str] = typer.Argument(
        None,
        help="Root entity type. [default: User]",
        show_default=False,
    ),
    limit: Optional[int] = typer.Argument(
        None,
        help="Number of root records to copy. [default: 2]",
        show_default=False,
    ),
    max_depth: Optional[int] = typer.Argument(
        None,
        help="Maximum relationship depth from each root. [default: 3]",
        show_default=False,
    ),
    models: Optional[str] = typer.Option(
        None,
        "--models",
        "-m",
        help="Declarative base with the entity types (package.module:Base).",
    ),
    reflect: bool = typer.Option(
        False,
        "--reflect",
        help="Build entity types by reflecting the source database.",
    ),
    order_by: Optional[str] = typer.Option(
        None,
        "--order-by",
        help="Column selecting the newest root records.",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-j",
        help="Children of one collection replicated concurrently.",
    ),
    no_preserve_ids: bool = typer.Option(
        False,
        "--no-preserve-ids",
        help="Let the target assign identifiers instead of reusing source ones.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Traverse and show the trees without writing.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR).",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write logs to this file.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Copy the newest root records and everything they reference.

    Example:
        subgraph-sync run User 10 3
    """
    try:
        settings = load_settings(
            config_file,
            entity_type=entity_type,
            limit=limit,
            max_depth=max_depth,
            models=models,
            reflect=reflect or None,
            order_by=order_by,
            concurrent_children=concurrency,
            preserve_identifiers=False if no_preserve_ids else None,
            dry_run=dry_run or None,
        )
    except (ValueError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if log_level:
        settings.logging.level = log_level.upper()
    if log_file:
        settings.logging.file = log_file

    setup_logging(
        level="WARNING" if quiet else settings.logging.level,
        log_file=settings.logging.file,
        format_style=settings.logging.format,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )

    options = settings.sync
    try:
        source_settings, target_settings = load_store_settings()
        registry = None if options.reflect else _load_registry(options.models)
        source = SQLAlchemyStore.from_settings(source_settings, registry)
        target = SQLAlchemyStore.from_settings(target_settings, registry)
    except SubgraphSyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if options.dry_run:
        print_warning("DRY RUN - Nothing will be written to the target")

    engine = SampleSyncEngine(settings, source, target)
    display = ProgressDisplay() if not quiet else None

    def on_progress(stats: RunStats) -> None:
        if display:
            display.update(
                roots_total=stats.roots_total,
                roots_done=stats.roots_processed + stats.roots_failed,
                created=stats.replication.records_created,
                updated=stats.replication.records_updated,
                reused=stats.replication.records_reused,
                failed=stats.replication.records_failed,
                current_root=stats.current_root,
            )

    try:
        if display:
            display.start(
                entity_type=options.entity_type,
                source=source_settings.describe(),
                destination=target_settings.describe(),
            )
        stats = asyncio.run(engine.run(on_progress=on_progress))
    except SubgraphSyncError as e:
        print_error(f"Migration failed: {e}")
        raise typer.Exit(1)
    finally:
        if display:
            display.stop()

    if not quiet:
        for tree in stats.trees:
            console.print(build_tree_view(tree))
        console.print()
        print_summary({
            "entity_type": stats.entity_type,
            "duration": stats.duration_seconds,
            "roots_processed": stats.roots_processed,
            "roots_total": stats.roots_total,
            "roots_failed": stats.roots_failed,
            "records_visited": stats.traversal.records_expanded,
            "records_created": stats.replication.records_created,
            "records_updated": stats.replication.records_updated,
            "records_failed": stats.replication.records_failed,
            "links_rewired": stats.replication.links_rewired,
        })

    errors = stats.all_errors()
    if errors:
        console.print()
        print_warning(f"{len(errors)} errors occurred:")
        for err in errors[:10]:
            print_error(f"  • {err}")
        if len(errors) > 10:
            print_info(f"  ... and {len(errors) - 10} more")

    print_success(
        f"{stats.roots_processed} {stats.entity_type} records processed."
    )


# =============================================================================
# DESCRIBE Command
# =============================================================================
@app.command()
def describe(
    entity_type: str = typer.Argument(..., help="Entity type to describe."),
    models: Optional[str] = typer.Option(
        None,
        "--models",
        "-m",
        help="Declarative base with the entity types (package.module:Base).",
    ),
) -> None:
    """Show the fields and relations of an entity type."""
    try:
        registry = _load_registry(models or Settings().sync.models)
        description = registry.describe(entity_type)
    except SubgraphSyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(f"[bold cyan]{description.name}[/bold cyan]")
    console.print(f"Fields: {', '.join(description.fields)}")
    console.print(f"Primary key: {', '.join(description.primary_key)}")

    table = Table(title="Relations", border_style="blue")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Target")
    table.add_column("Foreign Key")
    table.add_column("Join")

    for relation in description.relations:
        join = (
            f"{relation.join_table}.{relation.join_key}"
            if relation.join_table
            else ""
        )
        table.add_row(
            relation.name,
            relation.kind.value,
            relation.target_type,
            relation.foreign_key,
            join,
        )

    console.print(table)


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with the default settings.",
    ),
    output: Path = typer.Option(
        Path("config.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = Settings()
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("Source", SourceStoreSettings().describe())
        table.add_row("Target", TargetStoreSettings().describe())
        table.add_row("Entity Type", settings.sync.entity_type)
        table.add_row("Limit", str(settings.sync.limit))
        table.add_row("Max Depth", str(settings.sync.max_depth))
        table.add_row("Order By", settings.sync.order_by)
        table.add_row("Models", settings.sync.models)
        table.add_row("Preserve IDs", str(settings.sync.preserve_identifiers))
        table.add_row("Concurrency", str(settings.sync.concurrent_children))

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _load_registry(reference: str) -> ModelRegistry:
    """Import the declarative base named by ``reference``."""
    try:
        return ModelRegistry.from_reference(reference)
    except (ImportError, AttributeError) as e:
        print_error(f"Cannot load models from {reference}: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
