"""
Rich Terminal Display Components.

Provides console UI for:
- Progress bar over root records
- Live record statistics
- Association tree preview
- Summary reports
"""

from __future__ import annotations

from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from subgraph_sync.graph import AssociationNode


console = Console()


class ProgressDisplay:
    """
    Rich terminal UI for sample sync progress.

    Shows:
    - Progress bar over root records
    - Created / updated / reused / failed record counts
    - The root currently being processed

    Example:
        display = ProgressDisplay()
        display.start(entity_type="User", source="...", destination="...")

        display.update(roots_total=2, roots_done=1, created=12)

        display.stop()
    """

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._live: Live | None = None
        self._main_task_id: Any = None
        self._stats: dict[str, Any] = {}

    def start(
        self,
        entity_type: str,
        source: str,
        destination: str,
    ) -> None:
        """Start the progress display."""
        self._stats = {
            "entity_type": entity_type,
            "source": source,
            "destination": destination,
            "created": 0,
            "updated": 0,
            "reused": 0,
            "failed": 0,
            "current_root": "",
        }

        self._main_task_id = self.progress.add_task(
            f"[cyan]{entity_type}",
            total=None,
        )

        self._live = Live(
            self._build_display(),
            console=console,
            refresh_per_second=4,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the progress display."""
        if self._live:
            self._live.stop()
            self._live = None

    def update(
        self,
        roots_total: int | None = None,
        roots_done: int | None = None,
        created: int | None = None,
        updated: int | None = None,
        reused: int | None = None,
        failed: int | None = None,
        current_root: str | None = None,
    ) -> None:
        """Update progress display."""
        if self._main_task_id is not None:
            if roots_total is not None:
                self.progress.update(self._main_task_id, total=roots_total)
            if roots_done is not None:
                self.progress.update(self._main_task_id, completed=roots_done)

        for key, value in (
            ("created", created),
            ("updated", updated),
            ("reused", reused),
            ("failed", failed),
            ("current_root", current_root),
        ):
            if value is not None:
                self._stats[key] = value

        if self._live:
            self._live.update(self._build_display())

    def _build_display(self) -> Panel:
        """Build the display panel."""
        title = "[bold white]Subgraph Sync - SAMPLE COPY[/bold white]"

        info_table = Table.grid(padding=(0, 2))
        info_table.add_column(style="dim")
        info_table.add_column()
        info_table.add_row("Source:", self._stats.get("source", ""))
        info_table.add_row("Destination:", self._stats.get("destination", ""))

        stats_table = Table.grid(padding=(0, 3))
        for _ in range(4):
            stats_table.add_column(justify="center")
        stats_table.add_row(
            f"[green]Created:[/green] {self._stats.get('created', 0):,}",
            f"[cyan]Updated:[/cyan] {self._stats.get('updated', 0):,}",
            f"[yellow]Reused:[/yellow] {self._stats.get('reused', 0):,}",
            f"[red]Failed:[/red] {self._stats.get('failed', 0):,}",
        )

        current = self._stats.get("current_root", "")
        status_text = Text()
        if current:
            status_text.append("Current: ", style="dim")
            status_text.append(current, style="bold cyan")

        display = Group(
            info_table,
            Text(),  # Spacer
            self.progress,
            Text(),  # Spacer
            stats_table,
            status_text,
        )

        return Panel(
            display,
            title=title,
            border_style="blue",
            padding=(1, 2),
        )

    def __enter__(self) -> "ProgressDisplay":
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def build_tree_view(node: AssociationNode, tree: Tree | None = None) -> Tree:
    """Render an association tree as a rich Tree."""
    label = f"[bold]{node.entity_type}[/bold] {node.identifier}"
    if tree is None:
        tree = Tree(label)
        branch = tree
    else:
        branch = tree.add(label)

    for name, value in node.children.items():
        children = value if isinstance(value, list) else [value]
        relation_branch = branch.add(f"[dim]{name}[/dim] ({len(children)})")
        for child in children:
            build_tree_view(child, relation_branch)
    return tree


def print_summary(stats: dict[str, Any]) -> None:
    """Print a summary table after a run completes."""
    table = Table(title="Sync Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Entity Type", stats.get("entity_type", "N/A"))
    table.add_row("Duration", f"{stats.get('duration', 0):.1f}s")
    table.add_row(
        "Roots Processed",
        f"{stats.get('roots_processed', 0)}/{stats.get('roots_total', 0)}",
    )
    table.add_row("Roots Failed", f"{stats.get('roots_failed', 0):,}")
    table.add_row("Records Visited", f"{stats.get('records_visited', 0):,}")
    table.add_row("Records Created", f"{stats.get('records_created', 0):,}")
    table.add_row("Records Updated", f"{stats.get('records_updated', 0):,}")
    table.add_row("Records Failed", f"{stats.get('records_failed', 0):,}")
    table.add_row("Links Rewired", f"{stats.get('links_rewired', 0):,}")

    console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
