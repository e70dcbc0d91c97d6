"""Rich terminal output for a reconciliation run."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from pod_timeline.driver import DriverStats


def render_summary(stats: DriverStats, console: Console, elapsed: float = 0.0) -> None:
    """Render the per-run counters as a table."""
    table = Table(title="Reconciliation Summary", show_header=True, header_style="bold")
    table.add_column("Events", style="bold")
    table.add_column("Count", justify="right")

    table.add_row("Received", str(stats.received))
    table.add_row("[green]Merged[/green]", str(stats.merged))
    table.add_row("[dim]Ignored[/dim]", str(stats.ignored))
    failed_style = "red" if stats.failed else "dim"
    table.add_row(f"[{failed_style}]Failed[/{failed_style}]", str(stats.failed))

    console.print()
    console.print(table)
    if elapsed:
        console.print(f"[dim]Ran for {elapsed:.1f}s[/dim]")
