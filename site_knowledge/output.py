"""Terminal output formatting with rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from site_knowledge._sync import PublishPlan, PublishResult, SyncConflict
from site_knowledge._sync_state import SyncPhase, SyncState
from site_knowledge.models import Record
from site_knowledge.utils import create_brief

# Global console instance - auto-detects TTY
console = Console()

PHASE_STYLES = {
    SyncPhase.IDLE: "dim",
    SyncPhase.CHECKING: "cyan",
    SyncPhase.SYNCING: "cyan",
    SyncPhase.OK: "green",
    SyncPhase.ERROR: "red",
    SyncPhase.OFFLINE: "yellow",
}


def print_error(message: str) -> None:
    """Print error message in red."""
    console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    """Print success message in green."""
    console.print(f"[green]{escape(message)}[/green]")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    console.print(f"[yellow]{escape(message)}[/yellow]")


def format_score(score: float, max_score: float = 1.0) -> Text:
    """Format score with color based on value.

    Args:
        score: The score value
        max_score: Maximum possible score (default 1.0)

    Returns:
        Rich Text object with colored score
    """
    percentage = score / max_score if max_score > 0 else 0
    if percentage >= 0.7:
        color = "green"
    elif percentage >= 0.4:
        color = "yellow"
    else:
        color = "red"

    # Format as percentage if max_score is 1.0, otherwise as raw value
    if max_score == 1.0:
        text = f"{score:.0%}"
    else:
        text = f"{score:.0f}/{max_score:.0f}"

    return Text(text, style=color)


def format_phase(phase: SyncPhase) -> Text:
    """Format a sync phase name with its color."""
    return Text(phase.value, style=PHASE_STYLES.get(phase, ""))


def create_stats_table(title: str = "Knowledge Base Statistics") -> Table:
    """Create a styled table for statistics.

    Args:
        title: Table title

    Returns:
        Rich Table object
    """
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    return table


def create_records_table(records: list[Record], title: str | None = None) -> Table:
    """Create a table listing records.

    Args:
        records: Records to list
        title: Optional table title

    Returns:
        Rich Table object
    """
    table = Table(title=title)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Site", style="magenta")
    table.add_column("Category", style="cyan")
    table.add_column("Question")
    table.add_column("Approved", justify="center")
    table.add_column("Published", justify="center")
    for record in records:
        table.add_row(
            str(record.local_id),
            record.site_name,
            f"{record.category} / {record.subcategory}",
            create_brief(record.question, max_length=80),
            Text("yes", style="green") if record.approved else Text("no", style="yellow"),
            Text("yes", style="green") if record.remote_id else Text("no", style="dim"),
        )
    return table


def print_record_line(record: Record, score: float | None = None) -> None:
    """Print a one-line summary of a record.

    Args:
        record: The record
        score: Optional relevance score shown before the question
    """
    line = Text()
    if score is not None:
        line.append(format_score(score))
        line.append(" ")
    line.append(f"{record.local_id}", style="dim")
    line.append(": ")
    line.append(record.question, style="bold")
    line.append(f" [{record.site_name} / {record.category} / {record.subcategory}]", style="cyan")
    if not record.approved:
        line.append(" (unapproved)", style="yellow")
    console.print(line)


def print_record(record: Record) -> None:
    """Print every field of a record."""
    console.print(f"[bold]ID:[/bold] [dim]{record.local_id}[/dim]")
    remote = escape(record.remote_id) if record.remote_id else "[dim](unpublished)[/dim]"
    console.print(f"[bold]Remote ID:[/bold] {remote}")
    console.print(f"[bold]Site:[/bold] [magenta]{escape(record.site_name)}[/magenta]")
    console.print(f"[bold]Category:[/bold] [cyan]{escape(record.category)}[/cyan]")
    console.print(f"[bold]Subcategory:[/bold] [cyan]{escape(record.subcategory)}[/cyan]")
    approved = "[green]yes[/green]" if record.approved else "[yellow]no[/yellow]"
    console.print(f"[bold]Approved:[/bold] {approved}")
    console.print()
    console.print("[bold]Question:[/bold]")
    console.print(Text(f"  {record.question}"))
    console.print()
    console.print("[bold]Answer:[/bold]")
    console.print(Text(f"  {record.answer}"))
    if record.additional_info:
        console.print()
        console.print("[bold]Additional info:[/bold]")
        console.print(Text(f"  {record.additional_info}"))


def print_sync_state(state: SyncState) -> None:
    """Print a sync state snapshot."""
    line = Text("Sync: ")
    line.append(format_phase(state.phase))
    if state.message:
        line.append(f"  {state.message}")
    if state.is_finished and state.finished_at:
        line.append(
            f"  (finished {state.finished_at.isoformat(timespec='seconds')})", style="dim"
        )
    console.print(line)


def print_conflicts(conflicts: list[SyncConflict]) -> None:
    """Print a table of publish conflicts."""
    table = Table(title=f"Conflicts ({len(conflicts)})", title_style="yellow")
    table.add_column("Local ID", style="dim", justify="right")
    table.add_column("Remote ID", style="cyan")
    table.add_column("Remote updated")
    for conflict in conflicts:
        updated = conflict.remote_updated_at
        table.add_row(
            str(conflict.local_id),
            conflict.remote_id,
            updated.isoformat(timespec="seconds") if updated else "unknown",
        )
    console.print(table)


def print_publish_result(result: PublishResult) -> None:
    """Print the outcome of a publish."""
    if not result.ok:
        if result.conflicts:
            print_warning(
                "Publish aborted: records changed on the server since the last pull. "
                "Run 'site-kb sync pull' and review them before publishing again."
            )
            print_conflicts(result.conflicts)
        else:
            print_error(f"Publish failed: {result.error or 'unknown error'}")
        return

    print_success("Publish complete:")
    console.print(f"  Created:  [green]{result.created}[/green]")
    console.print(f"  Updated:  [cyan]{result.updated}[/cyan]")
    console.print(f"  Deleted:  [red]{result.deleted}[/red]")
    if result.failed:
        console.print(f"  Failed:   [red]{result.failed}[/red]")
    if result.skipped:
        console.print(f"  Skipped:  [yellow]{result.skipped}[/yellow] (missing required fields)")


def print_publish_plan(plan: PublishPlan) -> None:
    """Print what a publish would send."""
    console.print("[bold]Pending publish:[/bold]")
    console.rule()
    console.print(f"To create:        [green]{len(plan.creates)}[/green]")
    console.print(f"To update:        [cyan]{len(plan.updates)}[/cyan]")
    console.print(f"To delete:        [red]{len(plan.soft_deletes)}[/red]")

    if plan.creates:
        console.print("\n[bold]Records to create:[/bold]")
        for record in plan.creates[:5]:
            console.print(Text(f"  {record.local_id}: {record.question}"))
        if len(plan.creates) > 5:
            console.print(f"  [dim]... and {len(plan.creates) - 5} more[/dim]")

    if plan.soft_deletes:
        console.print("\n[bold]Remote records to delete:[/bold]")
        for remote in plan.soft_deletes[:5]:
            console.print(Text(f"  {remote.id}: {remote.question}"))
        if len(plan.soft_deletes) > 5:
            console.print(f"  [dim]... and {len(plan.soft_deletes) - 5} more[/dim]")
