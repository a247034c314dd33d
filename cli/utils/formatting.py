"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "cyan",
    "done": "green",
    "success": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def styled_status(status: str) -> str:
    color = STATUS_STYLES.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def short_id(value: str | None) -> str:
    return (value or "")[:8]


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for the job list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Run At", justify="left")
    table.add_column("Last Error", justify="left", style="red")

    for job in jobs:
        table.add_row(
            short_id(job.get("id")),
            job.get("type", ""),
            styled_status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("run_at") or "—",
            _truncate(job.get("last_error")),
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for one job"""
    content = (
        f"• Type: [magenta]{job.get('type')}[/magenta]\n"
        f"• Status: {styled_status(job.get('status', ''))}\n"
        f"• Attempts: [yellow]{job.get('attempts')}/{job.get('max_attempts')}[/yellow]\n"
        f"• Run At: {job.get('run_at')}\n"
        f"• Locked By: {job.get('locked_by') or '—'}\n"
        f"• Heartbeat: {job.get('heartbeat_at') or '—'}\n"
        f"• Payload: [dim]{job.get('payload')}[/dim]\n"
        f"• Last Error: [red]{job.get('last_error') or '—'}[/red]"
    )
    return Panel(content, title=f"Job {job.get('id')}", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_status = ", ".join(
        f"{status}={count}" for status, count in stats.get("by_status", {}).items()
    )
    by_type = ", ".join(
        f"{job_type}={count}" for job_type, count in stats.get("by_type", {}).items()
    )
    content = (
        f"• Total Jobs: [blue]{stats.get('total_jobs', 0)}[/blue]\n"
        f"• Queue Depth: [yellow]{stats.get('queue_depth', 0)}[/yellow]\n"
        f"• Failed (1h): [red]{stats.get('failed_last_hour', 0)}[/red]\n"
        f"• Stuck: [red]{stats.get('stuck_jobs', 0)}[/red]\n"
        f"• By Status: {by_status or '—'}\n"
        f"• By Type: {by_type or '—'}"
    )
    return Panel(content, title="Queue Overview", border_style="green")


def create_subscriptions_table(subscriptions: list[dict[str, Any]]) -> Table:
    """Create a formatted table for webhook subscriptions"""
    table = Table(title="Webhook Subscriptions", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("URL", justify="left", style="blue")
    table.add_column("Active", justify="center")
    table.add_column("Created", justify="left")

    for subscription in subscriptions:
        active = subscription.get("is_active")
        table.add_row(
            str(subscription.get("id", "")),
            subscription.get("url", ""),
            "[green]yes[/green]" if active else "[red]no[/red]",
            subscription.get("created_at", ""),
        )

    return table


def create_deliveries_table(deliveries: list[dict[str, Any]]) -> Table:
    """Create a formatted table for webhook deliveries"""
    table = Table(title="Webhook Deliveries", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Event", justify="left", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Next Attempt", justify="left")
    table.add_column("Last Error", justify="left", style="red")

    for delivery in deliveries:
        table.add_row(
            short_id(delivery.get("id")),
            short_id(delivery.get("event_id")),
            styled_status(delivery.get("status", "")),
            f"{delivery.get('attempts', 0)}/{delivery.get('max_attempts', 0)}",
            delivery.get("next_attempt_at") or "—",
            _truncate(delivery.get("last_error")),
        )

    return table


def _truncate(text: str | None, length: int = 40) -> str:
    if not text:
        return "—"
    return text if len(text) <= length else text[: length - 1] + "…"
