"""Job Commands - queue inspection and recovery"""

import typer
from rich.console import Console

from ..client.endpoints import DocChatClient, DocChatError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job inspection and recovery commands")


@app.command("list")
def list_jobs(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum jobs to show"),
    offset: int = typer.Option(0, "--offset", help="Results offset"),
):
    """📋 List jobs, newest first"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            result = client.list_jobs(
                status=status, type=job_type, limit=limit, offset=offset
            )
    except DocChatError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = result.get("jobs", [])
    if not jobs:
        print_info("No jobs found")
        return

    console.print(create_jobs_table(jobs))
    console.print(f"[dim]Showing {len(jobs)} of {result.get('total', len(jobs))}[/dim]")


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show one job in detail"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            job = client.get_job(job_id)
    except DocChatError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("stats")
def show_stats():
    """📊 Show queue statistics"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            stats = client.get_job_stats()
    except DocChatError as e:
        print_error(f"Failed to get job statistics: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))
    if stats.get("stuck_jobs"):
        print_warning("Stuck jobs found. Reclaim them with: docchat-cli jobs recover")


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="ID of a failed job")):
    """🔁 Put a failed job back in the queue"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            client.retry_job(job_id)
    except DocChatError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} queued for retry")


@app.command("recover")
def recover_jobs():
    """🩺 Reclaim running jobs whose worker stopped heartbeating"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            result = client.recover_jobs()
    except DocChatError as e:
        print_error(f"Failed to recover jobs: {e}")
        raise typer.Exit(1) from None

    print_success(
        f"Requeued {result.get('requeued', 0)} job(s), "
        f"failed {result.get('failed', 0)} job(s)"
    )
