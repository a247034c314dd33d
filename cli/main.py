"""DocChat Jobs CLI - Main Entry Point"""

import typer
from typing import Optional
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs, webhooks
from .utils.formatting import print_error, print_info
from .utils.config_manager import config as config_manager
from .client.endpoints import DocChatClient

console = Console()

# Create main Typer app
app = typer.Typer(
    name="docchat-cli",
    help="🛠️ DocChat Jobs - background job and webhook operator CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(webhooks.app, name="webhooks")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API, database and worker status"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with DocChatClient(base_url) as client:
            health = client.health_check()
    except Exception as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the DocChat Jobs API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]docchat-cli config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1)

    database = health.get("database") or {}
    worker = health.get("worker") or {}
    db_state = "[green]connected[/green]" if database.get("connected") else "[red]down[/red]"

    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Database: {db_state}\n"
        f"• Active Workers: [cyan]{worker.get('active_workers', 0)}[/cyan]\n"
        f"• Queue Depth: [yellow]{worker.get('queue_depth', 0)}[/yellow]\n"
        f"• Stuck Jobs: [red]{worker.get('stuck_jobs_count', 0)}[/red]\n"
        f"• Pending Deliveries: [yellow]{worker.get('pending_deliveries', 0)}[/yellow]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green" if health.get("ok") else "yellow"
    ))


@app.command()
def worker():
    """⚙️ Run a job worker in this process (uses the server settings / .env)"""
    from docchat.worker_main import main as run_worker

    print_info("Starting job worker, press Ctrl+C to stop")
    run_worker()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    🛠️ DocChat Jobs CLI

    Inspect the job queue, recover stuck jobs and manage webhook
    subscriptions and deliveries.
    """
    if version:
        from . import __version__
        console.print(f"DocChat Jobs CLI v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
