"""Webhook Commands - subscriptions, deliveries and redelivery"""

import typer
from rich.console import Console

from ..client.endpoints import DocChatClient, DocChatError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_deliveries_table,
    create_subscriptions_table,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="webhooks", help="Webhook subscription and delivery commands")


@app.command("subscriptions")
def list_subscriptions():
    """📋 List webhook subscriptions"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            result = client.list_subscriptions()
    except DocChatError as e:
        print_error(f"Failed to list subscriptions: {e}")
        raise typer.Exit(1) from None

    subscriptions = result.get("subscriptions", [])
    if not subscriptions:
        print_info("No webhook subscriptions")
        return

    console.print(create_subscriptions_table(subscriptions))


@app.command("subscribe")
def subscribe(
    url: str = typer.Argument(..., help="Endpoint that receives event POSTs"),
    secret: str = typer.Option(
        ..., "--secret", prompt=True, hide_input=True, help="HMAC signing secret"
    ),
):
    """➕ Register a webhook endpoint"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            subscription = client.create_subscription(url, secret)
    except DocChatError as e:
        print_error(f"Failed to create subscription: {e}")
        raise typer.Exit(1) from None

    print_success(f"Subscription {subscription.get('id')} created for {url}")


@app.command("toggle")
def toggle(
    subscription_id: str = typer.Argument(..., help="Subscription ID"),
    active: bool = typer.Option(
        ..., "--active/--inactive", help="Enable or disable the subscription"
    ),
):
    """🔀 Enable or disable a subscription"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            client.set_subscription_active(subscription_id, active)
    except DocChatError as e:
        print_error(f"Failed to update subscription: {e}")
        raise typer.Exit(1) from None

    state = "enabled" if active else "disabled"
    print_success(f"Subscription {subscription_id} {state}")


@app.command("deliveries")
def list_deliveries(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum deliveries to show"),
    offset: int = typer.Option(0, "--offset", help="Results offset"),
):
    """📬 List webhook deliveries, newest first"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            result = client.list_deliveries(status=status, limit=limit, offset=offset)
    except DocChatError as e:
        print_error(f"Failed to list deliveries: {e}")
        raise typer.Exit(1) from None

    deliveries = result.get("deliveries", [])
    if not deliveries:
        print_info("No webhook deliveries found")
        return

    console.print(create_deliveries_table(deliveries))
    console.print(
        f"[dim]Showing {len(deliveries)} of {result.get('total', len(deliveries))}[/dim]"
    )


@app.command("redeliver")
def redeliver(
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Batch size (server default when omitted)"
    ),
):
    """📨 Re-enqueue pending deliveries, oldest first"""
    base_url = config.get("api.base_url")

    try:
        with DocChatClient(base_url) as client:
            result = client.redeliver_pending(limit)
    except DocChatError as e:
        print_error(f"Failed to trigger redelivery: {e}")
        raise typer.Exit(1) from None

    print_success(f"Re-enqueued {result.get('enqueued', 0)} pending deliveries")
