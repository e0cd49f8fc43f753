"""Command-line interface for the referral engine."""

from decimal import Decimal
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from refengine.errors import EngineError
from refengine.logging_config import configure_logging, get_logger
from refengine.notifications import Notifier
from refengine.payments import StripeGateway
from refengine.payouts import PayoutBatcher, PayoutService
from refengine.referral import ReferralService
from refengine.storage.db import db
from refengine.tiers import TierService
from refengine.webhooks import WebhookProcessor

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="refengine",
    help="Referral commission, tier and payout engine",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _payout_service() -> PayoutService:
    return PayoutService(db, StripeGateway(), Notifier(db))


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("refengine.api.main:app", host=host, port=port, log_config=None)


@app.command("seed-tiers")
def seed_tiers() -> None:
    """Install the default tier ladder."""
    service = TierService(db)
    result = service.install_default_tiers()
    if result["created"]:
        console.print(f"[bold green]✓[/bold green] Installed {result['created']} tiers")
    else:
        console.print(f"[yellow]{result['existing']} tiers already configured[/yellow]")

    table = Table(title="Tiers")
    table.add_column("Level", style="cyan", justify="right")
    table.add_column("Name", style="green")
    table.add_column("Min Referrals", justify="right")
    table.add_column("Bonus", justify="right")
    table.add_column("Boost", justify="right")
    for tier in service.list_tiers():
        table.add_row(
            str(tier["tier_level"]),
            tier["tier_name"],
            str(tier["min_referrals"]),
            f"${tier['bonus_amount']}",
            f"{tier['percentage_boost']}%",
        )
    console.print(table)


@app.command("run-payouts")
def run_payouts(
    threshold: Annotated[Optional[float], typer.Option("--threshold", "-t", help="Minimum balance to pay out")] = None,
    auto_approve: Annotated[bool, typer.Option("--auto-approve/--review", help="Transfer or queue for review")] = True,
    run_id: Annotated[Optional[str], typer.Option("--run-id", help="Batch id; reuse to resume a run")] = None,
) -> None:
    """Run a payout batch."""
    batcher = PayoutBatcher(db, _payout_service())
    summary = batcher.run(
        threshold=Decimal(str(threshold)) if threshold is not None else None,
        auto_approve=auto_approve,
        run_id=run_id,
    )

    console.print(f"[bold]Run ID:[/bold] {summary['run_id']}")
    table = Table(title="Payout batch")
    table.add_column("Outcome", style="cyan")
    table.add_column("Accounts", justify="right")
    for key in ("processed", "transferred", "pending_review", "skipped", "rejected", "failed"):
        table.add_row(key.replace("_", " "), str(summary[key]))
    console.print(table)
    console.print(f"[bold]Total transferred:[/bold] ${summary['total_transferred']}")

    for error in summary["errors"]:
        console.print(f"[red]✗ {error['account']}: {error['reason']}[/red]")
    if summary["failed"]:
        raise typer.Exit(1)


@app.command("recalculate-tier")
def recalculate_tier(
    email: Annotated[str, typer.Argument(help="Account email")],
) -> None:
    """Recompute the tier for one account."""
    try:
        result = TierService(db, Notifier(db)).recalculate(email)
    except EngineError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    stats = result["stats"]
    console.print(f"[bold]Tier:[/bold] {result['current_tier']['tier_name']}")
    if result["next_tier"]:
        console.print(
            f"[bold]Next:[/bold] {result['next_tier']['tier_name']} "
            f"({stats['progress_to_next_tier']}% there)"
        )
    console.print(f"[bold]Successful referrals:[/bold] {stats['successful_referrals']}")
    console.print(f"[bold]Commission earned:[/bold] ${stats['total_commission_earned']}")
    if result["tier_changed"]:
        console.print(f"[bold green]✓[/bold green] Tier up! Bonus paid: ${result['tier_bonus']}")


@app.command("sync-destinations")
def sync_destinations(
    email: Annotated[Optional[str], typer.Option("--email", "-e", help="Only this account")] = None,
) -> None:
    """Refresh payout destination status from the gateway."""
    result = _payout_service().sync_destination_status(email)

    table = Table(title=f"Destinations ({result['checked']})")
    table.add_column("Account", style="green")
    table.add_column("Status")
    table.add_column("Issues")
    for row in result["results"]:
        status = row.get("status") or f"[red]error: {row.get('error')}[/red]"
        table.add_row(row["account"], status, "; ".join(row.get("issues", [])))
    console.print(table)


@app.command("cleanup-webhooks")
def cleanup_webhooks(
    days: Annotated[int, typer.Option("--days", "-d", help="Keep processed events this many days")] = 30,
) -> None:
    """Delete old processed webhook events."""
    gateway = StripeGateway()
    processor = WebhookProcessor(db, gateway, ReferralService(db, gateway))
    deleted = processor.cleanup_old_events(days)
    console.print(f"[bold green]✓[/bold green] Deleted {deleted} processed events older than {days} days")


if __name__ == "__main__":
    app()
