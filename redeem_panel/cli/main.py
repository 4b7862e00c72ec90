"""
CLI interface for Redeem Panel.

Admin access to the request lifecycle plus entrypoints for the web intake
and the Discord bot.
"""

import sys
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from redeem_panel.config.loader import PanelConfig, load_config
from redeem_panel.core.lifecycle import (
    DecisionFailure,
    RedeemService,
    SubmitFailure,
    build_service,
)
from redeem_panel.storage.models import RedeemDraft, RequestStatus, ThrottleScope

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

STATUS_STYLES = {
    RequestStatus.PENDING: "yellow",
    RequestStatus.APPROVED: "green",
    RequestStatus.REJECTED: "red",
}

DECISIONS = {
    "approve": RequestStatus.APPROVED,
    "reject": RequestStatus.REJECTED,
}

ConfigOption = typer.Option(
    None, "--config", "-c", help="YAML config file (environment variables if omitted)"
)


def _load(config_path: Optional[str]) -> PanelConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _service(config_path: Optional[str]) -> RedeemService:
    return build_service(_load(config_path))


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Redeem Panel CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Redeem Panel - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = ConfigOption):
    """Initialize the redeem database."""
    try:
        _service(config)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def submit(
    name: str = typer.Option(..., "--name", "-n", help="Client display name"),
    key: str = typer.Option(..., "--key", "-k", help="Redeem key"),
    invite: str = typer.Option(..., "--invite", "-i", help="Discord invite link"),
    origin: str = typer.Option(
        "cli", "--origin", help="Client address used for origin rate limiting"
    ),
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Submitter identity; applies the per-user cooldown instead"
    ),
    order_id: Optional[str] = typer.Option(None, "--order-id", help="External order id"),
    config: Optional[str] = ConfigOption,
):
    """Submit a redeem request."""
    service = _service(config)
    if user:
        draft = RedeemDraft(
            name=name.strip(), redeem_key=key.strip(), invite_link=invite.strip(),
            identity=user, scope=ThrottleScope.SUBMITTER, order_id=order_id,
        )
    else:
        draft = RedeemDraft(
            name=name.strip(), redeem_key=key.strip(), invite_link=invite.strip(),
            identity=origin, scope=ThrottleScope.ORIGIN, order_id=order_id,
        )

    outcome = service.submit(draft)
    if outcome.ok:
        console.print(f"[green]✓[/] Request #{outcome.request_id} created (PENDING)")
        sys.exit(EXIT_CODE_PASS)

    labels = {
        SubmitFailure.VALIDATION_FAILED: "Validation failed",
        SubmitFailure.DUPLICATE_KEY: "Duplicate key",
        SubmitFailure.RATE_LIMITED: "Rate limited",
    }
    console.print(f"[red]{labels[outcome.failure]}:[/]")
    for error in outcome.errors:
        console.print(f"  - {error}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def decide(
    request_id: int = typer.Argument(..., help="Request id"),
    decision: str = typer.Argument(..., help="approve or reject"),
    config: Optional[str] = ConfigOption,
):
    """Approve or reject a pending request."""
    status = DECISIONS.get(decision.lower())
    if status is None:
        console.print("[red]Decision must be 'approve' or 'reject'[/]")
        sys.exit(EXIT_CODE_FAIL)

    outcome = _service(config).decide(request_id, status)
    if outcome.failure is DecisionFailure.NOT_FOUND:
        console.print(f"[red]Request #{request_id} not found[/]")
        sys.exit(EXIT_CODE_FAIL)
    if outcome.failure is DecisionFailure.INVALID_TRANSITION:
        # Informational: the request already reached a terminal state
        console.print(
            f"[yellow]Request #{request_id} already {outcome.request.status.value}[/]"
        )
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[green]✓[/] Request #{request_id} {status.value}")
    sys.exit(EXIT_CODE_PASS)


def _print_requests(requests, title: str) -> None:
    if not requests:
        console.print("[dim]No requests found.[/]")
        return
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Key")
    table.add_column("Invite")
    table.add_column("Status")
    table.add_column("Submitted")
    table.add_column("Order")
    for item in requests:
        style = STATUS_STYLES[item.status]
        table.add_row(
            str(item.id),
            item.name,
            item.redeem_key,
            item.invite_link,
            f"[{style}]{item.status.value}[/]",
            item.submitted_at.strftime("%Y-%m-%d %H:%M"),
            item.order_id or "",
        )
    console.print(table)


@app.command("list")
def list_requests(
    status: Optional[str] = typer.Option(
        None, "--status", "-s", help="PENDING, APPROVED or REJECTED"
    ),
    config: Optional[str] = ConfigOption,
):
    """List requests, newest first."""
    status_filter = None
    if status:
        try:
            status_filter = RequestStatus(status.upper())
        except ValueError:
            console.print(f"[red]Unknown status:[/] {status}")
            sys.exit(EXIT_CODE_FAIL)
    _print_requests(_service(config).list_requests(status_filter), "Redeem Requests")


@app.command()
def pending(config: Optional[str] = ConfigOption):
    """List requests awaiting a decision."""
    _print_requests(_service(config).list_pending(), "Pending Requests")


@app.command()
def stats(config: Optional[str] = ConfigOption):
    """Show request counts by status and the number of burned keys."""
    service = _service(config)
    counts = service.store.count_by_status()
    table = Table(title="Redeem Panel Stats")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    for request_status, total in counts.items():
        table.add_row(request_status.value, str(total))
    table.add_row("Used keys", str(len(service.keys.list_used())))
    console.print(table)


@app.command("purge-cooldowns")
def purge_cooldowns(config: Optional[str] = ConfigOption):
    """Delete expired submitter cooldown entries."""
    panel_config = _load(config)
    service = build_service(panel_config)
    window = timedelta(minutes=panel_config.throttle.submitter_cooldown_minutes)
    purged = service.cooldowns.purge_expired(window)
    console.print(f"[green]✓[/] Purged {purged} expired cooldown(s)")


@app.command()
def serve(config: Optional[str] = ConfigOption):
    """Run the HTTP intake server."""
    from redeem_panel.web.app import create_app

    panel_config = _load(config)
    web_app = create_app(build_service(panel_config), panel_config)
    console.print(f"🚀 Server running on port {panel_config.web.port}")
    web_app.run(host=panel_config.web.host, port=panel_config.web.port)


@app.command()
def bot(config: Optional[str] = ConfigOption):
    """Run the Discord bot (slash-command intake and review channel)."""
    from redeem_panel.bot.client import run_bot

    panel_config = _load(config)
    try:
        run_bot(build_service(panel_config), panel_config)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
