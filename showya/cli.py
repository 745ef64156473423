"""Typer CLI for Showya."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import create_user, grant_admin
from .database import get_session
from .errors import ShowyaError
from .payments import run_payment_sync
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import (
    ensure_root_token,
    fetch_root_token,
    init_db,
    rotate_root_token,
    upgrade_database,
)

app = typer.Typer(help="Showya command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _readonly_exit(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure the process can write to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("admin-token")
def admin_token() -> None:
    """Print the current root admin token."""
    init_db()
    token = fetch_root_token()
    typer.echo(token)


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the root admin token."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _readonly_exit(exc, "rotate the root admin token")
        raise
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _readonly_exit(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    ensure_root_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("create-user")
def create_user_command(
    email: str = typer.Argument(..., help="Email address of the new user"),
    name: str = typer.Argument(..., help="Full name"),
    admin: bool = typer.Option(False, "--admin", help="Grant platform admin rights"),
) -> None:
    """Create a user and print their API token."""
    init_db()
    try:
        with get_session() as session:
            user = create_user(session, email=email, name=name, is_admin=admin)
            token = user.api_token
    except ShowyaError as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(token)


@app.command("grant-admin")
def grant_admin_command(
    email: str = typer.Argument(..., help="Email address of an existing user"),
) -> None:
    """Give an existing user platform admin rights."""
    init_db()
    try:
        with get_session() as session:
            result = grant_admin(session, email)
    except ShowyaError as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(result["message"])


@app.command("sync-payments")
def sync_payments(
    lookback_hours: float | None = typer.Option(
        None,
        "--lookback-hours",
        min=0.1,
        help="How far back to look for paid orders (defaults to config)",
    ),
) -> None:
    """Reconcile captured Razorpay payments with local bookings."""
    init_db()
    stats = run_payment_sync(lookback_hours)
    if stats is None:
        typer.secho(
            "Razorpay keys are not configured; nothing to sync.",
            err=True,
            fg=typer.colors.YELLOW,
        )
        raise typer.Exit(code=1)
    typer.echo(f"Payment sync complete: {stats}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "showya.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Showya on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    communities: int = typer.Option(
        settings.seed_communities,
        "--communities",
        min=0,
        help="Number of communities to create",
    ),
    max_events: int = typer.Option(
        settings.seed_events_per_community,
        "--max-events",
        min=1,
        help="Maximum events to create in each community",
    ),
):
    """Populate the database with fake users, communities and events for testing."""
    try:
        stats = seed_fake_data(
            user_count=users,
            community_count=communities,
            max_events_per_community=max_events,
        )
    except ValueError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['communities']} communities, "
        f"{stats['events']} events, {stats['bookings']} bookings created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    base_url: str | None = typer.Option(
        None, "--base-url", help="Public site URL used in email links"
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to showya.toml (default: ./showya.toml)"
    ),
    platform_fee_percent: float | None = typer.Option(
        None,
        "--platform-fee-percent",
        min=0.0,
        max=100.0,
        help="Share of each ticket kept by the platform",
    ),
    full_refund_hours: float | None = typer.Option(
        None,
        "--full-refund-hours",
        min=0.0,
        help="Cancellations earlier than this many hours get a full refund",
    ),
    partial_refund_hours: float | None = typer.Option(
        None,
        "--partial-refund-hours",
        min=0.0,
        help="Cancellations earlier than this many hours get a partial refund",
    ),
    partial_refund_percent: int | None = typer.Option(
        None,
        "--partial-refund-percent",
        min=0,
        max=100,
        help="Percentage refunded inside the partial window",
    ),
    payment_sync_interval_minutes: int | None = typer.Option(
        None,
        "--payment-sync-interval-minutes",
        min=1,
        help="Minutes between background payment syncs",
    ),
    payment_sync_lookback_hours: int | None = typer.Option(
        None,
        "--payment-sync-lookback-hours",
        min=1,
        help="Hours of orders examined by each payment sync",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the background payment sync",
    ),
    razorpay_key_id: str | None = typer.Option(
        None, "--razorpay-key-id", help="Live Razorpay key id"
    ),
    jaas_app_id: str | None = typer.Option(
        None, "--jaas-app-id", help="Jitsi as a Service application id"
    ),
):
    """View or update the persistent configuration file.

    Secrets are read from the environment only and are never written here.
    """

    updates = {
        "app_host": host,
        "app_port": port,
        "app_base_url": base_url,
        "platform_fee_percent": platform_fee_percent,
        "full_refund_hours": full_refund_hours,
        "partial_refund_hours": partial_refund_hours,
        "partial_refund_percent": partial_refund_percent,
        "payment_sync_interval_minutes": payment_sync_interval_minutes,
        "payment_sync_lookback_hours": payment_sync_lookback_hours,
        "enable_scheduler": enable_scheduler,
        "razorpay_key_id": razorpay_key_id,
        "jaas_app_id": jaas_app_id,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    settings_ref = settings
    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
