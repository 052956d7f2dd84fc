"""
rain-issuing CLI entry point.

Usage:
    rain-issuing [OPTIONS] COMMAND [ARGS]...

All commands work offline: they create SessionIds, compute shipping cutoffs
and plan shipment batches without calling the API.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import click
from pydantic import ValidationError as SettingsValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Environment, RainSettings
from .exceptions import RainIssuingError
from .lifecycle import CardRecord
from .logging import configure_logging, mask_value
from .models.card import CardStatus, CardType
from .secure_session import PublicKeyring, SecureSessionProtocol, load_public_key
from .shipping import ShipmentBatcher
from .validation import derive_display_name, validate_display_name

console = Console()


def _fail(error: RainIssuingError) -> None:
    console.print(f"[red]Error:[/red] {error.message} [dim]({error.error_code})[/dim]")
    raise SystemExit(1)


def _parse_time(value: str | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise click.BadParameter(f"not an ISO 8601 timestamp: {value}") from e
    if parsed.tzinfo is None:
        raise click.BadParameter("timestamp needs a UTC offset, e.g. 2024-03-05T11:30:00-05:00")
    return parsed


@click.group()
@click.version_option(package_name="rain-issuing", message="%(prog)s %(version)s")
@click.option(
    "--env",
    "environment",
    type=click.Choice([e.value for e in Environment]),
    envvar="RAIN_ENVIRONMENT",
    help="Target environment",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, environment: str | None, verbose: bool):
    """rain-issuing - card lifecycle and secure session tooling for Rain."""
    ctx.ensure_object(dict)
    if verbose:
        configure_logging(logging.DEBUG)

    try:
        settings = RainSettings()
    except SettingsValidationError as e:
        console.print("[red]Error:[/red] invalid RAIN_* configuration [dim](INVALID_SETTINGS)[/dim]")
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "settings"
            console.print(f"  RAIN_{field.upper()}: {escape(error['msg'])}")
        raise SystemExit(1) from e
    if environment:
        settings = settings.model_copy(update={"environment": Environment(environment)})
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def status(ctx):
    """Show the active configuration."""
    settings: RainSettings = ctx.obj["settings"]

    console.print("\n[bold blue]rain-issuing configuration[/bold blue]\n")
    console.print(f"Environment: [cyan]{settings.environment.value}[/cyan]")
    console.print(f"Base URL: [cyan]{settings.resolved_base_url}[/cyan]")
    if settings.api_key:
        console.print(f"API Key: [green]{mask_value(settings.api_key)}[/green]")
    else:
        console.print("API Key: [yellow]Not configured[/yellow]")

    for env, pem in (
        (Environment.DEV, settings.dev_public_key_pem),
        (Environment.PRODUCTION, settings.production_public_key_pem),
    ):
        state = "[green]configured[/green]" if pem else "[yellow]missing[/yellow]"
        console.print(f"Session key ({env.value}): {state}")

    console.print(
        f"Shipment cutoff: [cyan]{settings.shipment_cutoff.strftime('%H:%M')} "
        f"{settings.business_timezone}[/cyan]"
    )


@cli.command()
@click.option(
    "--public-key",
    "public_key_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="PEM file with the environment's session public key",
)
@click.option("--secret", help="32 hex character secret (generated when omitted)")
@click.option("--show-secret", is_flag=True, help="Print the secret as well")
@click.pass_context
def session(ctx, public_key_file: Path | None, secret: str | None, show_secret: bool):
    """Create a SessionId for card secret retrieval."""
    settings: RainSettings = ctx.obj["settings"]
    environment = settings.environment

    try:
        if public_key_file is not None:
            keyring = PublicKeyring({environment: load_public_key(public_key_file.read_bytes())})
        else:
            keyring = PublicKeyring.from_settings(settings)
        created = SecureSessionProtocol(keyring).create_session(environment, secret)
    except RainIssuingError as e:
        _fail(e)

    console.print(f"\n[bold]SessionId[/bold] ([cyan]{environment.value}[/cyan])")
    console.print(created.session_id, soft_wrap=True, highlight=False)
    if show_secret:
        console.print("\n[bold]Secret[/bold] [dim](keep in memory only)[/dim]")
        console.print(created.secret, highlight=False)


@cli.command()
@click.option("--at", "at", help="Card creation time (ISO 8601 with offset); defaults to now")
@click.pass_context
def cutoff(ctx, at: str | None):
    """Show the shipping cutoff a card created at a given time ships with."""
    settings: RainSettings = ctx.obj["settings"]
    batcher = ShipmentBatcher.from_settings(settings)
    created_at = _parse_time(at)

    try:
        window = batcher.shipping_window(created_at)
    except RainIssuingError as e:
        _fail(e)

    local = created_at.astimezone(batcher.tz)
    console.print(f"Created:  [white]{local.isoformat()}[/white]")
    console.print(f"Ships at: [green]{window.isoformat()}[/green]")


@cli.command()
@click.argument("cards_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--bulk-only", is_flag=True, help="Only show consolidated bulk shipments")
@click.pass_context
def shipments(ctx, cards_file: Path, bulk_only: bool):
    """Plan shipment batches for physical cards listed in a JSON file.

    The file holds a list of objects with ``cardId``, ``createdAt`` and
    optionally ``bulkShippingGroupId`` and ``type`` (default physical).
    """
    settings: RainSettings = ctx.obj["settings"]
    batcher = ShipmentBatcher.from_settings(settings)

    try:
        entries = json.loads(cards_file.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{cards_file} is not valid JSON: {e}") from e
    if not isinstance(entries, list):
        raise click.BadParameter(f"{cards_file} must contain a JSON list")

    records = []
    for entry in entries:
        try:
            records.append(
                CardRecord(
                    card_id=str(entry["cardId"]),
                    user_id=str(entry.get("userId", "")),
                    card_type=CardType(entry.get("type", CardType.PHYSICAL.value)),
                    status=CardStatus(entry.get("status", CardStatus.ACTIVE.value)),
                    limit=int(entry.get("limit", 0)),
                    created_at=_parse_time(entry["createdAt"]),
                    bulk_shipping_group_id=entry.get("bulkShippingGroupId"),
                )
            )
        except (KeyError, ValueError, TypeError) as e:
            raise click.BadParameter(f"invalid card entry {entry!r}: {e}") from e

    try:
        batches = batcher.bulk_batches(records) if bulk_only else batcher.plan(records)
    except RainIssuingError as e:
        _fail(e)

    table = Table(title="Shipment Batches")
    table.add_column("Cutoff", style="cyan")
    table.add_column("Group", style="white")
    table.add_column("Cards", style="dim")
    table.add_column("Kind", style="green")

    for batch in batches:
        table.add_row(
            batch.cutoff.strftime("%Y-%m-%d %H:%M %Z"),
            batch.group_id or "-",
            ", ".join(batch.card_ids),
            "bulk" if batch.is_bulk else "individual",
        )

    console.print(table)


@cli.command("display-name")
@click.argument("name")
@click.option("--derive", is_flag=True, help="Treat NAME as a full name and derive a display name")
def display_name(name: str, derive: bool):
    """Check (or derive) a card display name."""
    try:
        result = derive_display_name(name) if derive else validate_display_name(name)
    except RainIssuingError as e:
        _fail(e)
    console.print(f"[green]{result}[/green]", highlight=False)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
