"""CLI for the sats tracker."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install

from sats_tracker.cli.formatting import (
    MASK,
    currency_symbol,
    format_btc,
    format_change,
    format_date,
    format_fiat,
    format_last_activity,
    mask,
)
from sats_tracker.core.aggregator import fiat_value
from sats_tracker.core.exceptions import TrackerError
from sats_tracker.core.models import SUGGESTED_GROUPS, AddressRow, BreakdownRow
from sats_tracker.core.store import RecordId
from sats_tracker.data import TrackerConfig, load_config
from sats_tracker.storage.backup import read_backup, write_backup
from sats_tracker.tracker import SatsTracker

install(show_locals=False)

T = TypeVar("T")

app = typer.Typer(
    name="sats-tracker",
    help="Track Bitcoin address balances and see them broken down by group and address",
    add_completion=False,
)

console = Console()

# Balance-revealing fields replaced in JSON output while privacy mode is on
_RECORD_AMOUNTS = frozenset({"balanceSats"})
_ROW_AMOUNTS = frozenset({"sats", "native_amount", "fiat_amount"})
_TOTAL_AMOUNTS = frozenset({"total_sats", "native_amount", "fiat_amount"})


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


class Breakdown(StrEnum):
    """Which aggregate view to show."""

    GROUP = "group"
    ADDRESS = "address"


class Toggle(StrEnum):
    ON = "on"
    OFF = "off"


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML file overriding the default configuration"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
) -> None:
    """Load configuration and set up logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    ctx.obj = load_config(config)


def _run(ctx: typer.Context, action: Callable[[SatsTracker], Awaitable[T]]) -> T:
    """
    Run ``action`` against a tracker inside a fresh event loop.

    Tracker errors are printed and turned into exit code 1.

    """
    config: TrackerConfig = ctx.obj

    async def runner() -> T:
        async with SatsTracker(config) as tracker:
            return await action(tracker)

    try:
        return asyncio.run(runner())
    except TrackerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


def _resolve_id(tracker: SatsTracker, raw: str) -> RecordId:
    """Match a command-line id against stored ids, preferring an exact string id."""
    if raw in tracker.store or not raw.lstrip("-").isdigit():
        return raw
    return int(raw)


@app.command("list")
def list_addresses(
    ctx: typer.Context,
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """List tracked addresses with their last known balances."""

    async def action(tracker: SatsTracker) -> None:
        if format == OutputFormat.JSON:
            document = json.loads(tracker.export_backup())
            if tracker.privacy:
                document = [_mask_fields(entry, _RECORD_AMOUNTS) for entry in document]
            console.print_json(json.dumps(document))
        else:
            console.print(_addresses_table(tracker))

    _run(ctx, action)


@app.command()
def add(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Bitcoin address to track"),
    label: str = typer.Option("", "--label", "-l", help="Display name"),
    group: str = typer.Option("", "--group", "-g", help=f"Category, e.g. {', '.join(SUGGESTED_GROUPS)}"),
) -> None:
    """
    Start tracking an address.

    Examples:

        sats-tracker add bc1q... --label "Cold wallet" --group "Cold Storage"
    """

    async def action(tracker: SatsTracker) -> None:
        with console.status(f"Fetching {address}..."):
            record = await tracker.add_address(address, label=label, group=group)
        balance = mask(format_btc(record.balance_sats), tracker.privacy)
        console.print(
            f"[green]✓[/green] Added [bold]{record.label}[/bold] ({record.group}) id={record.id}: {balance} BTC"
        )

    _run(ctx, action)


@app.command()
def remove(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., metavar="ID", help="Record id shown by 'list'"),
) -> None:
    """Stop tracking an address."""

    async def action(tracker: SatsTracker) -> bool:
        return tracker.remove_address(_resolve_id(tracker, record_id))

    if not _run(ctx, action):
        console.print(f"[bold red]Error:[/bold red] no address with id {record_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Removed {record_id}")


@app.command()
def rename(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., metavar="ID", help="Record id shown by 'list'"),
    label: str | None = typer.Option(None, "--label", "-l", help="New display name"),
    group: str | None = typer.Option(None, "--group", "-g", help="New category"),
) -> None:
    """Change the label or group of a tracked address."""

    async def action(tracker: SatsTracker) -> None:
        try:
            record = tracker.rename(_resolve_id(tracker, record_id), label=label, group=group)
        except KeyError:
            console.print(f"[bold red]Error:[/bold red] no address with id {record_id}")
            raise typer.Exit(code=1) from None
        console.print(f"[green]✓[/green] {record.id}: {record.label} ({record.group})")

    _run(ctx, action)


@app.command()
def status(
    ctx: typer.Context,
    by: Breakdown = typer.Option(Breakdown.GROUP, "--by", "-b", help="Breakdown to show"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """Refresh once, then show price, fees, totals and a breakdown."""

    async def action(tracker: SatsTracker) -> None:
        with console.status("Refreshing..."):
            await tracker.refresh()
        if format == OutputFormat.JSON:
            _output_json(tracker, by)
        else:
            console.print(_dashboard(tracker, by))

    _run(ctx, action)


@app.command()
def watch(
    ctx: typer.Context,
    by: Breakdown = typer.Option(Breakdown.GROUP, "--by", "-b", help="Breakdown to show"),
) -> None:
    """Keep refreshing on the configured interval until interrupted."""

    async def action(tracker: SatsTracker) -> None:
        with Live(_dashboard(tracker, by), console=console, refresh_per_second=2) as live:
            tracker.scheduler.on_cycle = lambda _report: live.update(_dashboard(tracker, by))
            tracker.start()
            try:
                await asyncio.Event().wait()
            finally:
                await tracker.stop()

    try:
        _run(ctx, action)
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


@app.command("export")
def export_backup(
    ctx: typer.Context,
    path: Path = typer.Argument(Path("."), help="Backup file or directory"),
) -> None:
    """Write all tracked addresses to a JSON backup."""

    async def action(tracker: SatsTracker) -> Path:
        return write_backup(tracker.store, path)

    written = _run(ctx, action)
    console.print(f"[green]✓[/green] Backup written to {written}")


@app.command("import")
def import_backup(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Backup file to restore"),
) -> None:
    """Replace tracked addresses with the contents of a backup."""

    async def action(tracker: SatsTracker) -> int:
        return len(read_backup(tracker.store, path))

    count = _run(ctx, action)
    console.print(f"[green]✓[/green] Imported {count} addresses")


@app.command()
def privacy(
    ctx: typer.Context,
    state: Toggle = typer.Argument(..., help="Mask balances in all output"),
) -> None:
    """Turn privacy mode on or off."""

    async def action(tracker: SatsTracker) -> None:
        tracker.privacy = state == Toggle.ON

    _run(ctx, action)
    console.print(f"Privacy mode {state.value}")


def _addresses_table(tracker: SatsTracker) -> Table:
    """Table of tracked records in insertion order."""
    hidden = tracker.privacy
    symbol = currency_symbol(tracker.config.price.currency)
    table = Table(title="Tracked Addresses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Label", style="cyan")
    table.add_column("Group", style="magenta")
    table.add_column("Address", style="blue")
    table.add_column("Balance (BTC)", style="white", justify="right")
    table.add_column("Value", style="bold green", justify="right")
    table.add_column("Last Activity", style="yellow")
    table.add_column("Updated", style="dim")

    for record in tracker.store.snapshot():
        value = format_fiat(fiat_value(record.balance_sats, tracker.price), symbol)
        updated = format_date(record.last_updated)
        if record.stale:
            updated = f"[red]{updated} (stale)[/red]"
        table.add_row(
            str(record.id),
            record.label,
            record.group,
            f"[link={tracker.config.explorer_link(record.address)}]{record.address}[/link]",
            mask(format_btc(record.balance_sats), hidden),
            mask(value, hidden),
            format_last_activity(record.last_tx_time),
            updated,
        )

    if not table.rows:
        table.caption = "No addresses yet. Add one with 'sats-tracker add ADDRESS'."
    return table


def _market_table(tracker: SatsTracker) -> Table:
    market = tracker.market
    symbol = currency_symbol(tracker.config.price.currency)
    table = Table(show_header=False, box=None)
    table.add_column("Label", style="bold")
    table.add_column("Value")

    if market.price is not None:
        colour = "green" if (market.price.change_24h or 0) >= 0 else "red"
        change = format_change(market.price.change_24h)
        table.add_row("BTC Price:", f"{format_fiat(market.price.price, symbol)}  [{colour}]{change}[/{colour}]")
    else:
        table.add_row("BTC Price:", "[dim]unavailable[/dim]")

    if market.fees is not None:
        fees = market.fees
        table.add_row(
            "Fees (sat/vB):",
            f"[red]fast {fees.fastest:g}[/red]  "
            f"[yellow]30m {fees.half_hour:g}[/yellow]  "
            f"[green]1h {fees.hour:g}[/green]",
        )
    else:
        table.add_row("Fees (sat/vB):", "[dim]unavailable[/dim]")

    totals = tracker.totals()
    table.add_row("Total:", mask(f"{format_btc(totals.total_sats)} BTC", tracker.privacy))
    table.add_row("Total Value:", mask(format_fiat(totals.fiat_amount, symbol), tracker.privacy))
    table.add_row("Addresses:", str(totals.address_count))
    if totals.stale_count:
        table.add_row("Stale:", f"[red]{totals.stale_count} failed to refresh[/red]")
    return table


def _breakdown_table(tracker: SatsTracker, by: Breakdown) -> Table:
    rows: list[BreakdownRow] = tracker.group_breakdown() if by == Breakdown.GROUP else tracker.address_breakdown()
    hidden = tracker.privacy
    symbol = currency_symbol(tracker.config.price.currency)
    total = sum(row.sats for row in rows)

    title = "Group Breakdown" if by == Breakdown.GROUP else "Address Breakdown"
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Group" if by == Breakdown.GROUP else "Address", style="cyan")
    if by == Breakdown.ADDRESS:
        table.add_column("Label", style="magenta")
    table.add_column("Balance (BTC)", justify="right")
    table.add_column("Value", style="bold green", justify="right")
    table.add_column("Share", justify="right")

    for row in rows:
        cells = [row.key]
        if isinstance(row, AddressRow):
            cells.append(f"{row.label} [red](stale)[/red]" if row.stale else row.label)
        cells += [
            mask(format_btc(row.sats), hidden),
            mask(format_fiat(row.fiat_amount, symbol), hidden),
            f"{row.sats / total:.1%}",
        ]
        table.add_row(*cells)

    if not rows:
        table.caption = "No nonzero balances"
    return table


def _dashboard(tracker: SatsTracker, by: Breakdown) -> Group:
    return Group(_market_table(tracker), _breakdown_table(tracker, by))


def _mask_fields(data: dict[str, Any], keys: frozenset[str]) -> dict[str, Any]:
    return {key: MASK if key in keys else value for key, value in data.items()}


def _output_json(tracker: SatsTracker, by: Breakdown) -> None:
    """Output market data, totals and the breakdown as JSON."""
    rows = tracker.group_breakdown() if by == Breakdown.GROUP else tracker.address_breakdown()
    totals = tracker.totals().model_dump(mode="json")
    breakdown = [row.model_dump(mode="json") for row in rows]
    if tracker.privacy:
        totals = _mask_fields(totals, _TOTAL_AMOUNTS)
        breakdown = [_mask_fields(row, _ROW_AMOUNTS) for row in breakdown]
    data: dict[str, Any] = {
        "market": tracker.market.model_dump(mode="json"),
        "totals": totals,
        "breakdown": breakdown,
        "privacy": tracker.privacy,
    }
    console.print_json(json.dumps(data))


if __name__ == "__main__":
    app()
