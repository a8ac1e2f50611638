#!/usr/bin/env python3
"""
CLI Entry Point for the Geo-Grid Rank Tracking Platform

Usage:
    geogrid [command] [options]

Commands:
    init            Initialize database, optionally create a campaign
    add-keyword     Track a keyword for a campaign
    grid            Preview the sampling grid around a location
    scan            Run a geo-grid scan for one or all campaigns
    report          Show the latest rankings and trends for a campaign
    alerts          View recent alerts
"""

import json

import click
from loguru import logger
from rich import box
from rich.console import Console
from rich.table import Table

from rank_platform.config.settings import (
    DEFAULT_GRID_SHAPE,
    DEFAULT_GRID_SIZE,
    DEFAULT_RADIUS_MILES,
    LOG_FILE,
    LOG_LEVEL,
)

# Configure logging
logger.add(LOG_FILE, rotation="10 MB", level=LOG_LEVEL, retention="30 days")

# Rich console for pretty output
console = Console()


@click.group()
@click.version_option(version="1.0.0", prog_name="Geo-Grid Rank Platform")
def cli():
    """Geo-grid local rank tracking."""
    pass


@cli.command()
@click.option("--name", default=None, help="Create a campaign with this name")
@click.option("--business", default=None, help="Business name matched in search results")
@click.option("--center", default=None, help="Campaign center as 'lat,lng'")
@click.option("--grid-size", default=DEFAULT_GRID_SIZE, show_default=True, help="Points per grid side")
@click.option("--radius", default=DEFAULT_RADIUS_MILES, show_default=True, help="Grid radius in miles")
@click.option("--shape", default=DEFAULT_GRID_SHAPE, type=click.Choice(["square", "circular"]), show_default=True)
def init(name, business, center, grid_size, radius, shape):
    """Initialize the database and optionally create a campaign."""
    from rank_platform.database.models import init_db
    from rank_platform.database.store import CampaignStore
    from rank_platform.modules.geo_math import GeoPoint
    from rank_platform.utils.helpers import parse_coordinates

    click.echo("Initializing database...")
    init_db()
    click.echo("Database initialized.")

    if name:
        if not business or not center:
            raise click.UsageError("--business and --center are required with --name")
        try:
            lat, lng = parse_coordinates(center)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--center")
        campaign_id = CampaignStore().create_campaign(
            name=name,
            business_name=business,
            center=GeoPoint(lat, lng),
            grid_size=grid_size,
            radius_miles=radius,
            grid_shape=shape,
        )
        click.echo(f"Created campaign {campaign_id}: {name}")

    click.echo("Initialization complete.")


@cli.command("add-keyword")
@click.argument("campaign_id", type=int)
@click.argument("keyword")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--primary", is_flag=True, help="Mark as a primary keyword")
@click.option("--volume", default=0, help="Monthly search volume estimate")
def add_keyword(campaign_id, keyword, tags, primary, volume):
    """Track KEYWORD for CAMPAIGN_ID."""
    from rank_platform.database.store import CampaignStore
    from rank_platform.exceptions import CampaignNotFoundError

    try:
        CampaignStore().add_keyword(campaign_id, keyword, tags=tags, is_primary=primary, volume=volume)
    except CampaignNotFoundError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Tracking '{keyword}' for campaign {campaign_id}")


@cli.command()
@click.option("--center", required=True, help="Grid center as 'lat,lng'")
@click.option("--grid-size", "-n", default=DEFAULT_GRID_SIZE, show_default=True)
@click.option("--radius", "-r", default=DEFAULT_RADIUS_MILES, show_default=True, help="Radius in miles")
@click.option("--shape", default=DEFAULT_GRID_SHAPE, type=click.Choice(["square", "circular"]), show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print the grid as JSON")
def grid(center, grid_size, radius, shape, as_json):
    """Preview the sampling grid around a location."""
    from rank_platform.exceptions import GridValidationError
    from rank_platform.modules.geo_math import GeoPoint, distance_miles
    from rank_platform.modules.grid_generator import generate_grid
    from rank_platform.utils.helpers import parse_coordinates

    try:
        lat, lng = parse_coordinates(center)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--center")

    origin = GeoPoint(lat, lng)
    try:
        cells = generate_grid(origin, grid_size, radius, shape)
    except GridValidationError as exc:
        raise click.ClickException(str(exc))

    if as_json:
        click.echo(json.dumps(
            [{"id": c.id, "lat": c.point.latitude, "lng": c.point.longitude} for c in cells],
            indent=2,
        ))
        return

    table = Table(title=f"{len(cells)} cells ({shape}, {grid_size}x{grid_size}, r={radius}mi)", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Latitude", justify="right")
    table.add_column("Longitude", justify="right")
    table.add_column("Miles", justify="right", style="green")
    for cell in cells:
        table.add_row(
            str(cell.id),
            f"{cell.point.latitude:.6f}",
            f"{cell.point.longitude:.6f}",
            f"{distance_miles(origin, cell.point):.2f}",
        )
    console.print(table)


def _show_summary(summary, title="Summary"):
    """Display the portfolio summary tiles."""
    from rank_platform.modules.presentation import summary_tiles

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for tile in summary_tiles(summary):
        table.add_row(tile["label"], str(tile["value"]))
    console.print(table)


def _show_keyword_table(rows, title="Keyword Rankings"):
    """Display keyword rows produced by the presentation adapter."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Keyword", style="cyan")
    table.add_column("Rank", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Best", justify="right", style="dim")
    table.add_column("Volume", justify="right")

    for row in rows:
        change = row["change_label"]
        if change.startswith("▲"):
            change = f"[green]{change}[/green]"
        elif change.startswith("▼"):
            change = f"[red]{change}[/red]"
        keyword = f"[bold]{row['keyword']}[/bold]" if row.get("is_primary") else row["keyword"]
        table.add_row(
            keyword[:60],
            row["current_rank_label"],
            change,
            row.get("best_rank_label", "-"),
            str(row.get("search_volume") or "-"),
        )
    console.print(table)


@cli.command()
@click.argument("campaign_id", type=int, required=False)
@click.option("--all", "scan_all", is_flag=True, help="Scan every active campaign")
@click.option("--grid-size", "-n", type=int, default=None, help="Override the campaign grid size")
@click.option("--radius", "-r", type=float, default=None, help="Override the campaign radius")
def scan(campaign_id, scan_all, grid_size, radius):
    """Run a geo-grid scan for CAMPAIGN_ID."""
    from rank_platform.database.store import CampaignStore
    from rank_platform.exceptions import GeoGridError
    from rank_platform.modules.geogrid_tracker import GeoGridTracker
    from rank_platform.modules.presentation import keyword_rows

    tracker = GeoGridTracker(CampaignStore())

    if scan_all:
        with console.status("[bold green]Scanning all active campaigns..."):
            results = tracker.scan_all()
        console.print(
            f"[green]Scanned {len(results['scanned'])} campaigns[/green], "
            f"[red]{len(results['failed'])} failed[/red]."
        )
        return

    if campaign_id is None:
        raise click.UsageError("Provide CAMPAIGN_ID or --all")

    try:
        with console.status(f"[bold green]Scanning campaign {campaign_id}..."):
            result = tracker.scan(campaign_id, grid_size=grid_size, radius_miles=radius)
    except GeoGridError as exc:
        raise click.ClickException(str(exc))

    console.print(
        f"\nRun {result.run_id} | {len(result.run.cells)} cells | "
        f"{result.failed_lookups} failed lookups"
    )
    _show_summary(result.aggregate.summary)
    _show_keyword_table(keyword_rows(result.aggregate))
    for alert in result.alerts:
        console.print(f"[yellow]Alert:[/yellow] {alert.title}")


@cli.command()
@click.argument("campaign_id", type=int)
@click.option("--sort", "sort_by", default="current_rank",
              type=click.Choice(["keyword", "current_rank", "change", "search_volume"]))
@click.option("--order", default="asc", type=click.Choice(["asc", "desc"]))
@click.option("--json", "as_json", is_flag=True, help="Print the trend chart data as JSON")
def report(campaign_id, sort_by, order, as_json):
    """Show the latest rankings and trends for CAMPAIGN_ID."""
    from rank_platform.database.store import CampaignStore
    from rank_platform.exceptions import CampaignNotFoundError
    from rank_platform.modules import presentation
    from rank_platform.modules.rank_aggregator import compute_summary, rank_change
    from rank_platform.utils.helpers import format_rank, format_ranking_change, is_unranked

    store = CampaignStore()
    try:
        campaign = store.load_campaign(campaign_id)
    except CampaignNotFoundError as exc:
        raise click.ClickException(str(exc))

    history = store.keyword_history(campaign_id)
    if as_json:
        click.echo(json.dumps(presentation.trend_chart(history), indent=2))
        return

    if not history:
        console.print(f"[yellow]No scans recorded for campaign {campaign_id} yet.")
        return

    current = {text: points[-1].rank for text, points in history.items()}
    previous = {text: points[-2].rank for text, points in history.items() if len(points) > 1}
    volumes = {kw.text: kw.volume for kw in campaign.keywords}
    primaries = {kw.text for kw in campaign.keywords if kw.is_primary}

    rows = []
    for text, points in history.items():
        best = min(p.rank for p in points)
        rows.append({
            "keyword": text,
            "is_primary": text in primaries,
            "current_rank": None if is_unranked(current[text]) else current[text],
            "current_rank_label": format_rank(current[text]),
            "best_rank_label": format_rank(best),
            "change": rank_change(previous.get(text), current[text]),
            "change_label": format_ranking_change(current[text], previous.get(text)),
            "search_volume": volumes.get(text, 0),
        })

    _show_summary(compute_summary(current, previous), title=f"Campaign {campaign.campaign_id}: {campaign.name}")
    _show_keyword_table(presentation.sort_keyword_rows(rows, sort_by, order))


@cli.command()
@click.option("--campaign", "-c", "campaign_id", type=int, default=None)
@click.option("--limit", default=20, show_default=True)
def alerts(campaign_id, limit):
    """View recent alerts."""
    from rank_platform.database.store import CampaignStore

    recent = CampaignStore().recent_alerts(campaign_id=campaign_id, limit=limit)
    if not recent:
        console.print("[green]No alerts.")
        return

    table = Table(title="Recent Alerts", box=box.ROUNDED)
    table.add_column("Severity", width=10)
    table.add_column("Alert", style="cyan")
    table.add_column("Details")
    colors = {"critical": "red", "warning": "yellow"}
    for alert in recent:
        color = colors.get(alert["severity"], "white")
        table.add_row(
            f"[{color}]{alert['severity'].upper()}[/{color}]",
            alert["title"],
            alert["message"] or "",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
