#!/usr/bin/env python3
"""Command Line Interface for the Cook County property aggregator.

Usage:
    cd src
    python cli.py server                          # Start API server
    python cli.py fetch 01-01-120-006-0000        # Fetch all sources for a PIN
    python cli.py fetch 01-01-120-006-0000 -s clerk
    python cli.py import pins.csv                 # Run a bulk import
    python cli.py clear-cache --persistent        # Drop every cached row
    python cli.py info                            # Show configuration
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from core.config import get_settings
from core.exceptions import CookPropertyError
from core.logging_config import get_logger, setup_logging
from core.types import SourceKind

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

app = typer.Typer(help="Cook County property aggregator CLI")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Cook County property aggregator - tax portal, clerk, recorder and GIS data."""
    log_level = "DEBUG" if verbose else SETTINGS.log_level
    setup_logging(level=log_level)


# =============================================================================
# Data Commands
# =============================================================================


@app.command("fetch")
def fetch(
    pin: str = typer.Argument(..., help="PIN as XX-XX-XXX-XXX-XXXX"),
    source: Optional[SourceKind] = typer.Option(None, "--source", "-s", help="Fetch one source only"),
    refresh: bool = typer.Option(False, help="Bypass the persistent cache"),
) -> None:
    """Fetch property data and print the envelope(s) as JSON."""
    from core.db import init_db
    from services.aggregator import get_property_service

    init_db()
    service = get_property_service()
    try:
        if source is None:
            result = asyncio.run(service.fetch_aggregated(pin))
        else:
            result = asyncio.run(service.get_source_envelope(pin, source, force_refresh=refresh))
    except CookPropertyError as e:
        typer.secho(f"✗ {e.code}: {e.message}", fg="red")
        raise typer.Exit(1)
    typer.echo(json.dumps(result, indent=2, default=str))


@app.command("import")
def import_pins(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV/TSV/text file of PINs"),
) -> None:
    """Create an import job from a file and process it in the foreground."""
    from core.db import init_db
    from services.import_jobs import ImportJobService

    init_db()
    service = ImportJobService()
    try:
        job = service.create_job_from_upload(file_path.name, file_path.read_bytes())
    except CookPropertyError as e:
        typer.secho(f"✗ {e.message}", fg="red")
        raise typer.Exit(1)

    typer.echo(f"Import job {job['jobId']}: {job['totalPins']} PINs")
    asyncio.run(service.run_job(job["jobId"]))

    summary = service.get_job(job["jobId"], limit=1)
    typer.secho(f"✓ Job {summary['status']}", fg="green" if summary["status"] == "complete" else "red")
    typer.echo(f"  Completed: {summary['completedPins']}")
    typer.echo(f"  Failed: {summary['failedPins']}")


@app.command("clear-cache")
def clear_cache(
    pin: Optional[str] = typer.Option(None, help="Only clear this PIN"),
    persistent: bool = typer.Option(False, help="Also delete persisted rows"),
) -> None:
    """Clear cached fetches."""
    from services.aggregator import get_property_service

    try:
        result = get_property_service().clear_cache(pin, persistent=persistent)
    except CookPropertyError as e:
        typer.secho(f"✗ {e.code}: {e.message}", fg="red")
        raise typer.Exit(1)
    typer.secho(f"✓ Cleared {result}", fg="green")


# =============================================================================
# Service Commands
# =============================================================================


@app.command("server")
def run_server(
    host: str = typer.Option(SETTINGS.api_host, help="Host to bind to"),
    port: int = typer.Option(SETTINGS.api_port, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    typer.echo(f"Starting API server on {host}:{port}...")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_database() -> None:
    """Create any missing tables."""
    from core.db import init_db

    result = init_db()
    if result["status"] == "error":
        typer.secho(f"✗ init_db failed: {result.get('error')}", fg="red")
        raise typer.Exit(1)
    typer.secho(f"✓ Tables created: {result['tables_created'] or 'none'}", fg="green")


@app.command("info")
def show_info() -> None:
    """Show application configuration info."""
    typer.echo("Cook County Property Aggregator Configuration:")
    typer.echo(f"  Environment: {SETTINGS.environment}")
    typer.echo(f"  Log Level: {SETTINGS.log_level}")
    typer.echo(f"  Tax Portal: {SETTINGS.tax_portal_base_url}")
    typer.echo(f"  Clerk: {SETTINGS.clerk_base_url}")
    typer.echo(f"  Recorder: {SETTINGS.recorder_base_url}")
    typer.echo(f"  GIS: {SETTINGS.gis_parcel_query_url}")
    typer.echo(f"  Fetch Cache TTL: {SETTINGS.fetch_cache_ttl_seconds}s")
    typer.echo(f"  Persistent Cache Max Age: {SETTINGS.persistent_cache_max_age_hours}h")
    typer.echo(f"  Google Configured: {SETTINGS.is_google_enabled()}")
    typer.echo(f"  Enabled Services: {', '.join(SETTINGS.get_enabled_services()) or 'none'}")


if __name__ == "__main__":
    app()
