"""
CLI interface for Summary Guard.

Provides command-line access to summaries, usage and the sweep.
"""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from summary_guard.api.service import SummaryService, build_service
from summary_guard.config.loader import Settings, load_settings
from summary_guard.core.actors import InboundRequest
from summary_guard.demo.seed_demo_data import seed_demo_data
from summary_guard.storage.repository import (
    ArtifactRepository,
    DocumentRepository,
    UsageRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_ERROR = 1

_state = {"config": None}


def _settings() -> Settings:
    return load_settings(_state["config"])


def _service() -> SummaryService:
    return build_service(_settings())


def _fail(payload: dict) -> None:
    console.print(f"[red]Error ({payload['error']}):[/] {payload.get('message', '')}")
    if "plan" in payload:
        console.print(f"Plan: {payload['plan']}, remaining: {payload.get('remaining', 0)}")
    sys.exit(EXIT_CODE_ERROR)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML settings file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Summary Guard CLI."""
    _state["config"] = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    if ctx.invoked_subcommand is None:
        console.print("Summary Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the Summary Guard database."""
    try:
        initialize_schema(_settings().db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)


@app.command()
def status():
    """Show database location and row counts."""
    try:
        db_path = _settings().db_path
        table = Table(title="Summary Guard")
        table.add_column("Item")
        table.add_column("Value", justify="right")
        table.add_row("Database", db_path)
        table.add_row("Resources", str(DocumentRepository(db_path).count_resources()))
        table.add_row("Resources without summary", str(
            len(ArtifactRepository(db_path).list_missing())
        ))
        table.add_row("Usage counter rows", str(UsageRepository(db_path).count_rows()))
        console.print(table)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        console.print("Run `summary-guard init` to initialize the database")
        sys.exit(EXIT_CODE_ERROR)


@app.command("seed-demo")
def seed_demo():
    """Load demo resources, documents and users."""
    try:
        count = seed_demo_data(_settings().db_path)
        console.print(f"[green]✓[/] Demo data inserted ({count} documents)")
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)


@app.command()
def summarize(
    resource_id: str = typer.Argument(..., help="Resource to summarize"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the cache and regenerate"),
    token: Optional[str] = typer.Option(None, "--token", "-t", help="Actor bearer token"),
    origin: str = typer.Option("127.0.0.1", "--origin", help="Network origin for anonymous use"),
):
    """Get (or refresh) the summary for a resource."""
    with _service() as service:
        payload = service.get_or_refresh_artifact(
            resource_id,
            force_refresh=force,
            actor_token=token,
            request=InboundRequest(remote_addr=origin),
        )
    if "error" in payload:
        _fail(payload)

    body = payload["body"]
    source = "cache" if payload["served_from_cache"] else "fresh"
    console.print(f"\n[bold]Summary for {resource_id}[/bold] ({source}, computed {payload['computed_at']})")
    console.print(f"Sentiment: {body.get('sentiment', 'neutral')}")
    for label in ("pros", "cons", "topics"):
        items = body.get(label) or []
        console.print(f"[bold]{label.capitalize()}:[/bold] {', '.join(items) if items else '-'}")


@app.command()
def usage(token: str = typer.Option(..., "--token", "-t", help="Actor bearer token")):
    """Show today's usage against the plan's limits."""
    with _service() as service:
        payload = service.get_usage(token)
    if "error" in payload:
        _fail(payload)

    table = Table(title=f"Usage today (plan: {payload['plan']})")
    table.add_column("Operation")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    for operation, row in payload["per_operation"].items():
        table.add_row(operation, str(row["used"]), str(row["limit"]), str(row["remaining"]))
    console.print(table)


@app.command()
def sweep(
    secret: str = typer.Option(..., "--secret", "-s", help="Shared sweep secret"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Maximum resources to refresh"),
):
    """Refresh stale or missing summaries, bypassing quotas."""
    with _service() as service:
        payload = service.run_recompute_sweep(batch_size, secret)
    if "error" in payload:
        _fail(payload)

    processed = payload["processed_resource_ids"]
    console.print(f"[green]✓[/] Refreshed {len(processed)} resource(s): {', '.join(processed) or '-'}")
    if payload["failed_resource_ids"]:
        console.print(f"[yellow]Failed:[/] {', '.join(payload['failed_resource_ids'])}")


if __name__ == "__main__":
    app()
