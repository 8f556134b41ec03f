"""CLI entry point for the DocuWare migration tools.

Provides commands:
  - prepare: Extract source records from PostgreSQL into the staging table
  - upload: Upload pending staging records to DocuWare
  - status: Display staging table statistics (pending / uploaded)
  - config: Manage configuration (DocuWare password, effective settings)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import keyring
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dwmigrate.config import (
    DOCUWARE_SERVICE_NAME,
    load_migration_config,
    load_source_config,
    lookup_keyring_password,
)
from dwmigrate.database import Database
from dwmigrate.exceptions import ConfigError, FatalSetupFailure, InitialAuthenticationError
from dwmigrate.models import MigrationConfig, RunSummary

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="DocuWare migration - stage source documents and upload them to DocuWare",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (DocuWare password, settings)")
app.add_typer(config_app, name="config")


@app.callback()
def app_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write dwmigrate logs to this file"),
    ] = None,
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logging.getLogger("dwmigrate").addHandler(fh)


def _load_config_or_exit(
    config_path: Path | None, db_path: Path | None, require_password: bool = True
) -> MigrationConfig:
    try:
        config = load_migration_config(config_path, require_password=require_password)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)
    if db_path is not None:
        config.db_path = str(db_path)
    return config


@app.command()
def prepare(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to source config JSON"),
    ] = None,
    db_path: Annotated[
        Path,
        typer.Option("--db", "-d", help="Path to SQLite staging database"),
    ] = Path("data/upload.db"),
) -> None:
    """Extract source records from PostgreSQL into the SQLite staging table."""
    import psycopg

    from dwmigrate.extraction import prepare_staging

    try:
        source_config = load_source_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    try:
        result = prepare_staging(source_config, db_path)
    except psycopg.Error as e:
        console.print(f"[red]Source database error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"Fetched: [bold]{result.fetched}[/bold]\n"
            f"Staged:  [green]{result.staged}[/green]\n"
            f"Skipped: [yellow]{result.skipped}[/yellow] (invalid path mapping)",
            title=f"Staging Prepared ({db_path})",
        )
    )


@app.command()
def upload(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to migration config JSON"),
    ] = None,
    db_path: Annotated[
        Path | None,
        typer.Option("--db", "-d", help="Path to SQLite staging database (overrides config)"),
    ] = None,
    pause_ms: Annotated[
        int | None,
        typer.Option("--pause-ms", help="Delay before each upload in milliseconds", min=0),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be uploaded without logging in"),
    ] = False,
) -> None:
    """Upload pending staging records to DocuWare.

    The DocuWare password is read from the system keyring
    (service: dwmigrate-docuware, key: user name) or DW_PASSWORD.
    """
    config = _load_config_or_exit(config_path, db_path, require_password=not dry_run)
    if pause_ms is not None:
        config.loop_pause_ms = pause_ms

    staging_path = Path(config.db_path)
    if not staging_path.exists():
        console.print(
            f"[red]Error:[/red] Staging database not found: {staging_path}\n"
            "Run [bold]dwmigrate prepare[/bold] first."
        )
        raise typer.Exit(code=1)

    if dry_run:
        _show_dry_run(staging_path)
        return

    console.print(
        Panel(
            f"Uploading pending records from [bold]{staging_path}[/bold] to "
            f"[bold]{config.base_url}[/bold]\n"
            f"Organization: {config.organization} | Pause: {config.loop_pause_ms} ms",
            title="Upload Pipeline",
        )
    )

    try:
        summary = asyncio.run(run_upload(config))
    except InitialAuthenticationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except FatalSetupFailure as e:
        console.print(f"[red]Setup error:[/red] {e}")
        raise typer.Exit(code=1)

    _print_summary(summary)


async def run_upload(config: MigrationConfig) -> RunSummary:
    """Build the pipeline components from *config* and run one upload pass."""
    from dwmigrate.upload.client import DocumentUploader
    from dwmigrate.upload.orchestrator import UploadOrchestrator
    from dwmigrate.upload.progress import UploadProgressReporter
    from dwmigrate.upload.rate_limiter import FixedDelayRateLimiter
    from dwmigrate.upload.session import DocuWareSession
    from dwmigrate.upload.state import AsyncStagingStore

    async with DocuWareSession(
        config.base_url,
        config.username,
        config.password or "",
        config.organization,
        login_timeout=config.login_timeout,
        probe_timeout=config.probe_timeout,
        logoff_timeout=config.logoff_timeout,
        verify_tls=config.verify_tls,
    ) as session:
        orchestrator = UploadOrchestrator(
            session=session,
            uploader=DocumentUploader(session, upload_timeout=config.upload_timeout),
            store=AsyncStagingStore(config.db_path),
            rate_limiter=FixedDelayRateLimiter(config.loop_pause_ms),
            progress=UploadProgressReporter(console),
        )
        return await orchestrator.run()


def _show_dry_run(staging_path: Path) -> None:
    with Database(staging_path) as db:
        pending = db.get_pending_records(limit=10000)

    count = len(pending)
    if count == 0:
        console.print("[green]No pending records to upload.[/green]")
        return

    console.print(Panel(f"[bold]{count}[/bold] records pending upload", title="Dry Run"))

    preview_table = Table(title=f"Pending Records (showing first {min(20, count)})")
    preview_table.add_column("Object ID", style="cyan", no_wrap=True)
    preview_table.add_column("Cabinet")
    preview_table.add_column("Source Path", overflow="fold")
    preview_table.add_column("Fields", justify="right")

    for record in pending[:20]:
        preview_table.add_row(
            record.object_id,
            record.destination_cabinet_id,
            record.source_path,
            str(len(record.index_fields)),
        )
    if count > 20:
        preview_table.add_row(f"... and {count - 20} more", "", "", "")

    console.print(preview_table)


def _print_summary(summary: RunSummary) -> None:
    summary_table = Table(title="Upload Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")

    summary_table.add_row("Pending at start", str(summary.total))
    summary_table.add_row("Attempted", str(summary.attempted))
    summary_table.add_row("Succeeded", f"[green]{summary.succeeded}[/green]")
    summary_table.add_row("Skipped", f"[yellow]{summary.skipped}[/yellow]")
    summary_table.add_row("Failed", f"[red]{summary.failed}[/red]")
    summary_table.add_row("Not attempted", str(summary.not_attempted))
    summary_table.add_row("Re-logins", str(summary.relogins))

    title = "Upload Aborted (re-login failed)" if summary.aborted else "Upload Complete"
    console.print(Panel(summary_table, title=title))


@app.command()
def status(
    db_path: Annotated[
        Path,
        typer.Option("--db", "-d", help="Path to SQLite staging database"),
    ] = Path("data/upload.db"),
) -> None:
    """Display pending and uploaded counts for the staging table."""
    if not db_path.exists():
        console.print(f"[red]Error:[/red] Staging database not found: {db_path}")
        raise typer.Exit(code=1)

    with Database(db_path) as db:
        counts = db.get_status_counts()

    table = Table(title="Staging Status")
    table.add_column("Status", style="bold")
    table.add_column("Records", justify="right")
    table.add_row("Pending", f"[yellow]{counts['pending']}[/yellow]")
    table.add_row("Uploaded", f"[green]{counts['uploaded']}[/green]")
    table.add_row("Total", str(counts["pending"] + counts["uploaded"]))
    console.print(table)


@config_app.command("set-password")
def set_password(
    username: Annotated[str, typer.Argument(help="DocuWare user name")],
    password: Annotated[
        str,
        typer.Option(prompt=True, hide_input=True, help="DocuWare password"),
    ],
) -> None:
    """Store the DocuWare password in the system keyring."""
    keyring.set_password(DOCUWARE_SERVICE_NAME, username, password)
    console.print(
        f"[green]Password for {username} saved to keyring "
        f"(service: {DOCUWARE_SERVICE_NAME}).[/green]"
    )


@config_app.command("show")
def show_config(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to migration config JSON"),
    ] = None,
) -> None:
    """Show the effective migration configuration (password masked)."""
    config = _load_config_or_exit(config_path, None, require_password=False)
    has_password = bool(lookup_keyring_password(DOCUWARE_SERVICE_NAME, config.username))

    table = Table(title="Migration Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("base_url", config.base_url)
    table.add_row("username", config.username)
    table.add_row("organization", config.organization)
    table.add_row("password", "[green]keyring[/green]" if has_password else "[dim]not in keyring[/dim]")
    table.add_row("db_path", config.db_path)
    table.add_row("loop_pause_ms", str(config.loop_pause_ms))
    table.add_row("upload_timeout", f"{config.upload_timeout:g}s")
    table.add_row("verify_tls", str(config.verify_tls))
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
