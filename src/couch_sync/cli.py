"""
Couch Sync CLI - Command Line Interface.

Commands:
    connect  Register a SQLite database as the source of a pipe
    run      Replicate the pipe's tables into CouchDB
    tables   Show the tables selected for a pipe
    status   Show the pipes in the pipe store
    config   Manage configuration
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from couch_sync import __version__
from couch_sync.config import Settings, load_settings
from couch_sync.connectors.sqlite import SQLiteSourceConnector
from couch_sync.core.engine import ReplicationEngine
from couch_sync.core.pipes import PipeStore
from couch_sync.core.stats import RunStatus
from couch_sync.utils.display import (
    ProgressDisplay,
    print_error,
    print_info,
    print_success,
    print_summary,
    print_warning,
)
from couch_sync.utils.logger import setup_logging_from_config


app = typer.Typer(
    name="couch-sync",
    help="Replicate source tables into CouchDB / Cloudant.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]couch-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Couch Sync - Replicate source tables into CouchDB / Cloudant."""


# =============================================================================
# CONNECT Command
# =============================================================================
@app.command()
def connect(
    source: Path = typer.Option(
        ...,
        "--source",
        "-s",
        help="Path to source SQLite database.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    pipe_id: str = typer.Option(
        None,
        "--pipe",
        "-p",
        help="Pipe id (defaults to the database file name).",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
) -> None:
    """
    Store the tables of a SQLite database as a pipe's table selection.

    Example:
        couch-sync connect --source ./app.db --pipe app
    """
    settings = _build_settings(config_file=config_file)
    pipe_id = pipe_id or source.stem

    with SQLiteSourceConnector(source) as connector:
        pipe = PipeStore(settings.pipes_file).connect_data_source(pipe_id, connector)

    print_success(f"Pipe '{pipe.id}' connected with {len(pipe.tables)} tables")


# =============================================================================
# RUN Command
# =============================================================================
@app.command()
def run(
    source: Path = typer.Option(
        ...,
        "--source",
        "-s",
        help="Path to source SQLite database.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    pipe_id: str = typer.Option(
        None,
        "--pipe",
        "-p",
        help="Pipe id (defaults to the database file name).",
    ),
    url: str = typer.Option(
        None,
        "--url",
        "-u",
        help="CouchDB server URL (overrides config).",
    ),
    username: str = typer.Option(
        None,
        "--username",
        help="CouchDB user name (overrides config).",
    ),
    password: str = typer.Option(
        None,
        "--password",
        envvar="COUCH_SYNC_STORE__PASSWORD",
        help="CouchDB password.",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
    prefix: str = typer.Option(
        None,
        "--prefix",
        help="Prefix for target database names.",
    ),
    tables: Optional[list[str]] = typer.Option(
        None,
        "--table",
        help="Specific tables to copy (can be repeated).",
    ),
    exclude: Optional[list[str]] = typer.Option(
        None,
        "--exclude",
        help="Tables to exclude (can be repeated).",
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        help="Maximum records per table (for testing).",
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Records per bulk write.",
    ),
    update_existing: bool = typer.Option(
        False,
        "--update-existing",
        help="Keep target databases and overwrite existing documents.",
    ),
    keep_target: bool = typer.Option(
        False,
        "--keep-target",
        help="Keep target databases as they are (no recreate, no reconcile).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Replicate a SQLite database into CouchDB, one database per table.

    Example:
        couch-sync run --source ./app.db --url http://localhost:5984
    """
    try:
        settings = _build_settings(
            config_file=config_file,
            url=url,
            username=username,
            password=password,
            tables=tables,
            exclude=exclude,
            limit=limit,
            batch_size=batch_size,
            update_existing=update_existing,
            keep_target=keep_target,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    errors = settings.validate_store()
    if errors:
        for err in errors:
            print_error(err)
        print_info("Use --help for configuration options.")
        raise typer.Exit(1)

    setup_logging_from_config(settings.logging, quiet=quiet)

    pipe_id = pipe_id or source.stem
    store = PipeStore(settings.pipes_file)
    connector = SQLiteSourceConnector(
        source, limit=settings.replication.limit, table_prefix=prefix
    )

    display = ProgressDisplay() if not quiet else None
    started = time.time()
    try:
        try:
            pipe = store.get_pipe(pipe_id)
        except KeyError:
            print_info(f"Pipe '{pipe_id}' not found, connecting {source.name}")
            pipe = store.connect_data_source(pipe_id, connector)

        if display:
            display.start(source=source.name, destination=settings.store.url)

        engine = ReplicationEngine(settings, connector)
        result = asyncio.run(
            engine.run(pipe, on_progress=display.update if display else None)
        )
    finally:
        if display:
            display.stop()
        connector.close()

    if not quiet:
        console.print()
        print_summary(result, time.time() - started)

    if result.status == RunStatus.FAILED:
        print_error(result.status_text)
        raise typer.Exit(1)
    if result.status == RunStatus.SUCCEEDED_WITH_ERRORS:
        print_warning(result.status_text)
        raise typer.Exit(1)
    print_success(result.message)


# =============================================================================
# TABLES Command
# =============================================================================
@app.command("tables")
def list_tables(
    pipe_id: str = typer.Option(
        ...,
        "--pipe",
        "-p",
        help="Pipe id.",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
) -> None:
    """Show the tables selected for a pipe."""
    settings = _build_settings(config_file=config_file)
    try:
        pipe = PipeStore(settings.pipes_file).get_pipe(pipe_id)
    except KeyError as e:
        print_error(str(e.args[0]))
        raise typer.Exit(1)

    table = Table(title=f"Pipe {pipe.id}", border_style="blue")
    table.add_column("Table", style="cyan")
    table.add_column("Label")
    table.add_column("Label (plural)")

    for t in pipe.tables:
        table.add_row(t.name, t.label or "", t.label_plural or "")

    console.print(table)
    if pipe.updated_at:
        print_info(f"Last updated {pipe.updated_at}")


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
) -> None:
    """Show the pipes known to the pipe store."""
    settings = _build_settings(config_file=config_file)
    pipes = PipeStore(settings.pipes_file).list_pipes()

    if not pipes:
        print_info(f"No pipes in {settings.pipes_file}. Use 'connect' or 'run' first.")
        return

    table = Table(title="Pipes", border_style="cyan")
    table.add_column("Pipe", style="cyan")
    table.add_column("Connector")
    table.add_column("Tables", justify="right")
    table.add_column("Last Updated")

    for pipe in pipes:
        table.add_row(
            pipe.id,
            pipe.connector_id or "-",
            str(len(pipe.tables)),
            pipe.updated_at or "-",
        )

    console.print(table)


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with the current settings.",
    ),
    output: Path = typer.Option(
        Path("config.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = Settings()
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("Store URL", settings.store.url)
        table.add_row("User", settings.store.username or "[dim]anonymous[/dim]")
        table.add_row("Batch Size", f"{settings.replication.batch_size} records")
        table.add_row("Recreate Targets", str(settings.replication.recreate_target_db))
        table.add_row("Update Existing", str(settings.replication.update_existing_docs))
        table.add_row("Pipes File", str(settings.pipes_file))

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _build_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build settings from config file and CLI overrides."""
    settings = load_settings(config_file) if config_file else Settings()

    store = settings.store
    if overrides.get("url"):
        store.url = overrides["url"].rstrip("/")
    if overrides.get("username"):
        store.username = overrides["username"]
    if overrides.get("password"):
        store.password = SecretStr(overrides["password"])

    options = settings.replication
    if overrides.get("tables"):
        options.tables = list(overrides["tables"])
    if overrides.get("exclude"):
        options.exclude_tables = list(overrides["exclude"])
    if overrides.get("limit"):
        options.limit = overrides["limit"]
    if overrides.get("batch_size"):
        if overrides["batch_size"] < 1:
            raise ValueError("--batch-size must be positive")
        options.batch_size = overrides["batch_size"]
    if overrides.get("update_existing") and overrides.get("keep_target"):
        raise ValueError("--update-existing and --keep-target are mutually exclusive")
    if overrides.get("update_existing"):
        options.recreate_target_db = False
        options.update_existing_docs = True
    elif overrides.get("keep_target"):
        options.recreate_target_db = False
        options.update_existing_docs = False

    return settings


if __name__ == "__main__":
    app()
