"""
CLI: ``cronspine db`` -- schema and checkpoint maintenance.
"""

from __future__ import annotations

import typer

from cronspine.cli import utils
from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.schema import CORE_TABLES

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
) -> None:
    """Create the engine tables (idempotent)."""
    settings = utils.load_settings(database)
    conn = utils.open_connection(settings)
    conn.close()
    utils.console.print(
        f"[green]Initialised[/green] {', '.join(CORE_TABLES.values())} at {settings.database_url}"
    )


@app.command("migrate-checkpoints")
def migrate_checkpoints(
    job_type: str = typer.Argument(..., help="Job name"),
    variant: str | None = typer.Option(None, "--job", "-j", help="Job variant"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Fold legacy null-scope progress rows into the global row."""
    settings = utils.load_settings(database)
    conn = utils.open_connection(settings)
    try:
        removed = CheckpointStore(conn).migrate_null_scope(utils.job_key(job_type, variant))
    finally:
        conn.close()
    utils.console.print(f"Migrated {removed} legacy checkpoint row(s)")
