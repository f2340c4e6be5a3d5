"""
CLI: ``cronspine items`` -- inspect and repair work items.
"""

from __future__ import annotations

from datetime import timedelta

import typer

from cronspine.cli import utils
from cronspine.core.models import WorkItemStatus
from cronspine.core.work_items import WorkItemRepository

app = typer.Typer(no_args_is_help=True)


def _repository(conn, settings) -> WorkItemRepository:
    return WorkItemRepository(conn, dedupe_window=timedelta(hours=settings.dedupe_window_hours))


@app.command("list")
def list_items(
    job_type: str = typer.Argument(..., help="Job name"),
    variant: str | None = typer.Option(None, "--job", "-j", help="Job variant"),
    status: WorkItemStatus | None = typer.Option(None, "--status", "-s", case_sensitive=False),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List work items of a job."""
    settings = utils.load_settings(database)
    conn = utils.open_connection(settings)
    try:
        items = _repository(conn, settings).list_items(utils.job_key(job_type, variant), status)
    finally:
        conn.close()

    rows = [
        {
            "item_id": i.item_id,
            "target": i.target_key,
            "priority": i.priority.name,
            "status": i.status.value,
            "attempts": i.attempts,
            "error": i.error,
        }
        for i in items
    ]
    if json_out:
        utils.print_json(rows)
    else:
        utils.print_rows(rows, title=f"{utils.job_key(job_type, variant)} items")


@app.command("reset-failed")
def reset_failed(
    job_type: str = typer.Argument(..., help="Job name"),
    variant: str | None = typer.Option(None, "--job", "-j", help="Job variant"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Put FAILED items back to PENDING with their attempts cleared."""
    settings = utils.load_settings(database)
    conn = utils.open_connection(settings)
    try:
        count = _repository(conn, settings).reset_failed(utils.job_key(job_type, variant))
    finally:
        conn.close()
    utils.console.print(f"Reset {count} failed item(s)")
