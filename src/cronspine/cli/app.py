"""
Root Typer application for the cronspine CLI.

Runs the same batches the HTTP trigger runs, which is how jobs are driven
from a plain crontab or debugged locally.
"""

from __future__ import annotations

import typer
from typer import Typer

from cronspine import __version__
from cronspine.cli import utils
from cronspine.core.errors import CronSpineError
from cronspine.core.logging import configure_logging
from cronspine.execution.executor import TimeBoxedExecutor

app = Typer(
    name="cronspine",
    help="cronspine -- resumable, time-boxed batch jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cronspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
) -> None:
    """cronspine CLI -- run jobs, inspect progress, maintain the database."""
    configure_logging(level=log_level, json_format=False)


# ── Job commands ─────────────────────────────────────────────────────────


@app.command()
def run(
    job_type: str = typer.Argument(..., help="Job name, e.g. ai-reports"),
    variant: str | None = typer.Option(None, "--job", "-j", help="Job variant"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
    registry: str | None = typer.Option(None, "--registry", help="module:function registry factory"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Run one time-boxed batch, exactly like a scheduler tick."""
    settings = utils.load_settings(database, registry)
    try:
        job = utils.load_jobs(settings).get(job_type, variant)
    except CronSpineError as e:
        utils.fail(e.message)

    conn = utils.open_connection(settings)
    try:
        report = TimeBoxedExecutor(conn, settings).run(job)
    finally:
        conn.close()

    body = report.to_response()
    if json_out:
        utils.print_json(body)
    else:
        utils.print_dict(body, title=job.job_type)
    if not report.success:
        raise typer.Exit(code=1)


@app.command()
def status(
    job_type: str = typer.Argument(..., help="Job name"),
    variant: str | None = typer.Option(None, "--job", "-j", help="Job variant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show the current batch progress of a job."""
    settings = utils.load_settings(database)
    key = utils.job_key(job_type, variant)
    conn = utils.open_connection(settings)
    try:
        executor = TimeBoxedExecutor(conn, settings)
        progress = executor.checkpoints.load_progress(key)
        body = {
            "job_type": key,
            "pending": executor.selector.count_pending(key),
            **executor.items.count_by_status(key),
            **(progress.to_dict() if progress else {}),
        }
    finally:
        conn.close()

    if json_out:
        utils.print_json(body)
    else:
        utils.print_dict(body, title=f"{key} status")


@app.command()
def jobs(
    registry: str | None = typer.Option(None, "--registry", help="module:function registry factory"),
) -> None:
    """List registered jobs."""
    settings = utils.load_settings(registry=registry)
    try:
        loaded = utils.load_jobs(settings)
    except CronSpineError as e:
        utils.fail(e.message)

    rows = [
        {
            "job": job.job_type,
            "steps": " -> ".join(s.name for s in job.steps),
            "counter": job.counter,
            "daily": "yes" if job.daily else "",
            "description": job.description,
        }
        for job in loaded
    ]
    utils.print_rows(rows, title="Jobs")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the HTTP trigger server."""
    import uvicorn

    settings = utils.load_settings()
    host = host or settings.host
    port = port or settings.port
    utils.console.print(f"[bold green]Starting cronspine[/bold green] on {host}:{port}")
    uvicorn.run(
        "cronspine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# ── Sub-command groups ───────────────────────────────────────────────────

from cronspine.cli.db import app as db_app  # noqa: E402
from cronspine.cli.items import app as items_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(items_app, name="items", help="Work item maintenance.")
