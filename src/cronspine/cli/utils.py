"""
CLI helpers: settings overrides, connections, registry loading, output.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cronspine.core.connection import create_connection
from cronspine.core.settings import CronSpineSettings
from cronspine.jobs.registry import JobRegistry, load_registry

console = Console()
err_console = Console(stderr=True)


# ── Settings / connection / registry ─────────────────────────────────────


def load_settings(database: str | None = None, registry: str | None = None) -> CronSpineSettings:
    """Environment settings with command-line overrides applied."""
    settings = CronSpineSettings()
    updates: dict[str, Any] = {}
    if database:
        updates["database_url"] = database
    if registry:
        updates["registry_factory"] = registry
    return settings.model_copy(update=updates) if updates else settings


def open_connection(settings: CronSpineSettings) -> Any:
    conn, _info = create_connection(settings.database_url, init_schema=True)
    return conn


def load_jobs(settings: CronSpineSettings) -> JobRegistry:
    return load_registry(settings.registry_factory)


def job_key(name: str, variant: str | None) -> str:
    """Storage key of a job without needing its registry."""
    return f"{name}:{variant}" if variant else name


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    table = Table(title=title or None, show_header=False, pad_edge=False)
    table.add_column("key", style="bold cyan")
    table.add_column("value", overflow="fold")
    for key, value in data.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str) if value else "-"
        table.add_row(str(key), "-" if value is None else str(value))
    console.print(table)


def print_rows(rows: list[dict[str, Any]], *, title: str = "") -> None:
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)
