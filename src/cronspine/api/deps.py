"""
FastAPI dependencies: settings, the shared connection, the job registry.

Usage in routers::

    from cronspine.api.deps import Executor, Registry

    @router.get("/cron/{job_type}")
    def run(job_type: str, executor: Executor, registry: Registry):
        ...
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Request

from cronspine.core.connection import create_connection
from cronspine.core.settings import CronSpineSettings
from cronspine.execution.executor import TimeBoxedExecutor
from cronspine.jobs.registry import JobRegistry

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> CronSpineSettings:
    """Cached settings, loaded once per process."""
    return CronSpineSettings()


# ── Connection (one per app) ─────────────────────────────────────────────


def get_connection(request: Request) -> Any:
    """The app's connection, opened (and schema-initialised) on first use."""
    state = request.app.state
    if getattr(state, "conn", None) is None:
        state.conn, _info = create_connection(state.settings.database_url, init_schema=True)
    return state.conn


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def get_executor(
    request: Request,
    conn: Annotated[Any, Depends(get_connection)],
) -> TimeBoxedExecutor:
    return TimeBoxedExecutor(conn, request.app.state.settings)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[CronSpineSettings, Depends(get_settings)]
Conn = Annotated[Any, Depends(get_connection)]
Registry = Annotated[JobRegistry, Depends(get_registry)]
Executor = Annotated[TimeBoxedExecutor, Depends(get_executor)]
