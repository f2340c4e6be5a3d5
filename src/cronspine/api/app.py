"""
FastAPI application factory.

``create_app()`` wires settings, the job registry, the cron-secret
middleware and the routers into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root. Routers read the
    settings, registry and connection from ``app.state`` through the
    dependencies in :mod:`cronspine.api.deps`.

Tags:
    api, app-factory, composition-root, FastAPI, cron-trigger
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from cronspine import __version__
from cronspine.api.deps import get_settings
from cronspine.api.middleware.auth import CronSecretMiddleware
from cronspine.core.connection import create_connection
from cronspine.core.logging import configure_logging, get_logger
from cronspine.core.settings import CronSpineSettings
from cronspine.jobs.registry import JobRegistry, load_registry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database on startup, close it on shutdown."""
    settings: CronSpineSettings = app.state.settings
    if app.state.conn is None:
        app.state.conn, info = create_connection(settings.database_url, init_schema=True)
        logger.info("api.database_ready", backend=info.backend, persistent=info.persistent)
    logger.info("api.starting", version=__version__, jobs=app.state.registry.names())

    yield

    conn = app.state.conn
    if conn is not None and app.state.owns_conn:
        conn.close()
        app.state.conn = None
    logger.info("api.shutting_down")


def create_app(
    settings: CronSpineSettings | None = None,
    registry: JobRegistry | None = None,
    *,
    conn: Any = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : CronSpineSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    registry : JobRegistry | None
        Jobs to serve. When ``None`` the registry is built by
        ``settings.registry_factory``.
    conn :
        Existing connection to share (tests pass an in-memory one). When
        ``None`` one is opened from ``settings.database_url``.
    """
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    if registry is None:
        registry = load_registry(settings.registry_factory)

    app = FastAPI(title="cronspine", version=__version__, lifespan=lifespan)

    app.state.settings = settings
    app.state.registry = registry
    app.state.conn = conn
    app.state.owns_conn = conn is None

    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CronSecretMiddleware,
        secret=settings.cron_secret,
        allow_without_secret=settings.is_development,
    )

    from cronspine.api.routers import cron, health

    app.include_router(health.router)
    app.include_router(cron.router, tags=["cron"])

    return app
