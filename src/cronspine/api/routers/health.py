"""Health endpoint for container and uptime checks (no auth)."""

from __future__ import annotations

import time
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cronspine import __version__
from cronspine.api.deps import Conn, Registry
from cronspine.core.timestamps import utc_now

router = APIRouter(tags=["health"])

_START_TIME = time.monotonic()


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    service: str = "cronspine"
    version: str = __version__
    uptime_s: float
    timestamp: str
    jobs: list[str] = Field(default_factory=list)
    checks: dict[str, Any] = Field(default_factory=dict)


@router.get("/health", response_model=HealthResponse)
def health(conn: Conn, registry: Registry) -> JSONResponse:
    """Database reachability plus the registered jobs."""
    try:
        conn.execute("SELECT 1").fetchone()
        checks: dict[str, Any] = {"database": {"status": "ok"}}
        status = "healthy"
    except Exception as e:
        checks = {"database": {"status": "error", "error": str(e)}}
        status = "unhealthy"

    body = HealthResponse(
        status=status,
        uptime_s=round(time.monotonic() - _START_TIME, 1),
        timestamp=utc_now().isoformat(),
        jobs=registry.names(),
        checks=checks,
    )
    return JSONResponse(content=body.model_dump(), status_code=200 if status == "healthy" else 503)
