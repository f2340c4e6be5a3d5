"""
Cron-secret authentication middleware.

Schedulers authenticate with the shared ``CRONSPINE_CRON_SECRET``, sent
either as ``Authorization: Bearer <secret>`` or as ``X-Cron-Secret``.
Requests without a matching secret receive a 401 JSON response.

With no secret configured every trigger is refused, except in a
development environment where the endpoints are open.

Bypass paths (no auth required):
  - ``/health``
  - ``/docs``, ``/redoc``, ``/openapi.json``
"""

from __future__ import annotations

import hmac
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from cronspine.core.errors import AuthenticationError
from cronspine.core.logging import get_logger

logger = get_logger(__name__)

_BYPASS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^/health"),
    re.compile(r"/docs$"),
    re.compile(r"/redoc$"),
    re.compile(r"/openapi\.json$"),
]


def _is_bypass(path: str) -> bool:
    return any(p.search(path) for p in _BYPASS_PATTERNS)


def presented_secret(request: Request) -> str | None:
    """Secret carried by the request, Bearer header first."""
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.headers.get("X-Cron-Secret")


def _unauthorized(request: Request, error: AuthenticationError) -> JSONResponse:
    logger.warning("auth.rejected", path=request.url.path, **error.to_dict())
    return JSONResponse(
        status_code=401,
        content={"title": "Unauthorized", "status": 401, "detail": error.message},
    )


class CronSecretMiddleware(BaseHTTPMiddleware):
    """Reject triggers that lack the shared cron secret.

    Parameters
    ----------
    app:
        The ASGI application to wrap.
    secret:
        Expected secret. ``None`` refuses everything unless
        ``allow_without_secret`` is set.
    allow_without_secret:
        Open the endpoints when no secret is configured (development).
    """

    def __init__(
        self,
        app: object,
        secret: str | None = None,
        *,
        allow_without_secret: bool = False,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._secret = secret
        self._allow_without_secret = allow_without_secret

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if _is_bypass(request.url.path):
            return await call_next(request)

        if self._secret is None:
            if self._allow_without_secret:
                return await call_next(request)
            return _unauthorized(
                request, AuthenticationError("Cron secret is not configured on this server.")
            )

        provided = presented_secret(request)
        if provided is None or not hmac.compare_digest(provided, self._secret):
            return _unauthorized(
                request,
                AuthenticationError(
                    "Missing or invalid cron secret. Provide Authorization: Bearer <secret> "
                    "or X-Cron-Secret."
                ),
            )

        return await call_next(request)
