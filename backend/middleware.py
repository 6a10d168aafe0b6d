"""API key middleware for Agent Pulse.

Only submissions are guarded: when an API key is configured, every write
request must carry it in ``X-API-Key``. Reads, health checks and the stream
stay open for local viewers.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Reject writes without the configured key. A blank key disables the check."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        expected = getattr(request.app.state, "api_key", "") or ""
        if not expected or request.method not in WRITE_METHODS:
            return await call_next(request)

        supplied = request.headers.get("X-API-Key", "")
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            logger.info("Rejected %s %s: bad API key", request.method, request.url.path)
            return JSONResponse(
                status_code=401,
                content={
                    "error": "authentication_failed",
                    "message": "Unauthorized",
                    "status": 401,
                },
            )
        return await call_next(request)
