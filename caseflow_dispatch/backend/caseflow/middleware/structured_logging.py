# backend/caseflow/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("caseflow.request")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log: one line per request carrying the caller's org and user headers.

    Runs inside RequestIDMiddleware, so the formatter picks up the request id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            log.info(
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "latency_ms": int((time.perf_counter() - started) * 1000),
                    "org_slug": request.headers.get(settings.dev_header_org_slug),
                    "user_email": request.headers.get(settings.dev_header_user_email),
                },
            )
