# backend/caseflow/middleware/request_id.py
from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id, echoes it back in X-Request-ID and keeps it
    in a ContextVar so log lines and case events written during the request can
    be correlated.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # header lookup is case-insensitive in starlette
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid.uuid4().hex

        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            resp = await call_next(request)
            resp.headers[REQUEST_ID_HEADER] = rid
            return resp
        finally:
            request_id_ctx.reset(token)
