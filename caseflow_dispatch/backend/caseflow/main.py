# backend/caseflow/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import init_db
from .errors import DispatchError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.metrics import router as metrics_router
from .routers.audit import router as audit_router

from .routers.cases import router as cases_router
from .routers.quotes import router as quotes_router
from .routers.recommendations import router as recommendations_router
from .routers.policies import router as policies_router
from .routers.contractor import router as contractor_router

API_PREFIX = "/api"

log = logging.getLogger("caseflow.api")


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    yield


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    log.warning(
        exc.message,
        extra={"error_kind": exc.kind, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.as_dict()))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Caseflow Dispatch",
        version=getattr(settings, "engine_version", "dev"),
        lifespan=lifespan,
    )
    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # Last added runs outermost: request id is set before the access line is logged.
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Ops
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(metrics_router, prefix=API_PREFIX)
    app.include_router(audit_router, prefix=API_PREFIX)

    # Dispatch
    app.include_router(cases_router, prefix=API_PREFIX)
    app.include_router(quotes_router, prefix=API_PREFIX)
    app.include_router(recommendations_router, prefix=API_PREFIX)
    app.include_router(policies_router, prefix=API_PREFIX)
    app.include_router(contractor_router, prefix=API_PREFIX)
    return app


app = create_app()
