# backend/caseflow/logging_config.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import settings
from .middleware.request_id import get_request_id

# record attributes copied into the JSON line when a caller passes them via extra=
STRUCTURED_FIELDS = (
    "org_id",
    "org_slug",
    "user_id",
    "user_email",
    "case_id",
    "quote_id",
    "contractor_id",
    "flow_path",
    "notification",
    "error_kind",
    "path",
    "method",
    "status_code",
    "latency_ms",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the current request id."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        for k in STRUCTURED_FIELDS:
            v = getattr(record, k, None)
            if v is not None:
                payload[k] = v

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload calls this again; never stack handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel((settings.sql_log_level or "WARNING").upper())
