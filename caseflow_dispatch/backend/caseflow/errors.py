# backend/caseflow/errors.py
from __future__ import annotations

from typing import Any, Optional


class DispatchError(Exception):
    """
    Base for every business-rule failure raised by the dispatch core.

    `kind` is the stable machine-readable identifier returned to callers,
    `status_code` is what the HTTP layer maps it to.
    """

    kind = "dispatch_error"
    status_code = 500

    def __init__(self, message: str, *, meta: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.meta = dict(meta or {})

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.meta:
            out["meta"] = self.meta
        return out


class AuthorizationError(DispatchError):
    kind = "authorization_error"
    status_code = 403


class NotFoundError(DispatchError):
    kind = "not_found"
    status_code = 404


class ValidationError(DispatchError):
    kind = "validation_error"
    status_code = 400


class ConflictError(DispatchError):
    kind = "conflict"
    status_code = 409


class InvalidTransitionError(DispatchError):
    kind = "invalid_transition"
    status_code = 409


class StorageError(DispatchError):
    kind = "storage_error"
    status_code = 500


class ExternalServiceError(DispatchError):
    kind = "external_service_error"
    status_code = 502
