# backend/caseflow/clients/notifier.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..errors import ExternalServiceError
from ..services.runtime_metrics import METRICS

log = logging.getLogger("caseflow.notifier")


class Notifier:
    """Fire-and-forget contractor notification. Implementations may raise ExternalServiceError."""

    def notify(self, contractor_id: str, message: str) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default when no webhook is configured: the message only goes to the log."""

    def notify(self, contractor_id: str, message: str) -> None:
        log.info("notify", extra={"contractor_id": contractor_id, "notification": message})


class WebhookNotifier(Notifier):
    def __init__(self, url: str, *, timeout: Optional[float] = None) -> None:
        self.url = url
        self.timeout = float(timeout if timeout is not None else settings.notifier_timeout_seconds)

    def notify(self, contractor_id: str, message: str) -> None:
        payload: dict[str, Any] = {"contractorId": contractor_id, "message": message}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(self.url, json=payload)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"notification webhook failed: {e.__class__.__name__}",
                meta={"contractor_id": contractor_id},
            ) from e


def get_notifier() -> Notifier:
    if settings.notifier_webhook_url:
        return WebhookNotifier(settings.notifier_webhook_url)
    return LoggingNotifier()


def safe_notify(notifier: Notifier, contractor_id: Optional[str], message: str) -> bool:
    """
    Delivery failures never propagate: they are logged and counted.
    Runs after the owning transaction has committed.
    """
    if not contractor_id:
        return False
    try:
        notifier.notify(str(contractor_id), message)
    except ExternalServiceError as e:
        METRICS.inc("notifications_failed")
        log.warning(
            "notification failed",
            extra={"contractor_id": contractor_id, "error_kind": e.kind},
        )
        return False
    except Exception as e:
        # injected notifiers may raise anything; the owning write is already committed
        METRICS.inc("notifications_failed")
        log.warning(
            "notification failed: %s",
            e.__class__.__name__,
            extra={"contractor_id": contractor_id, "error_kind": "unexpected"},
            exc_info=True,
        )
        return False
    METRICS.inc("notifications_sent")
    return True
