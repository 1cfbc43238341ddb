# backend/caseflow/services/nudges.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..clients.notifier import Notifier, get_notifier, safe_notify
from ..config import settings
from ..domain import events as ev
from ..domain.events import event_metadata
from ..repositories import EventLog, QuoteRepo, storage_errors

log = logging.getLogger("caseflow.nudges")


@dataclass(frozen=True)
class NudgeReport:
    checked: int
    nudged: int
    delivered: int


def nudge_unconfirmed_jobs(
    db: Session,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
    hours: Optional[int] = None,
) -> NudgeReport:
    """
    Approved quotes whose case is still In Review after `hours` get one
    reminder per quote. The reminder is recorded as a contractor_nudged event
    and committed before delivery is attempted.
    """
    notifier = notifier or get_notifier()
    now = now or datetime.utcnow()
    window = int(hours if hours is not None else settings.unconfirmed_nudge_hours)
    cutoff = now - timedelta(hours=window)

    quotes = QuoteRepo(db)
    events = EventLog(db)

    pending: list[tuple[str, str]] = []
    rows = quotes.approved_awaiting_confirmation(cutoff)
    for q, case in rows:
        already = any(
            e.type == ev.CONTRACTOR_NUDGED and event_metadata(e).get("quoteId") == q.id
            for e in events.list_for_case(case.id)
        )
        if already:
            continue

        message = (
            f'"{case.title}" has been waiting for your confirmation for over {window} hours. '
            "Please confirm or update the homeowner."
        )
        events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.CONTRACTOR_NUDGED,
            description="Contractor reminded to confirm the job",
            metadata={"quoteId": q.id, "contractorId": q.contractor_id, "approvedAt": q.approved_at},
        )
        pending.append((str(q.contractor_id), message))

    with storage_errors("nudge commit"):
        db.commit()

    delivered = sum(1 for contractor_id, message in pending if safe_notify(notifier, contractor_id, message))
    if pending:
        log.info("sent %d contractor nudge(s)", len(pending))
    return NudgeReport(checked=len(rows), nudged=len(pending), delivered=delivered)
