# events.py - case event taxonomy and the append-only emitter every dispatch/negotiation decision goes through.
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import CaseEvent

CONTRACTOR_ASSIGNED = "contractor_assigned"
JOB_AUTO_CONFIRMED = "job_auto_confirmed"
LANDLORD_NOTE = "landlord_note"
STATUS_CHANGED = "status_changed"
PRIORITY_CHANGED = "priority_changed"
QUOTE_SUBMITTED = "quote_submitted"
QUOTE_ACCEPTED = "quote_accepted"
QUOTE_DECLINED = "quote_declined"
QUOTE_WITHDRAWN = "quote_withdrawn"
QUOTE_EXPIRED = "quote_expired"
COUNTER_PROPOSED = "counter_proposed"
COUNTER_RESOLVED = "counter_resolved"
CONTRACTOR_NUDGED = "contractor_nudged"

EVENT_TYPES = frozenset(
    {
        CONTRACTOR_ASSIGNED,
        JOB_AUTO_CONFIRMED,
        LANDLORD_NOTE,
        STATUS_CHANGED,
        PRIORITY_CHANGED,
        QUOTE_SUBMITTED,
        QUOTE_ACCEPTED,
        QUOTE_DECLINED,
        QUOTE_WITHDRAWN,
        QUOTE_EXPIRED,
        COUNTER_PROPOSED,
        COUNTER_RESOLVED,
        CONTRACTOR_NUDGED,
    }
)


def emit_case_event(
    db: Session,
    *,
    org_id: str,
    case_id: str,
    event_type: str,
    description: str,
    actor_user_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> CaseEvent:
    """
    Append a CaseEvent.

    NOTE:
    - Does NOT commit. Adds + flushes only, so the event lands in the same
      transaction as the state change it describes.
    - Rows are never updated or deleted afterwards.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"unknown case event type {event_type!r}")

    ev = CaseEvent(
        org_id=str(org_id),
        case_id=str(case_id),
        actor_user_id=str(actor_user_id) if actor_user_id is not None else None,
        type=event_type,
        description=str(description),
        metadata_json=json.dumps(metadata or {}, ensure_ascii=False, default=str),
        created_at=datetime.utcnow(),
    )
    db.add(ev)
    db.flush()
    return ev


def event_metadata(ev: CaseEvent) -> dict[str, Any]:
    if not ev.metadata_json:
        return {}
    try:
        v = json.loads(ev.metadata_json)
    except (TypeError, ValueError):
        return {}
    return v if isinstance(v, dict) else {}
