# backend/caseflow/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    org_id: str,
    actor_user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Admin-side audit trail (policy edits, favorites).

    Does NOT commit: the caller bundles it with the change it records.
    """
    row = AuditEvent(
        org_id=str(org_id),
        actor_user_id=str(actor_user_id) if actor_user_id is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row
