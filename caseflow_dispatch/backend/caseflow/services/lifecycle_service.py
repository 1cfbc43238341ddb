# backend/caseflow/services/lifecycle_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..domain import events as ev
from ..domain.lifecycle import (
    IN_PROGRESS,
    IN_REVIEW,
    ON_HOLD,
    RESOLVED,
    SCHEDULED,
    ensure_transition,
    normalize_status,
)
from ..errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from ..models import CaseEvent, MaintenanceCase
from ..repositories import CaseRepo, EventLog, storage_errors

log = logging.getLogger("caseflow.lifecycle")

PRIORITIES = ("Normal", "High", "Urgent")


class CaseLifecycle:
    """
    Every case status change goes through here (assignment and quote
    acceptance excepted, they carry their own conditional writes).
    """

    def __init__(self, db: Session, *, cases: Optional[CaseRepo] = None, events: Optional[EventLog] = None) -> None:
        self.db = db
        self.cases = cases or CaseRepo(db)
        self.events = events or EventLog(db)

    # ---------------- reads ----------------
    def get_case(self, org_id: str, case_id: str) -> MaintenanceCase:
        case = self.cases.get_for_org(org_id, case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": case_id})
        return case

    def list_cases(self, org_id: str, *, status: Optional[str] = None, limit: int = 50) -> list[MaintenanceCase]:
        if limit < 1 or limit > 200:
            raise ValidationError("limit must be between 1 and 200")
        return self.cases.list_for_org(org_id, status=normalize_status(status) if status else None, limit=limit)

    def list_events(self, org_id: str, case_id: str) -> list[CaseEvent]:
        case = self.get_case(org_id, case_id)
        return self.events.list_for_case(case.id)

    def assigned_cases(self, org_id: str, contractor_user_id: str) -> list[MaintenanceCase]:
        return self.cases.list_assigned_to(org_id, contractor_user_id)

    def get_assigned_case(self, org_id: str, case_id: str, contractor_user_id: str) -> MaintenanceCase:
        case = self.cases.get_for_org(org_id, case_id)
        if case is None or str(case.assigned_contractor_id or "") != str(contractor_user_id):
            raise NotFoundError("case not found or not assigned to you", meta={"case_id": case_id})
        return case

    # ---------------- core write ----------------
    def _move(
        self,
        case: MaintenanceCase,
        target: str,
        *,
        actor_user_id: Optional[str],
        description: str,
        values: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        allow_same: bool = False,
    ) -> MaintenanceCase:
        current = case.status
        if not (allow_same and current == target):
            ensure_transition(current, target)

        payload = dict(values or {})
        payload["status"] = target
        if not self.cases.compare_and_set(case, expected_status=current, values=payload):
            self.db.rollback()
            raise ConflictError(
                "case was modified concurrently; re-read and retry",
                meta={"case_id": case.id, "status": current},
            )

        meta = {"from": current, "to": target}
        meta.update(metadata or {})
        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.STATUS_CHANGED,
            description=description,
            actor_user_id=actor_user_id,
            metadata=meta,
        )
        with storage_errors("status commit"):
            self.db.commit()

        log.info(
            "case status changed",
            extra={"org_id": case.org_id, "case_id": case.id, "user_id": actor_user_id},
        )
        return case

    # ---------------- landlord / admin ----------------
    def transition(
        self,
        org_id: str,
        case_id: str,
        target: str,
        *,
        actor_user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> MaintenanceCase:
        case = self.get_case(org_id, case_id)
        desc = f"Status changed from {case.status} to {target}"
        if reason:
            desc = f"{desc}: {reason}"
        return self._move(
            case,
            target,
            actor_user_id=actor_user_id,
            description=desc,
            metadata={"reason": reason} if reason else None,
        )

    def close_case(self, org_id: str, case_id: str, *, actor_user_id: Optional[str] = None) -> MaintenanceCase:
        case = self.get_case(org_id, case_id)
        return self._move(case, RESOLVED, actor_user_id=actor_user_id, description="Case closed by landlord")

    def hold(
        self, org_id: str, case_id: str, *, actor_user_id: Optional[str] = None, reason: Optional[str] = None
    ) -> MaintenanceCase:
        case = self.get_case(org_id, case_id)
        desc = "Job put on hold" + (f": {reason}" if reason else "")
        return self._move(case, ON_HOLD, actor_user_id=actor_user_id, description=desc)

    def resume(
        self, org_id: str, case_id: str, *, actor_user_id: Optional[str] = None, target: str = IN_PROGRESS
    ) -> MaintenanceCase:
        case = self.get_case(org_id, case_id)
        if case.status != ON_HOLD:
            raise InvalidTransitionError(
                "only a job on hold can be resumed",
                meta={"case_id": case.id, "from": case.status, "to": target},
            )
        return self._move(case, target, actor_user_id=actor_user_id, description=f"Job resumed ({target})")

    def set_priority(
        self, org_id: str, case_id: str, priority: Optional[str], *, actor_user_id: Optional[str] = None
    ) -> MaintenanceCase:
        if priority not in PRIORITIES:
            raise ValidationError("Invalid priority. Must be Normal, High, or Urgent")

        case = self.get_case(org_id, case_id)
        previous = case.priority
        if previous == priority:
            return case

        ok = self.cases.compare_and_set(
            case,
            expected_status=case.status,
            values={"priority": priority, "is_urgent": priority == "Urgent"},
        )
        if not ok:
            self.db.rollback()
            raise ConflictError("case was modified concurrently; re-read and retry", meta={"case_id": case.id})

        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.PRIORITY_CHANGED,
            description=f"Priority changed from {previous} to {priority}",
            actor_user_id=actor_user_id,
            metadata={"from": previous, "to": priority},
        )
        with storage_errors("priority commit"):
            self.db.commit()
        return case

    def add_note(
        self,
        org_id: str,
        case_id: str,
        note: Optional[str],
        *,
        actor_user_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> CaseEvent:
        text = (note or "").strip()
        if not text:
            raise ValidationError("note is required")
        case = self.get_case(org_id, case_id)
        row = self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.LANDLORD_NOTE,
            description=text,
            actor_user_id=actor_user_id,
            metadata={"userId": actor_user_id, "userName": actor_name},
        )
        with storage_errors("note commit"):
            self.db.commit()
        return row

    # ---------------- contractor ----------------
    def confirm_job(
        self,
        org_id: str,
        case_id: str,
        contractor_user_id: str,
        *,
        start_date: Optional[datetime] = None,
        estimated_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> MaintenanceCase:
        """
        In Review -> Scheduled, or re-confirm a Scheduled job with new dates.
        End date is start + estimated_days when both are given.
        """
        case = self.get_assigned_case(org_id, case_id, contractor_user_id)
        if case.status not in (IN_REVIEW, SCHEDULED):
            raise InvalidTransitionError(
                "case is not awaiting confirmation or scheduling",
                meta={"case_id": case.id, "from": case.status, "to": SCHEDULED},
            )
        if estimated_days is not None and int(estimated_days) < 1:
            raise ValidationError("estimatedDays must be >= 1")

        end_date = None
        if start_date is not None and estimated_days:
            end_date = start_date + timedelta(days=int(estimated_days))

        desc = "Job confirmed by contractor"
        if start_date is not None:
            desc = f"{desc}, starting {start_date.date().isoformat()}"

        return self._move(
            case,
            SCHEDULED,
            actor_user_id=contractor_user_id,
            description=desc,
            values={"scheduled_start_at": start_date, "scheduled_end_at": end_date},
            metadata={"estimatedDays": estimated_days, "notes": notes},
            allow_same=True,
        )

    def start_job(self, org_id: str, case_id: str, contractor_user_id: str) -> MaintenanceCase:
        case = self.get_assigned_case(org_id, case_id, contractor_user_id)
        if case.status != SCHEDULED:
            raise InvalidTransitionError(
                "job must be scheduled before starting",
                meta={"case_id": case.id, "from": case.status, "to": IN_PROGRESS},
            )
        return self._move(case, IN_PROGRESS, actor_user_id=contractor_user_id, description="Contractor started work")

    def complete_job(
        self, org_id: str, case_id: str, contractor_user_id: str, *, completion_notes: Optional[str] = None
    ) -> MaintenanceCase:
        case = self.get_assigned_case(org_id, case_id, contractor_user_id)
        if case.status != IN_PROGRESS:
            raise InvalidTransitionError(
                "job must be in progress before completing",
                meta={"case_id": case.id, "from": case.status, "to": RESOLVED},
            )
        return self._move(
            case,
            RESOLVED,
            actor_user_id=contractor_user_id,
            description="Contractor marked the job as completed",
            metadata={"completionNotes": completion_notes} if completion_notes else None,
        )
