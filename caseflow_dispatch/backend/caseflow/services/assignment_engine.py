# backend/caseflow/services/assignment_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from ..clients.notifier import Notifier, get_notifier, safe_notify
from ..domain import events as ev
from ..domain.assignment_rules import AssignmentDecision, build_context, decide
from ..domain.lifecycle import NEW
from ..domain.policy import Policy
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import MaintenanceCase, Vendor
from ..repositories import CaseRepo, EventLog, storage_errors
from .policy_store import PolicyStore
from .roster import ContractorRoster
from .runtime_metrics import METRICS

log = logging.getLogger("caseflow.assignment")


@dataclass(frozen=True)
class Notification:
    contractor_id: Optional[str]
    message: str


@dataclass
class AssignmentResult:
    case: MaintenanceCase
    new_status: str
    auto_confirmed: bool
    flow_path: str
    reasons: list[str] = field(default_factory=list)
    notification: Optional[Notification] = None


def _event_description(vendor: Vendor, policy: Policy, decision: AssignmentDecision) -> str:
    if decision.auto_confirm:
        return (
            f"Job auto-confirmed and assigned to {vendor.name} "
            f"({policy.involvement_mode} mode, {'; '.join(decision.reasons[1:])})"
        )
    return f"Contractor {vendor.name} assigned by landlord ({policy.involvement_mode} mode)"


def _notification_text(case: MaintenanceCase, auto_confirmed: bool) -> str:
    if auto_confirmed:
        return f"You have a confirmed job: {case.title}. Schedule and start when ready."
    return f"You've been assigned to case: {case.title}. Please review and provide your quote."


class AssignmentEngine:
    """
    Landlord-driven contractor assignment with policy-based auto-confirm.

    Collaborators are injected; routers build one per request.
    """

    def __init__(
        self,
        db: Session,
        *,
        cases: Optional[CaseRepo] = None,
        events: Optional[EventLog] = None,
        policies: Optional[PolicyStore] = None,
        roster: Optional[ContractorRoster] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.db = db
        self.cases = cases or CaseRepo(db)
        self.events = events or EventLog(db)
        self.policies = policies or PolicyStore(db)
        self.roster = roster or ContractorRoster(db)
        self.notifier = notifier or get_notifier()

    def assign(
        self,
        org_id: str,
        case_id: str,
        contractor_id: Optional[str],
        *,
        actor_user_id: Optional[str] = None,
        note: Optional[str] = None,
        notify: bool = True,
    ) -> AssignmentResult:
        """
        Assign a contractor to a New, unassigned case.

        The case update and its event(s) commit together. The write is
        conditional on (status='New', no contractor, version unchanged); if
        another request got there first nothing is written and ConflictError
        is raised. Notification happens after commit unless notify=False, in
        which case the caller delivers result.notification itself.
        """
        if not contractor_id or not str(contractor_id).strip():
            raise ValidationError("vendorId is required")

        case = self.cases.get_for_org(org_id, case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": case_id})

        if case.status != NEW or case.assigned_contractor_id:
            METRICS.inc("assign_conflicts")
            raise ConflictError(
                "case is already assigned",
                meta={"case_id": case.id, "status": case.status},
            )

        policy = self.policies.get_active_policy(org_id)

        vendor = self.roster.resolve_vendor(org_id, str(contractor_id))
        if vendor is None:
            self.db.rollback()
            raise NotFoundError("vendor not found in this organization", meta={"contractor_id": contractor_id})

        assignee_id = str(vendor.user_id or vendor.id)
        is_favorite = self.policies.is_favorite(org_id, vendor.user_id)
        is_trusted = policy.trusts(vendor.id, vendor.user_id, contractor_id) or is_favorite

        ctx = build_context(
            policy=policy,
            is_trusted=is_trusted,
            estimated_cost=case.estimated_cost,
            triage=case.ai_triage_json,
            priority=case.priority,
            is_urgent=case.is_urgent,
        )
        decision = decide(ctx)

        ok = self.cases.compare_and_set(
            case,
            expected_status=NEW,
            values={"status": decision.new_status, "assigned_contractor_id": assignee_id},
            require_unassigned=True,
        )
        if not ok:
            self.db.rollback()
            METRICS.inc("assign_conflicts")
            log.info("assignment lost race", extra={"org_id": org_id, "case_id": case_id})
            raise ConflictError("case is already assigned", meta={"case_id": case_id})

        self.events.append(
            org_id=org_id,
            case_id=case.id,
            event_type=ev.JOB_AUTO_CONFIRMED if decision.auto_confirm else ev.CONTRACTOR_ASSIGNED,
            description=_event_description(vendor, policy, decision),
            actor_user_id=actor_user_id,
            metadata={
                "contractorId": assignee_id,
                "vendorId": vendor.id,
                "involvementMode": policy.involvement_mode,
                "isTrusted": ctx.is_trusted,
                "isUnderThreshold": ctx.is_under_threshold,
                "isEmergency": ctx.is_emergency,
                "autoApproveEmergencies": ctx.auto_approve_emergencies,
                "effectiveCost": ctx.effective_cost,
                "costLimit": ctx.cost_limit,
                "flowPath": decision.flow_path,
                "reasons": decision.reasons,
            },
        )
        if note and note.strip():
            self.events.append(
                org_id=org_id,
                case_id=case.id,
                event_type=ev.LANDLORD_NOTE,
                description=note.strip(),
                actor_user_id=actor_user_id,
                metadata={"userId": actor_user_id},
            )

        with storage_errors("assignment commit"):
            self.db.commit()

        METRICS.inc("assignments_auto_confirmed" if decision.auto_confirm else "assignments_manual")
        log.info(
            "contractor assigned",
            extra={
                "org_id": org_id,
                "case_id": case.id,
                "contractor_id": assignee_id,
                "flow_path": decision.flow_path,
            },
        )

        notification = None
        if vendor.user_id:
            notification = Notification(str(vendor.user_id), _notification_text(case, decision.auto_confirm))

        result = AssignmentResult(
            case=case,
            new_status=decision.new_status,
            auto_confirmed=decision.auto_confirm,
            flow_path=decision.flow_path,
            reasons=list(decision.reasons),
            notification=notification,
        )
        if notify and notification is not None:
            safe_notify(self.notifier, notification.contractor_id, notification.message)
        return result
