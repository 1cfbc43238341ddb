# backend/caseflow/routers/cases.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ..auth import ROLE_CONTRACTOR, ROLE_ORG_ADMIN, Principal, get_principal, require_org_admin
from ..clients.notifier import Notifier, get_notifier, safe_notify
from ..db import get_db
from ..domain.lifecycle import normalize_status
from ..errors import AuthorizationError, ValidationError
from ..schemas import (
    AssignIn,
    AssignOut,
    CaseEventOut,
    CaseOut,
    CaseQuotesOut,
    HoldIn,
    NoteIn,
    PriorityIn,
    QuoteOut,
    TransitionIn,
)
from ..services.assignment_engine import AssignmentEngine
from ..services.lifecycle_service import CaseLifecycle
from ..services.negotiation import QuoteNegotiation

router = APIRouter(prefix="/cases", tags=["cases"])


@router.get("", response_model=list[CaseOut])
def list_cases(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
):
    return CaseLifecycle(db).list_cases(p.org_id, status=status, limit=limit)


@router.get("/{case_id}", response_model=CaseOut)
def get_case(case_id: str, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    lifecycle = CaseLifecycle(db)
    if p.role == ROLE_ORG_ADMIN:
        return lifecycle.get_case(p.org_id, case_id)
    if p.role == ROLE_CONTRACTOR:
        return lifecycle.get_assigned_case(p.org_id, case_id, p.user_id)
    raise AuthorizationError("insufficient role", meta={"role": p.role})


@router.get("/{case_id}/quotes", response_model=CaseQuotesOut)
def list_case_quotes(
    case_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
):
    case, quotes = QuoteNegotiation(db, notifier=notifier).list_case_quotes(p.org_id, case_id)
    return CaseQuotesOut(
        case_id=case.id,
        case_title=case.title,
        case_status=case.status,
        quotes=[QuoteOut.from_quote(q) for q in quotes],
    )


@router.post("/{case_id}/assign", response_model=AssignOut)
def assign_contractor(
    case_id: str,
    payload: AssignIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
):
    if not payload.target_id:
        raise ValidationError("vendorId is required")

    engine = AssignmentEngine(db, notifier=notifier)
    result = engine.assign(
        p.org_id,
        case_id,
        payload.target_id,
        actor_user_id=p.user_id,
        note=payload.note,
        notify=False,
    )
    # delivered after the response, outside the committed transaction
    if result.notification is not None:
        background.add_task(
            safe_notify, notifier, result.notification.contractor_id, result.notification.message
        )

    out = CaseOut.model_validate(result.case).model_dump()
    return AssignOut(
        **out,
        auto_confirmed=result.auto_confirmed,
        flow_path=result.flow_path,
        reasons=result.reasons,
    )


@router.post("/{case_id}/priority", response_model=CaseOut)
def set_priority(
    case_id: str,
    payload: PriorityIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
):
    return CaseLifecycle(db).set_priority(p.org_id, case_id, payload.priority, actor_user_id=p.user_id)


@router.post("/{case_id}/close", response_model=CaseOut)
def close_case(case_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_org_admin)):
    return CaseLifecycle(db).close_case(p.org_id, case_id, actor_user_id=p.user_id)


@router.post("/{case_id}/transition", response_model=CaseOut)
def transition_case(
    case_id: str,
    payload: TransitionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
):
    target = normalize_status(payload.status)
    return CaseLifecycle(db).transition(p.org_id, case_id, target, actor_user_id=p.user_id, reason=payload.reason)


@router.post("/{case_id}/hold", response_model=CaseOut)
def hold_case(
    case_id: str,
    payload: HoldIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
):
    return CaseLifecycle(db).hold(p.org_id, case_id, actor_user_id=p.user_id, reason=payload.reason)


@router.post("/{case_id}/resume", response_model=CaseOut)
def resume_case(case_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_org_admin)):
    return CaseLifecycle(db).resume(p.org_id, case_id, actor_user_id=p.user_id)


@router.post("/{case_id}/note", response_model=CaseEventOut)
def add_note(
    case_id: str,
    payload: NoteIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
):
    return CaseLifecycle(db).add_note(
        p.org_id, case_id, payload.note, actor_user_id=p.user_id, actor_name=p.name
    )


@router.get("/{case_id}/events", response_model=list[CaseEventOut])
def list_events(case_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_org_admin)):
    return CaseLifecycle(db).list_events(p.org_id, case_id)
