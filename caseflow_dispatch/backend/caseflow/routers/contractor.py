# backend/caseflow/routers/contractor.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, require_contractor
from ..clients.notifier import Notifier, get_notifier
from ..db import get_db
from ..domain import quote_states as qs
from ..errors import ValidationError
from ..schemas import (
    AcceptCaseIn,
    CaseOut,
    CompleteJobIn,
    ConfirmJobIn,
    CounterProposalOut,
    CounterResponseIn,
    LineItemIn,
    LineItemOut,
    LineItemPatchIn,
    QuoteOut,
    QuoteSubmitIn,
    QuoteUpdateIn,
    SuccessOut,
)
from ..services import negotiation
from ..services.lifecycle_service import CaseLifecycle
from ..services.negotiation import QuoteNegotiation

router = APIRouter(prefix="/contractor", tags=["contractor"])


def _quote_body(result: negotiation.NegotiationResult) -> dict[str, Any]:
    return _quote_dict(result.quote)


def _quote_dict(q: Any) -> dict[str, Any]:
    return QuoteOut.from_quote(q).model_dump(by_alias=True, mode="json")


def _line_items(items: list[LineItemIn]) -> list[negotiation.LineItemIn]:
    return [
        negotiation.LineItemIn(name=li.name, quantity=li.quantity, unit_price=li.unit_price, description=li.description)
        for li in items
    ]


# ---------------- jobs ----------------

@router.get("/assigned-cases", response_model=list[CaseOut])
def assigned_cases(db: Session = Depends(get_db), p: Principal = Depends(require_contractor)):
    return CaseLifecycle(db).assigned_cases(p.org_id, p.user_id)


@router.post("/cases/{case_id}/confirm-job", response_model=CaseOut)
def confirm_job(
    case_id: str,
    payload: ConfirmJobIn | None = None,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
):
    payload = payload or ConfirmJobIn()
    return CaseLifecycle(db).confirm_job(
        p.org_id,
        case_id,
        p.user_id,
        start_date=payload.confirmed_start_date,
        estimated_days=payload.estimated_days,
        notes=payload.notes,
    )


@router.post("/cases/{case_id}/start-job", response_model=CaseOut)
def start_job(case_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_contractor)):
    return CaseLifecycle(db).start_job(p.org_id, case_id, p.user_id)


@router.post("/cases/{case_id}/complete-job", response_model=CaseOut)
def complete_job(
    case_id: str,
    payload: CompleteJobIn | None = None,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
):
    notes = payload.completion_notes if payload else None
    return CaseLifecycle(db).complete_job(p.org_id, case_id, p.user_id, completion_notes=notes)


# ---------------- quotes ----------------

@router.get("/quotes")
def my_quotes(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for q in QuoteNegotiation(db, notifier=notifier).contractor_quotes(p.org_id, p.user_id):
        body = _quote_dict(q)
        body["caseTitle"] = q.case.title if q.case else None
        body["caseStatus"] = q.case.status if q.case else None
        out.append(body)
    return out


@router.get("/quotes/{quote_id}")
def my_quote(
    quote_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _quote_dict(QuoteNegotiation(db, notifier=notifier).contractor_quote(p.org_id, p.user_id, quote_id))


@router.post("/accept-case")
def accept_case(
    payload: AcceptCaseIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    if not payload.case_id:
        raise ValidationError("caseId is required")
    result = QuoteNegotiation(db, notifier=notifier).accept_case(
        p.org_id,
        p.user_id,
        payload.case_id,
        quoted_price=payload.quoted_price,
        price_tbd=payload.price_tbd,
        available_start_date=payload.available_start_date,
        available_end_date=payload.available_end_date,
        estimated_days=payload.estimated_days,
    )
    return {"success": True, "caseStatus": result.case.status, "quote": _quote_body(result)}


@router.post("/quotes")
def submit_quote(
    payload: QuoteSubmitIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    result = QuoteNegotiation(db, notifier=notifier).submit_quote(
        p.org_id,
        p.user_id,
        payload.case_id,
        title=payload.title,
        line_items=_line_items(payload.line_items),
        tax_amount=payload.tax_amount,
        total=payload.total,
        price_tbd=payload.price_tbd,
        scope_of_work=payload.scope_of_work,
        available_start_date=payload.available_start_date,
        available_end_date=payload.available_end_date,
        estimated_days=payload.estimated_days,
        expires_in_days=payload.expires_in_days,
        send=payload.send,
    )
    return _quote_body(result)


@router.post("/quotes/{quote_id}/send")
def send_quote(
    quote_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _quote_body(QuoteNegotiation(db, notifier=notifier).send_quote(p.org_id, p.user_id, quote_id))


@router.post("/quotes/{quote_id}/withdraw")
def withdraw_quote(
    quote_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _quote_body(QuoteNegotiation(db, notifier=notifier).withdraw_quote(p.org_id, p.user_id, quote_id))


# ---------------- draft editing ----------------

@router.patch("/quotes/{quote_id}")
def update_draft(
    quote_id: str,
    payload: QuoteUpdateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    result = QuoteNegotiation(db, notifier=notifier).update_draft(
        p.org_id,
        p.user_id,
        quote_id,
        title=payload.title,
        scope_of_work=payload.scope_of_work,
        tax_amount=payload.tax_amount,
        total=payload.total,
        price_tbd=payload.price_tbd,
        available_start_date=payload.available_start_date,
        available_end_date=payload.available_end_date,
        estimated_days=payload.estimated_days,
        line_items=_line_items(payload.line_items) if payload.line_items is not None else None,
    )
    return _quote_body(result)


@router.post("/quotes/{quote_id}/line-items", response_model=LineItemOut)
def add_line_item(
    quote_id: str,
    payload: LineItemIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
):
    (item,) = _line_items([payload])
    return QuoteNegotiation(db, notifier=notifier).add_line_item(p.org_id, p.user_id, quote_id, item)


@router.patch("/quotes/{quote_id}/line-items/{item_id}", response_model=LineItemOut)
def update_line_item(
    quote_id: str,
    item_id: int,
    payload: LineItemPatchIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
):
    return QuoteNegotiation(db, notifier=notifier).update_line_item(
        p.org_id,
        p.user_id,
        quote_id,
        item_id,
        name=payload.name,
        description=payload.description,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
    )


@router.delete("/quotes/{quote_id}/line-items/{item_id}", response_model=SuccessOut)
def delete_line_item(
    quote_id: str,
    item_id: int,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
):
    QuoteNegotiation(db, notifier=notifier).delete_line_item(p.org_id, p.user_id, quote_id, item_id)
    return SuccessOut(message="Line item removed")


# ---------------- counter-proposals ----------------

@router.get("/counter-proposals/pending")
def pending_counters(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for q in QuoteNegotiation(db, notifier=notifier).counters_awaiting(p.org_id, p.user_id):
        body = _quote_dict(q)
        body["caseTitle"] = q.case.title if q.case else None
        body["pendingCounterProposals"] = [
            CounterProposalOut.model_validate(cp).model_dump(by_alias=True, mode="json")
            for cp in q.counter_proposals
            if cp.status == qs.COUNTER_PENDING
        ]
        out.append(body)
    return out


def _respond(
    action: str,
    counter_id: str,
    payload: CounterResponseIn | None,
    db: Session,
    p: Principal,
    notifier: Notifier,
) -> dict[str, Any]:
    payload = payload or CounterResponseIn()
    result = QuoteNegotiation(db, notifier=notifier).respond_to_counter(
        p.org_id,
        p.user_id,
        counter_id,
        action,
        reason=payload.reason,
        proposed_total=payload.proposed_total,
        proposed_start_date=payload.proposed_start_date,
        proposed_end_date=payload.proposed_end_date,
        message=payload.message,
    )
    cp = result.counter_proposal
    return {
        "success": True,
        "quoteStatus": result.quote.status,
        "counterProposal": CounterProposalOut.model_validate(cp).model_dump(by_alias=True, mode="json")
        if cp is not None
        else None,
    }


@router.post("/counter-proposals/{counter_id}/accept")
def accept_counter(
    counter_id: str,
    payload: CounterResponseIn | None = None,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _respond("accept", counter_id, payload, db, p, notifier)


@router.post("/counter-proposals/{counter_id}/decline")
def decline_counter(
    counter_id: str,
    payload: CounterResponseIn | None = None,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _respond("decline", counter_id, payload, db, p, notifier)


@router.post("/counter-proposals/{counter_id}/counter")
def counter_counter(
    counter_id: str,
    payload: CounterResponseIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_contractor),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    return _respond("counter", counter_id, payload, db, p, notifier)
