# backend/caseflow/routers/quotes.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, require_org_admin
from ..clients.notifier import Notifier, get_notifier
from ..db import get_db
from ..schemas import (
    CounterProposalIn,
    CounterProposalOut,
    DeclineIn,
    QuoteOut,
    SuccessOut,
)
from ..services.negotiation import QuoteNegotiation

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.get("/pending-responses")
def pending_responses(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> list[dict[str, Any]]:
    out = []
    for q in QuoteNegotiation(db, notifier=notifier).pending_responses(p.org_id):
        row = QuoteOut.from_quote(q).model_dump(by_alias=True, mode="json")
        row["caseTitle"] = q.case.title if q.case is not None else None
        out.append(row)
    return out


@router.post("/{quote_id}/accept", response_model=SuccessOut)
def accept_quote(
    quote_id: str,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
):
    svc = QuoteNegotiation(db, notifier=notifier)
    result = svc.accept(p.org_id, quote_id, actor_user_id=p.user_id)
    background.add_task(svc.deliver, result)
    return SuccessOut(message="Quote accepted")


@router.post("/{quote_id}/decline", response_model=SuccessOut)
def decline_quote(
    quote_id: str,
    background: BackgroundTasks,
    payload: DeclineIn | None = None,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
):
    svc = QuoteNegotiation(db, notifier=notifier)
    result = svc.decline(p.org_id, quote_id, reason=payload.reason if payload else None, actor_user_id=p.user_id)
    background.add_task(svc.deliver, result)
    return SuccessOut(message="Quote declined")


@router.post("/{quote_id}/counter")
def counter_propose(
    quote_id: str,
    payload: CounterProposalIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    svc = QuoteNegotiation(db, notifier=notifier)
    result = svc.counter_propose(
        p.org_id,
        quote_id,
        actor_user_id=p.user_id,
        proposed_total=payload.proposed_total,
        proposed_start_date=payload.proposed_start_date,
        proposed_end_date=payload.proposed_end_date,
        message=payload.message,
    )
    background.add_task(svc.deliver, result)
    return {
        "success": True,
        "counterProposal": CounterProposalOut.model_validate(result.counter_proposal).model_dump(
            by_alias=True, mode="json"
        ),
        "message": "Counter-proposal sent to contractor",
    }
