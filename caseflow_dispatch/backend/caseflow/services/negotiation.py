# backend/caseflow/services/negotiation.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..clients.notifier import Notifier, get_notifier, safe_notify
from ..config import settings
from ..domain import events as ev
from ..domain import quote_states as qs
from ..domain.lifecycle import IN_REVIEW, NEW, QUOTED, ensure_transition
from ..errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import MaintenanceCase, Quote, QuoteCounterProposal, QuoteLineItem
from ..repositories import CaseRepo, EventLog, QuoteRepo, storage_errors
from .runtime_metrics import METRICS

log = logging.getLogger("caseflow.negotiation")

# case statuses that still take new quotes
QUOTABLE_CASE_STATUSES = frozenset({NEW, IN_REVIEW, QUOTED})


@dataclass(frozen=True)
class LineItemIn:
    name: str
    quantity: float = 1.0
    unit_price: float = 0.0
    description: Optional[str] = None


@dataclass
class NegotiationResult:
    quote: Quote
    case: Optional[MaintenanceCase] = None
    counter_proposal: Optional[QuoteCounterProposal] = None
    notifications: list[tuple[str, str]] = field(default_factory=list)


def _money(v: Any) -> float:
    return round(float(v or 0.0), 2)


def _contractor_name(q: Quote) -> str:
    return q.contractor.display_name if q.contractor is not None else "Contractor"


class QuoteNegotiation:
    """
    Landlord side: accept / decline / counter.
    Contractor side: submit / send / withdraw / respond to counters / accept-case.

    Every multi-row change commits once or not at all. Status writes are
    conditional on the status that was read, so a concurrent writer turns
    into ConflictError instead of a lost update.
    """

    def __init__(
        self,
        db: Session,
        *,
        cases: Optional[CaseRepo] = None,
        quotes: Optional[QuoteRepo] = None,
        events: Optional[EventLog] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.db = db
        self.cases = cases or CaseRepo(db)
        self.quotes = quotes or QuoteRepo(db)
        self.events = events or EventLog(db)
        self.notifier = notifier or get_notifier()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _commit(self, what: str) -> None:
        with storage_errors(what):
            self.db.commit()

    def _conflict(self, message: str, **meta: Any) -> ConflictError:
        self.db.rollback()
        METRICS.inc("negotiation_conflicts")
        return ConflictError(message, meta=meta)

    def deliver(self, result: NegotiationResult) -> None:
        for contractor_id, message in result.notifications:
            safe_notify(self.notifier, contractor_id, message)

    def _quote_for_org(self, org_id: str, quote_id: str) -> tuple[Quote, MaintenanceCase]:
        q = self.quotes.get(quote_id)
        if q is None:
            raise NotFoundError("quote not found", meta={"quote_id": quote_id})
        case = self.cases.get(q.case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": q.case_id})
        if str(case.org_id) != str(org_id):
            raise AuthorizationError("access denied", meta={"quote_id": quote_id})
        return q, case

    def _own_quote(self, org_id: str, quote_id: str, contractor_user_id: str) -> tuple[Quote, MaintenanceCase]:
        q = self.quotes.get(quote_id)
        if q is None or str(q.contractor_id) != str(contractor_user_id):
            raise NotFoundError("quote not found", meta={"quote_id": quote_id})
        case = self.cases.get(q.case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": q.case_id})
        if str(case.org_id) != str(org_id):
            raise AuthorizationError("access denied", meta={"quote_id": quote_id})
        return q, case

    @staticmethod
    def _require_live(q: Quote) -> None:
        if q.archived_at is not None:
            raise InvalidTransitionError("quote is archived", meta={"quote_id": q.id})

    def _case_to_quoted(self, case: MaintenanceCase) -> None:
        if case.status == QUOTED:
            return
        ensure_transition(case.status, QUOTED)
        if not self.cases.compare_and_set(case, expected_status=case.status, values={"status": QUOTED}):
            raise self._conflict("case was modified concurrently; re-read and retry", case_id=case.id)

    # ------------------------------------------------------------------
    # landlord side
    # ------------------------------------------------------------------
    def list_case_quotes(self, org_id: str, case_id: str) -> tuple[MaintenanceCase, list[Quote]]:
        case = self.cases.get_for_org(org_id, case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": case_id})
        return case, self.quotes.list_for_case(case.id)

    def pending_responses(self, org_id: str) -> list[Quote]:
        return self.quotes.pending_responses(org_id)

    def accept(self, org_id: str, quote_id: str, *, actor_user_id: Optional[str] = None) -> NegotiationResult:
        """
        Winner-take-all: the target becomes approved, every other live quote on
        the case becomes declined, and the case goes to In Review with the
        quote's contractor assigned. The case row is written first (version
        check) so two concurrent accepts on the same case cannot both commit.
        """
        q, case = self._quote_for_org(org_id, quote_id)
        self._require_live(q)
        if q.status == qs.APPROVED:
            raise ConflictError("quote is already approved", meta={"quote_id": q.id})
        qs.ensure_quote_transition(q.status, qs.APPROVED, quote_id=q.id)
        if self.quotes.count_with_status(case.id, qs.APPROVED) > 0:
            raise ConflictError("case already has an approved quote", meta={"case_id": case.id})
        if case.status != IN_REVIEW:
            ensure_transition(case.status, IN_REVIEW)

        now = datetime.utcnow()
        if not self.cases.compare_and_set(
            case,
            expected_status=case.status,
            values={"status": IN_REVIEW, "assigned_contractor_id": str(q.contractor_id)},
        ):
            raise self._conflict("case was modified concurrently; re-read and retry", case_id=case.id)

        if not self.quotes.compare_and_set(
            q,
            expected_statuses=qs.OPEN_STATUSES,
            values={"status": qs.APPROVED, "approved_at": now},
        ):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        declined = self.quotes.decline_siblings(case_id=case.id, winner_id=q.id, now=now)

        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.QUOTE_ACCEPTED,
            description=f"Quote from {_contractor_name(q)} accepted (${_money(q.total):,.2f})",
            actor_user_id=actor_user_id,
            metadata={
                "quoteId": q.id,
                "contractorId": q.contractor_id,
                "total": _money(q.total),
                "declinedSiblings": declined,
            },
        )
        self._commit("quote accept")
        METRICS.inc("quotes_accepted")
        log.info("quote accepted", extra={"org_id": org_id, "case_id": case.id, "quote_id": q.id})

        return NegotiationResult(
            quote=q,
            case=case,
            notifications=[
                (str(q.contractor_id), f"Your quote for {case.title} was accepted. Please confirm the job."),
            ],
        )

    def decline(
        self,
        org_id: str,
        quote_id: str,
        *,
        reason: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> NegotiationResult:
        """Only the target quote changes; siblings are untouched."""
        q, case = self._quote_for_org(org_id, quote_id)
        self._require_live(q)
        qs.ensure_quote_transition(q.status, qs.DECLINED, quote_id=q.id)

        notes = q.internal_notes
        if reason and reason.strip():
            line = f"Declined: {reason.strip()}"
            notes = f"{notes}\n{line}" if notes else line

        now = datetime.utcnow()
        if not self.quotes.compare_and_set(
            q,
            expected_statuses=[q.status],
            values={"status": qs.DECLINED, "declined_at": now, "internal_notes": notes},
        ):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.QUOTE_DECLINED,
            description=f"Quote from {_contractor_name(q)} declined",
            actor_user_id=actor_user_id,
            metadata={"quoteId": q.id, "reason": reason},
        )
        self._commit("quote decline")
        METRICS.inc("quotes_declined")

        return NegotiationResult(
            quote=q,
            case=case,
            notifications=[(str(q.contractor_id), f"Your quote for {case.title} was declined.")],
        )

    def counter_propose(
        self,
        org_id: str,
        quote_id: str,
        *,
        actor_user_id: str,
        proposed_total: Optional[float] = None,
        proposed_start_date: Optional[datetime] = None,
        proposed_end_date: Optional[datetime] = None,
        message: Optional[str] = None,
    ) -> NegotiationResult:
        if proposed_total is None and proposed_start_date is None and proposed_end_date is None and not message:
            raise ValidationError("a counter-proposal needs a price, dates or a message")
        if proposed_total is not None and float(proposed_total) < 0:
            raise ValidationError("proposedTotal must be >= 0")
        if proposed_start_date and proposed_end_date and proposed_end_date < proposed_start_date:
            raise ValidationError("proposedEndDate must not be before proposedStartDate")

        q, case = self._quote_for_org(org_id, quote_id)
        self._require_live(q)
        if q.status in qs.NOT_COUNTERABLE or q.status not in qs.OPEN_STATUSES:
            raise InvalidTransitionError(
                f"cannot counter a quote in status {q.status!r}",
                meta={"quote_id": q.id, "from": q.status, "to": qs.AWAITING_RESPONSE},
            )

        cp = self.quotes.add_counter(
            QuoteCounterProposal(
                quote_id=q.id,
                proposed_by=str(actor_user_id),
                proposed_by_role=qs.ROLE_LANDLORD,
                status=qs.COUNTER_PENDING,
                proposed_total=_money(proposed_total) if proposed_total is not None else None,
                proposed_start_date=proposed_start_date,
                proposed_end_date=proposed_end_date,
                message=message,
                created_at=datetime.utcnow(),
            )
        )

        if not self.quotes.compare_and_set(
            q,
            expected_statuses=qs.OPEN_STATUSES,
            values={
                "status": qs.AWAITING_RESPONSE,
                "has_counter_proposal": True,
                "counter_proposal_count": Quote.counter_proposal_count + 1,
            },
        ):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.COUNTER_PROPOSED,
            description=f"Counter-proposal sent to {_contractor_name(q)}",
            actor_user_id=actor_user_id,
            metadata={"quoteId": q.id, "counterProposalId": cp.id, "proposedTotal": cp.proposed_total},
        )
        self._commit("counter-proposal")

        return NegotiationResult(
            quote=q,
            case=case,
            counter_proposal=cp,
            notifications=[(str(q.contractor_id), f"You received a counter-proposal on your quote for {case.title}.")],
        )

    # ------------------------------------------------------------------
    # contractor side
    # ------------------------------------------------------------------
    def contractor_quotes(self, org_id: str, contractor_user_id: str) -> list[Quote]:
        return self.quotes.list_for_contractor(org_id, contractor_user_id)

    def contractor_quote(self, org_id: str, contractor_user_id: str, quote_id: str) -> Quote:
        q, _ = self._own_quote(org_id, quote_id, contractor_user_id)
        return q

    def counters_awaiting(self, org_id: str, contractor_user_id: str) -> list[Quote]:
        return self.quotes.counters_awaiting_contractor(org_id, contractor_user_id)

    def submit_quote(
        self,
        org_id: str,
        contractor_user_id: str,
        case_id: str,
        *,
        title: Optional[str] = None,
        line_items: Optional[list[LineItemIn]] = None,
        tax_amount: float = 0.0,
        total: Optional[float] = None,
        price_tbd: bool = False,
        scope_of_work: Optional[str] = None,
        available_start_date: Optional[datetime] = None,
        available_end_date: Optional[datetime] = None,
        estimated_days: Optional[int] = None,
        expires_in_days: Optional[int] = None,
        send: bool = True,
    ) -> NegotiationResult:
        """
        Create a quote against a case. A sent quote moves the case to Quoted.
        Totals come from line items (+ tax) unless only a flat total is given.
        """
        case = self.cases.get_for_org(org_id, case_id)
        if case is None:
            raise NotFoundError("case not found", meta={"case_id": case_id})
        if case.status not in QUOTABLE_CASE_STATUSES:
            raise InvalidTransitionError(
                "case is not accepting quotes",
                meta={"case_id": case.id, "from": case.status, "to": QUOTED},
            )
        if case.assigned_contractor_id and str(case.assigned_contractor_id) != str(contractor_user_id):
            raise ConflictError("case is assigned to another contractor", meta={"case_id": case.id})
        if self.quotes.open_quote_for(case.id, contractor_user_id) is not None:
            raise ConflictError("you already have an open quote on this case", meta={"case_id": case.id})
        if tax_amount is not None and float(tax_amount) < 0:
            raise ValidationError("taxAmount must be >= 0")
        if total is not None and float(total) < 0:
            raise ValidationError("total must be >= 0")

        items = list(line_items or [])
        subtotal = _money(sum(float(i.quantity) * float(i.unit_price) for i in items))
        tax = _money(tax_amount)
        if items:
            grand_total = _money(subtotal + tax)
        else:
            grand_total = _money(total)
            subtotal = _money(grand_total - tax) if grand_total >= tax else grand_total

        now = datetime.utcnow()
        days = settings.default_quote_expiry_days if expires_in_days is None else int(expires_in_days)
        q = Quote(
            org_id=case.org_id,
            case_id=case.id,
            contractor_id=str(contractor_user_id),
            title=title or f"Quote for {case.title}",
            status=qs.SENT if send else qs.DRAFT,
            subtotal=subtotal,
            tax_amount=tax,
            total=grand_total,
            price_tbd=bool(price_tbd),
            scope_of_work=scope_of_work,
            available_start_date=available_start_date,
            available_end_date=available_end_date,
            estimated_days=estimated_days,
            expires_at=now + timedelta(days=days) if days > 0 else None,
            sent_at=now if send else None,
            created_at=now,
            updated_at=now,
        )
        for i in items:
            q.line_items.append(
                QuoteLineItem(
                    name=i.name,
                    description=i.description,
                    quantity=float(i.quantity),
                    unit_price=_money(i.unit_price),
                    total=_money(float(i.quantity) * float(i.unit_price)),
                )
            )
        self.quotes.add(q)

        if send:
            self._case_to_quoted(case)
            self.events.append(
                org_id=case.org_id,
                case_id=case.id,
                event_type=ev.QUOTE_SUBMITTED,
                description=(
                    f"Quote submitted by {q.contractor.display_name if q.contractor else 'contractor'}"
                    + (" (price to be determined)" if q.price_tbd else f" (${q.total:,.2f})")
                ),
                actor_user_id=contractor_user_id,
                metadata={"quoteId": q.id, "total": q.total, "priceTbd": q.price_tbd},
            )

        self._commit("quote submit")
        METRICS.inc("quotes_submitted")
        log.info(
            "quote created",
            extra={"org_id": org_id, "case_id": case.id, "quote_id": q.id, "contractor_id": contractor_user_id},
        )
        return NegotiationResult(quote=q, case=case)

    def send_quote(self, org_id: str, contractor_user_id: str, quote_id: str) -> NegotiationResult:
        q, case = self._own_quote(org_id, quote_id, contractor_user_id)
        self._require_live(q)
        if q.status != qs.DRAFT:
            raise InvalidTransitionError(
                "only draft quotes can be sent",
                meta={"quote_id": q.id, "from": q.status, "to": qs.SENT},
            )
        if case.status not in QUOTABLE_CASE_STATUSES:
            raise InvalidTransitionError(
                "case is not accepting quotes",
                meta={"case_id": case.id, "from": case.status, "to": QUOTED},
            )

        now = datetime.utcnow()
        values: dict[str, Any] = {"status": qs.SENT, "sent_at": now}
        if q.expires_at is None and settings.default_quote_expiry_days > 0:
            values["expires_at"] = now + timedelta(days=settings.default_quote_expiry_days)
        if not self.quotes.compare_and_set(q, expected_statuses=[qs.DRAFT], values=values):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        self._case_to_quoted(case)
        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.QUOTE_SUBMITTED,
            description=f"Quote submitted by {_contractor_name(q)} (${_money(q.total):,.2f})",
            actor_user_id=contractor_user_id,
            metadata={"quoteId": q.id, "total": _money(q.total)},
        )
        self._commit("quote send")
        return NegotiationResult(quote=q, case=case)

    def withdraw_quote(self, org_id: str, contractor_user_id: str, quote_id: str) -> NegotiationResult:
        q, case = self._own_quote(org_id, quote_id, contractor_user_id)
        self._require_live(q)
        qs.ensure_quote_transition(q.status, qs.CANCELLED, quote_id=q.id)

        if not self.quotes.compare_and_set(q, expected_statuses=[q.status], values={"status": qs.CANCELLED}):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        self.events.append(
            org_id=case.org_id,
            case_id=case.id,
            event_type=ev.QUOTE_WITHDRAWN,
            description=f"Quote withdrawn by {_contractor_name(q)}",
            actor_user_id=contractor_user_id,
            metadata={"quoteId": q.id},
        )
        self._commit("quote withdraw")
        return NegotiationResult(quote=q, case=case)

    # ------------------------------------------------------------------
    # draft editing (contractor only; sent quotes are changed through counters)
    # ------------------------------------------------------------------
    def _own_draft(self, org_id: str, contractor_user_id: str, quote_id: str) -> Quote:
        q, _ = self._own_quote(org_id, quote_id, contractor_user_id)
        self._require_live(q)
        if q.status != qs.DRAFT:
            raise InvalidTransitionError(
                "only draft quotes can be edited",
                meta={"quote_id": q.id, "from": q.status},
            )
        return q

    @staticmethod
    def _totals(q: Quote, *, tax: float, flat_total: Optional[float] = None) -> dict[str, Any]:
        if q.line_items:
            subtotal = _money(sum(float(li.quantity) * float(li.unit_price) for li in q.line_items))
            return {"subtotal": subtotal, "tax_amount": tax, "total": _money(subtotal + tax)}
        grand = _money(q.total if flat_total is None else flat_total)
        return {"subtotal": _money(grand - tax) if grand >= tax else grand, "tax_amount": tax, "total": grand}

    def _store_draft(self, q: Quote, values: dict[str, Any], what: str) -> None:
        if not self.quotes.compare_and_set(q, expected_statuses=[qs.DRAFT], values=values):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)
        self._commit(what)

    def update_draft(
        self,
        org_id: str,
        contractor_user_id: str,
        quote_id: str,
        *,
        title: Optional[str] = None,
        scope_of_work: Optional[str] = None,
        tax_amount: Optional[float] = None,
        total: Optional[float] = None,
        price_tbd: Optional[bool] = None,
        available_start_date: Optional[datetime] = None,
        available_end_date: Optional[datetime] = None,
        estimated_days: Optional[int] = None,
        line_items: Optional[list[LineItemIn]] = None,
    ) -> NegotiationResult:
        """
        Partial update of a draft. A given line_items list replaces every
        existing item; totals are recomputed either way.
        """
        q = self._own_draft(org_id, contractor_user_id, quote_id)
        if tax_amount is not None and float(tax_amount) < 0:
            raise ValidationError("taxAmount must be >= 0")
        if total is not None and float(total) < 0:
            raise ValidationError("total must be >= 0")
        if estimated_days is not None and int(estimated_days) < 1:
            raise ValidationError("estimatedDays must be >= 1")

        if line_items is not None:
            q.line_items.clear()
            for i in line_items:
                q.line_items.append(
                    QuoteLineItem(
                        name=i.name,
                        description=i.description,
                        quantity=float(i.quantity),
                        unit_price=_money(i.unit_price),
                        total=_money(float(i.quantity) * float(i.unit_price)),
                    )
                )
            with storage_errors("line item replace"):
                self.db.flush()

        values: dict[str, Any] = {
            k: v
            for k, v in {
                "title": title,
                "scope_of_work": scope_of_work,
                "price_tbd": price_tbd,
                "available_start_date": available_start_date,
                "available_end_date": available_end_date,
                "estimated_days": estimated_days,
            }.items()
            if v is not None
        }
        tax = _money(q.tax_amount if tax_amount is None else tax_amount)
        values.update(self._totals(q, tax=tax, flat_total=total))
        self._store_draft(q, values, "draft update")
        return NegotiationResult(quote=q)

    def add_line_item(self, org_id: str, contractor_user_id: str, quote_id: str, item: LineItemIn) -> QuoteLineItem:
        q = self._own_draft(org_id, contractor_user_id, quote_id)
        row = QuoteLineItem(
            name=item.name,
            description=item.description,
            quantity=float(item.quantity),
            unit_price=_money(item.unit_price),
            total=_money(float(item.quantity) * float(item.unit_price)),
        )
        q.line_items.append(row)
        with storage_errors("line item insert"):
            self.db.flush()
        self._store_draft(q, self._totals(q, tax=_money(q.tax_amount)), "line item add")
        return row

    def update_line_item(
        self,
        org_id: str,
        contractor_user_id: str,
        quote_id: str,
        item_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        quantity: Optional[float] = None,
        unit_price: Optional[float] = None,
    ) -> QuoteLineItem:
        q = self._own_draft(org_id, contractor_user_id, quote_id)
        row = self.quotes.get_line_item(q.id, item_id)
        if row is None:
            raise NotFoundError("line item not found on this quote", meta={"quote_id": q.id, "item_id": item_id})
        if quantity is not None and float(quantity) <= 0:
            raise ValidationError("quantity must be > 0")
        if unit_price is not None and float(unit_price) < 0:
            raise ValidationError("unitPrice must be >= 0")

        if name is not None:
            row.name = name
        if description is not None:
            row.description = description
        if quantity is not None:
            row.quantity = float(quantity)
        if unit_price is not None:
            row.unit_price = _money(unit_price)
        row.total = _money(float(row.quantity) * float(row.unit_price))
        with storage_errors("line item update"):
            self.db.flush()
        self._store_draft(q, self._totals(q, tax=_money(q.tax_amount)), "line item update")
        return row

    def delete_line_item(self, org_id: str, contractor_user_id: str, quote_id: str, item_id: int) -> Quote:
        q = self._own_draft(org_id, contractor_user_id, quote_id)
        row = self.quotes.get_line_item(q.id, item_id)
        if row is None:
            raise NotFoundError("line item not found on this quote", meta={"quote_id": q.id, "item_id": item_id})
        self.quotes.remove_line_item(q, row)
        self._store_draft(q, self._totals(q, tax=_money(q.tax_amount)), "line item delete")
        return q

    def respond_to_counter(
        self,
        org_id: str,
        contractor_user_id: str,
        counter_id: str,
        action: str,
        *,
        reason: Optional[str] = None,
        proposed_total: Optional[float] = None,
        proposed_start_date: Optional[datetime] = None,
        proposed_end_date: Optional[datetime] = None,
        message: Optional[str] = None,
    ) -> NegotiationResult:
        """
        accept:  counter terms are applied, quote goes back to sent for the landlord.
        decline: original terms stand, quote goes back to sent.
        counter: the landlord's counter is rejected and a contractor counter replaces it.
        """
        if action not in ("accept", "decline", "counter"):
            raise ValidationError("action must be accept, decline or counter")

        cp = self.quotes.get_counter(counter_id)
        if cp is None:
            raise NotFoundError("counter-proposal not found", meta={"counter_proposal_id": counter_id})
        q = cp.quote
        if str(q.contractor_id) != str(contractor_user_id) or str(q.org_id) != str(org_id):
            raise AuthorizationError("access denied", meta={"counter_proposal_id": counter_id})
        self._require_live(q)
        if cp.status != qs.COUNTER_PENDING:
            raise ConflictError("counter-proposal was already answered", meta={"counter_proposal_id": cp.id})
        if q.status != qs.AWAITING_RESPONSE:
            raise InvalidTransitionError(
                "quote is not awaiting a response",
                meta={"quote_id": q.id, "from": q.status},
            )
        case = self.cases.get(q.case_id)

        now = datetime.utcnow()
        new_cp: Optional[QuoteCounterProposal] = None

        if action == "accept":
            cp_values = {"status": qs.COUNTER_ACCEPTED, "responded_at": now, "responded_by": str(contractor_user_id)}
            quote_values: dict[str, Any] = {"status": qs.SENT, "has_counter_proposal": False}
            if cp.proposed_total is not None:
                quote_values["total"] = _money(cp.proposed_total)
            if cp.proposed_start_date is not None:
                quote_values["available_start_date"] = cp.proposed_start_date
            if cp.proposed_end_date is not None:
                quote_values["available_end_date"] = cp.proposed_end_date
            event_type, desc = ev.COUNTER_RESOLVED, "Counter-proposal accepted by contractor"
        elif action == "decline":
            cp_values = {
                "status": qs.COUNTER_REJECTED,
                "responded_at": now,
                "responded_by": str(contractor_user_id),
                "response_message": reason,
            }
            quote_values = {"status": qs.SENT, "has_counter_proposal": False}
            event_type, desc = ev.COUNTER_RESOLVED, "Counter-proposal declined by contractor; original terms stand"
        else:
            if proposed_total is None and proposed_start_date is None and proposed_end_date is None and not message:
                raise ValidationError("a counter-proposal needs a price, dates or a message")
            if proposed_total is not None and float(proposed_total) < 0:
                raise ValidationError("proposedTotal must be >= 0")
            cp_values = {
                "status": qs.COUNTER_REJECTED,
                "responded_at": now,
                "responded_by": str(contractor_user_id),
                "response_message": "Counter-offered with new terms",
            }
            quote_values = {"counter_proposal_count": Quote.counter_proposal_count + 1}
            event_type, desc = ev.COUNTER_PROPOSED, "Contractor sent a counter-proposal"

        if not self.quotes.resolve_counter(cp, values=cp_values):
            raise self._conflict("counter-proposal was already answered", counter_proposal_id=cp.id)

        if action == "counter":
            new_cp = self.quotes.add_counter(
                QuoteCounterProposal(
                    quote_id=q.id,
                    proposed_by=str(contractor_user_id),
                    proposed_by_role=qs.ROLE_CONTRACTOR,
                    status=qs.COUNTER_PENDING,
                    proposed_total=_money(proposed_total) if proposed_total is not None else None,
                    proposed_start_date=proposed_start_date,
                    proposed_end_date=proposed_end_date,
                    message=message,
                    created_at=now,
                )
            )

        if not self.quotes.compare_and_set(q, expected_statuses=[qs.AWAITING_RESPONSE], values=quote_values):
            raise self._conflict("quote was modified concurrently; re-read and retry", quote_id=q.id)

        self.events.append(
            org_id=q.org_id,
            case_id=q.case_id,
            event_type=event_type,
            description=desc,
            actor_user_id=contractor_user_id,
            metadata={
                "quoteId": q.id,
                "counterProposalId": cp.id,
                "action": action,
                "newCounterProposalId": new_cp.id if new_cp is not None else None,
            },
        )
        self._commit("counter-proposal response")
        return NegotiationResult(quote=q, case=case, counter_proposal=new_cp or cp)

    def accept_case(
        self,
        org_id: str,
        contractor_user_id: str,
        case_id: str,
        *,
        quoted_price: Optional[float] = None,
        price_tbd: bool = False,
        available_start_date: Optional[datetime] = None,
        available_end_date: Optional[datetime] = None,
        estimated_days: Optional[int] = None,
    ) -> NegotiationResult:
        """
        Marketplace "accept & estimate": the contractor's price becomes a sent
        quote and the case moves to Quoted. Never auto-confirms; the landlord
        still accepts the quote.
        """
        if quoted_price is None and not price_tbd:
            price_tbd = True
        return self.submit_quote(
            org_id,
            contractor_user_id,
            case_id,
            total=quoted_price if quoted_price is not None else 0.0,
            price_tbd=price_tbd,
            available_start_date=available_start_date,
            available_end_date=available_end_date,
            estimated_days=estimated_days,
            send=True,
        )

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------
    def expire_stale_quotes(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        expired = 0
        for q in self.quotes.expirable(now):
            if not self.quotes.compare_and_set(q, expected_statuses=qs.OPEN_STATUSES, values={"status": qs.EXPIRED}):
                continue
            self.events.append(
                org_id=q.org_id,
                case_id=q.case_id,
                event_type=ev.QUOTE_EXPIRED,
                description="Quote expired without a response",
                metadata={"quoteId": q.id, "expiresAt": q.expires_at},
            )
            expired += 1
        self._commit("quote expiry")
        if expired:
            METRICS.inc("quotes_expired", expired)
            log.info("expired %d stale quote(s)", expired)
        return expired
