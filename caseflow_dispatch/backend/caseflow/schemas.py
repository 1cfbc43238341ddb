# backend/caseflow/schemas.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Camel(BaseModel):
    """Wire format is camelCase; Python side stays snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -------------------- Cases --------------------

class CaseOut(_Camel):
    id: str
    org_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    priority: str
    is_urgent: bool = False
    status: str
    estimated_cost: Optional[float] = None
    assigned_contractor_id: Optional[str] = None
    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class AssignIn(_Camel):
    vendor_id: Optional[str] = None
    contractor_id: Optional[str] = None
    note: Optional[str] = None

    @property
    def target_id(self) -> Optional[str]:
        return self.vendor_id or self.contractor_id


class AssignOut(CaseOut):
    auto_confirmed: bool
    flow_path: str
    reasons: List[str] = Field(default_factory=list)


class PriorityIn(_Camel):
    priority: Optional[str] = None


class TransitionIn(_Camel):
    status: str
    reason: Optional[str] = None


class NoteIn(_Camel):
    note: Optional[str] = None


class HoldIn(_Camel):
    reason: Optional[str] = None


class CaseEventOut(_Camel):
    id: int
    case_id: str
    type: str
    description: str
    actor_user_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _metadata_from_json(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        raw = getattr(data, "metadata_json", None)
        try:
            meta = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            meta = {}
        return {
            "id": data.id,
            "case_id": data.case_id,
            "type": data.type,
            "description": data.description,
            "actor_user_id": data.actor_user_id,
            "metadata": meta if isinstance(meta, dict) else {},
            "created_at": data.created_at,
        }


# -------------------- Quotes --------------------

class ContractorRefOut(_Camel):
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class LineItemOut(_Camel):
    id: int
    name: str
    description: Optional[str] = None
    quantity: float
    unit_price: float
    total: float


class CounterProposalOut(_Camel):
    id: str
    quote_id: str
    proposed_by: str
    proposed_by_role: str
    status: str
    proposed_total: Optional[float] = None
    proposed_start_date: Optional[datetime] = None
    proposed_end_date: Optional[datetime] = None
    message: Optional[str] = None
    responded_at: Optional[datetime] = None
    response_message: Optional[str] = None
    created_at: datetime


class QuoteOut(_Camel):
    id: str
    case_id: str
    contractor: ContractorRefOut
    title: Optional[str] = None
    status: str
    total: float
    subtotal: float
    tax_amount: float
    price_tbd: bool = False
    available_start_date: Optional[datetime] = None
    available_end_date: Optional[datetime] = None
    estimated_days: Optional[int] = None
    scope_of_work: Optional[str] = None
    line_items: List[LineItemOut] = Field(default_factory=list)
    has_counter_proposal: bool
    counter_proposal_count: int
    latest_counter_proposal: Optional[CounterProposalOut] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_quote(cls, q: Any) -> "QuoteOut":
        latest = q.counter_proposals[0] if q.counter_proposals else None
        return cls(
            id=q.id,
            case_id=q.case_id,
            contractor=ContractorRefOut.model_validate(q.contractor) if q.contractor else ContractorRefOut(),
            title=q.title,
            status=q.status,
            total=float(q.total or 0),
            subtotal=float(q.subtotal or 0),
            tax_amount=float(q.tax_amount or 0),
            price_tbd=bool(q.price_tbd),
            available_start_date=q.available_start_date,
            available_end_date=q.available_end_date,
            estimated_days=q.estimated_days,
            scope_of_work=q.scope_of_work,
            line_items=[LineItemOut.model_validate(li) for li in q.line_items],
            has_counter_proposal=bool(q.has_counter_proposal),
            counter_proposal_count=int(q.counter_proposal_count or 0),
            latest_counter_proposal=CounterProposalOut.model_validate(latest) if latest else None,
            created_at=q.created_at,
            expires_at=q.expires_at,
        )


class CaseQuotesOut(_Camel):
    case_id: str
    case_title: str
    case_status: str
    quotes: List[QuoteOut]


class DeclineIn(_Camel):
    reason: Optional[str] = None


class CounterProposalIn(_Camel):
    proposed_total: Optional[float] = Field(default=None, ge=0)
    proposed_start_date: Optional[datetime] = None
    proposed_end_date: Optional[datetime] = None
    message: Optional[str] = Field(default=None, max_length=4000)

    @model_validator(mode="after")
    def _has_terms(self) -> "CounterProposalIn":
        if (
            self.proposed_total is None
            and self.proposed_start_date is None
            and self.proposed_end_date is None
            and not (self.message or "").strip()
        ):
            raise ValueError("a counter-proposal needs a price, dates or a message")
        if self.proposed_start_date and self.proposed_end_date and self.proposed_end_date < self.proposed_start_date:
            raise ValueError("proposedEndDate must not be before proposedStartDate")
        return self


class CounterResponseIn(_Camel):
    reason: Optional[str] = None
    proposed_total: Optional[float] = Field(default=None, ge=0)
    proposed_start_date: Optional[datetime] = None
    proposed_end_date: Optional[datetime] = None
    message: Optional[str] = None


class LineItemIn(_Camel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    quantity: float = Field(default=1.0, gt=0)
    unit_price: float = Field(default=0.0, ge=0)


class QuoteSubmitIn(_Camel):
    case_id: str
    title: Optional[str] = None
    line_items: List[LineItemIn] = Field(default_factory=list)
    tax_amount: float = Field(default=0.0, ge=0)
    total: Optional[float] = Field(default=None, ge=0)
    price_tbd: bool = False
    scope_of_work: Optional[str] = None
    available_start_date: Optional[datetime] = None
    available_end_date: Optional[datetime] = None
    estimated_days: Optional[int] = Field(default=None, ge=1)
    expires_in_days: Optional[int] = Field(default=None, ge=0)
    send: bool = True


class QuoteUpdateIn(_Camel):
    title: Optional[str] = None
    scope_of_work: Optional[str] = None
    tax_amount: Optional[float] = Field(default=None, ge=0)
    total: Optional[float] = Field(default=None, ge=0)
    price_tbd: Optional[bool] = None
    available_start_date: Optional[datetime] = None
    available_end_date: Optional[datetime] = None
    estimated_days: Optional[int] = Field(default=None, ge=1)
    line_items: Optional[List[LineItemIn]] = None


class LineItemPatchIn(_Camel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    quantity: Optional[float] = Field(default=None, gt=0)
    unit_price: Optional[float] = Field(default=None, ge=0)


class AcceptCaseIn(_Camel):
    case_id: Optional[str] = None
    quoted_price: Optional[float] = Field(default=None, ge=0)
    price_tbd: bool = False
    available_start_date: Optional[datetime] = None
    available_end_date: Optional[datetime] = None
    estimated_days: Optional[int] = Field(default=None, ge=1)


class ConfirmJobIn(_Camel):
    confirmed_start_date: Optional[datetime] = None
    estimated_days: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None


class CompleteJobIn(_Camel):
    completion_notes: Optional[str] = None


# -------------------- Policies --------------------

class PolicyIn(_Camel):
    involvement_mode: str
    trusted_contractor_ids: Optional[List[str]] = None
    auto_approve_cost_limit: Optional[float] = None
    auto_approve_emergencies: Optional[bool] = None


class OkOut(BaseModel):
    ok: bool


class SuccessOut(BaseModel):
    success: bool = True
    message: Optional[str] = None


# -------------------- Audit --------------------

class AuditEventOut(BaseModel):
    id: int
    org_id: str
    actor_user_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before_json: Optional[str] = None
    after_json: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
