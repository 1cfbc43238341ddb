# backend/caseflow/models.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# -----------------------------
# Multitenant RBAC tables
# -----------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or "Contractor"


class OrgMembership(Base):
    __tablename__ = "org_memberships"
    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_org_memberships_org_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="org_admin")  # org_admin|contractor|viewer
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), index=True, nullable=False)
    actor_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Dispatch policy
# -----------------------------
class ApprovalPolicy(Base):
    __tablename__ = "approval_policies"
    __table_args__ = (Index("ix_approval_policies_org_active", "org_id", "is_active"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)

    involvement_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="balanced")
    trusted_contractor_ids_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # list[str]
    auto_approve_cost_limit: Mapped[float] = mapped_column(Float, nullable=False, default=500.0)
    auto_approve_emergencies: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class FavoriteContractor(Base):
    __tablename__ = "favorite_contractors"
    __table_args__ = (UniqueConstraint("org_id", "contractor_user_id", name="uq_favorite_contractors_org_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    contractor_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Contractors (vendors + linked platform users)
# -----------------------------
class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(160), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    response_time_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    emergency_available: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ContractorOrgLink(Base):
    __tablename__ = "contractor_org_links"
    __table_args__ = (UniqueConstraint("org_id", "contractor_user_id", name="uq_contractor_org_links_org_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    contractor_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|pending|revoked
    average_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_jobs_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ContractorProfile(Base):
    __tablename__ = "contractor_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=False, unique=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    response_time_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    emergency_available: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class ContractorSpecialty(Base):
    __tablename__ = "contractor_specialties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)


class UserContractorSpecialty(Base):
    __tablename__ = "user_contractor_specialties"
    __table_args__ = (UniqueConstraint("user_id", "specialty_id", name="uq_user_contractor_specialties"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=False, index=True)
    specialty_id: Mapped[int] = mapped_column(Integer, ForeignKey("contractor_specialties.id"), nullable=False)


# -----------------------------
# Maintenance cases
# -----------------------------
class MaintenanceCase(Base):
    __tablename__ = "maintenance_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="Normal")  # Normal|High|Urgent
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="New", index=True)
    estimated_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Untyped triage side-channel; read defensively.
    ai_triage_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    assigned_contractor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Bumped on every conditional write; the compare-and-swap token.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    scheduled_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    scheduled_end_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    quotes: Mapped[List["Quote"]] = relationship(back_populates="case")


class CaseEvent(Base):
    __tablename__ = "case_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("maintenance_cases.id"), nullable=False, index=True)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    actor_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    type: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Quotes / negotiation
# -----------------------------
class Quote(Base):
    __tablename__ = "quotes"
    __table_args__ = (Index("ix_quotes_case_status", "case_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("maintenance_cases.id"), nullable=False, index=True)
    contractor_id: Mapped[str] = mapped_column(String(36), ForeignKey("app_users.id"), nullable=False, index=True)

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")

    subtotal: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    tax_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_tbd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    scope_of_work: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    available_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    available_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    estimated_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    counter_proposal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_counter_proposal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    case: Mapped["MaintenanceCase"] = relationship(back_populates="quotes")
    contractor: Mapped["AppUser"] = relationship()
    line_items: Mapped[List["QuoteLineItem"]] = relationship(
        back_populates="quote", cascade="all, delete-orphan", order_by="QuoteLineItem.id"
    )
    counter_proposals: Mapped[List["QuoteCounterProposal"]] = relationship(
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by=lambda: [QuoteCounterProposal.created_at.desc(), QuoteCounterProposal.id.desc()],
    )


class QuoteLineItem(Base):
    __tablename__ = "quote_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quote_id: Mapped[str] = mapped_column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    quote: Mapped["Quote"] = relationship(back_populates="line_items")


class QuoteCounterProposal(Base):
    __tablename__ = "quote_counter_proposals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quote_id: Mapped[str] = mapped_column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)

    proposed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    proposed_by_role: Mapped[str] = mapped_column(String(20), nullable=False)  # landlord|contractor
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|accepted|rejected

    proposed_total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    proposed_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    proposed_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    responded_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    response_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    quote: Mapped["Quote"] = relationship(back_populates="counter_proposals")
