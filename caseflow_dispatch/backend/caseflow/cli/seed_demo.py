# backend/caseflow/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import SessionLocal, init_db
from ..models import (
    AppUser,
    ContractorOrgLink,
    ContractorProfile,
    ContractorSpecialty,
    MaintenanceCase,
    Organization,
    OrgMembership,
    UserContractorSpecialty,
    Vendor,
)


@dataclass(frozen=True)
class SeedResult:
    org_slug: str
    landlord_email: str
    contractor_emails: list[str] = field(default_factory=list)
    case_ids: list[str] = field(default_factory=list)


# (email, first, last, vendor category or None for a linked-only contractor, specialties)
DEMO_CONTRACTORS = [
    ("pat.plumber@demo.local", "Pat", "Rivera", "Plumbing", ["Plumbing"]),
    ("sam.sparks@demo.local", "Sam", "Okafor", "Electrical", ["Electrical & Lighting"]),
    ("lee.handy@demo.local", "Lee", "Nguyen", None, ["General Maintenance", "Carpentry"]),
]

DEMO_CASES = [
    ("Leaking kitchen faucet", "Plumbing", "Normal", 180.0),
    ("Breaker keeps tripping", "Electrical", "High", 650.0),
    ("No heat in unit 2B", "HVAC", "Urgent", None),
]


def _get_or_create_org(db: Session, slug: str, name: str) -> Organization:
    row = db.scalar(select(Organization).where(Organization.slug == slug))
    if row:
        return row
    row = Organization(slug=slug, name=name)
    db.add(row)
    db.flush()
    return row


def _get_or_create_user(db: Session, email: str, first: str, last: str = "") -> AppUser:
    row = db.scalar(select(AppUser).where(AppUser.email == email))
    if row:
        return row
    row = AppUser(email=email, first_name=first, last_name=last or None)
    db.add(row)
    db.flush()
    return row


def _ensure_membership(db: Session, org_id: str, user_id: str, role: str) -> None:
    existing = db.scalar(
        select(OrgMembership).where(OrgMembership.org_id == org_id, OrgMembership.user_id == user_id)
    )
    if existing is None:
        db.add(OrgMembership(org_id=org_id, user_id=user_id, role=role))


def _ensure_specialty(db: Session, user_id: str, name: str) -> None:
    specialty = db.scalar(select(ContractorSpecialty).where(ContractorSpecialty.name == name))
    if specialty is None:
        specialty = ContractorSpecialty(name=name)
        db.add(specialty)
        db.flush()
    linked = db.scalar(
        select(UserContractorSpecialty).where(
            UserContractorSpecialty.user_id == user_id,
            UserContractorSpecialty.specialty_id == specialty.id,
        )
    )
    if linked is None:
        db.add(UserContractorSpecialty(user_id=user_id, specialty_id=specialty.id))


def seed_demo(*, org_slug: str = "demo", org_name: str = "Demo Properties", landlord_email: str = "owner@demo.local") -> SeedResult:
    """
    Idempotent demo tenant: one landlord, three contractors (two vendors and
    one linked-only) and a few New cases. Cases are only created on first run.
    """
    init_db()
    db = SessionLocal()
    try:
        org = _get_or_create_org(db, org_slug, org_name)
        landlord = _get_or_create_user(db, landlord_email, "Demo", "Owner")
        _ensure_membership(db, org.id, landlord.id, "org_admin")

        emails: list[str] = []
        for email, first, last, category, specialties in DEMO_CONTRACTORS:
            u = _get_or_create_user(db, email, first, last)
            emails.append(u.email)
            _ensure_membership(db, org.id, u.id, "contractor")

            if db.scalar(select(ContractorProfile).where(ContractorProfile.user_id == u.id)) is None:
                db.add(ContractorProfile(user_id=u.id, is_available=True, response_time_hours=12, emergency_available=True))
            for s in specialties:
                _ensure_specialty(db, u.id, s)

            if category is not None:
                vendor = db.scalar(select(Vendor).where(Vendor.org_id == org.id, Vendor.user_id == u.id))
                if vendor is None:
                    db.add(Vendor(org_id=org.id, user_id=u.id, name=f"{first} {last}", category=category, rating=4.5))
            else:
                link = db.scalar(
                    select(ContractorOrgLink).where(
                        ContractorOrgLink.org_id == org.id, ContractorOrgLink.contractor_user_id == u.id
                    )
                )
                if link is None:
                    db.add(ContractorOrgLink(org_id=org.id, contractor_user_id=u.id, status="active"))

        case_ids: list[str] = []
        has_cases = db.scalar(select(MaintenanceCase.id).where(MaintenanceCase.org_id == org.id).limit(1))
        if has_cases is None:
            now = datetime.utcnow()
            for title, category, priority, cost in DEMO_CASES:
                c = MaintenanceCase(
                    org_id=org.id,
                    title=title,
                    category=category,
                    priority=priority,
                    is_urgent=priority == "Urgent",
                    status="New",
                    estimated_cost=cost,
                    created_at=now,
                    updated_at=now,
                )
                db.add(c)
                db.flush()
                case_ids.append(c.id)

        db.commit()
        return SeedResult(org_slug=org.slug, landlord_email=landlord.email, contractor_emails=emails, case_ids=case_ids)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
