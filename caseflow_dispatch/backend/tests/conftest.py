# backend/tests/conftest.py
from __future__ import annotations

import json
import os
import tempfile
import uuid
from datetime import datetime, timedelta

# settings are read at import time; point every test run at a throwaway sqlite file
_TMP_DIR = tempfile.mkdtemp(prefix="caseflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/caseflow.db"
os.environ["NOTIFIER_WEBHOOK_URL"] = ""
os.environ["AUTH_MODE"] = "dev"

import pytest  # noqa: E402

from caseflow.db import SessionLocal, init_db  # noqa: E402
from caseflow.errors import ExternalServiceError  # noqa: E402
from caseflow.models import (  # noqa: E402
    ApprovalPolicy,
    AppUser,
    ContractorOrgLink,
    ContractorProfile,
    ContractorSpecialty,
    FavoriteContractor,
    MaintenanceCase,
    Organization,
    Quote,
    UserContractorSpecialty,
    Vendor,
)

init_db()


def _uid() -> str:
    return uuid.uuid4().hex[:10]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(self, contractor_id: str, message: str) -> None:
        self.sent.append((contractor_id, message))


class FailingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, contractor_id: str, message: str) -> None:
        self.calls += 1
        raise ExternalServiceError("notification webhook failed: ConnectError")


class BrokenNotifier:
    """Raises something other than ExternalServiceError."""

    def __init__(self) -> None:
        self.calls = 0

    def notify(self, contractor_id: str, message: str) -> None:
        self.calls += 1
        raise RuntimeError("push gateway exploded")


class Factory:
    """Row builders for one test. Every row is committed so other sessions see it."""

    def __init__(self, db) -> None:
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def org(self, slug: str | None = None) -> Organization:
        slug = slug or f"org-{_uid()}"
        return self._save(Organization(slug=slug, name=slug))

    def user(self, first: str = "Casey", last: str = "Contractor", email: str | None = None) -> AppUser:
        return self._save(AppUser(email=email or f"{_uid()}@test.local", first_name=first, last_name=last))

    def vendor(
        self,
        org: Organization,
        name: str = "Acme Plumbing",
        *,
        category: str | None = "Plumbing",
        user: AppUser | None = None,
        is_preferred: bool = False,
        created_at: datetime | None = None,
    ) -> Vendor:
        return self._save(
            Vendor(
                org_id=org.id,
                user_id=user.id if user else None,
                name=name,
                category=category,
                is_preferred=is_preferred,
                created_at=created_at or datetime.utcnow(),
            )
        )

    def link(self, org: Organization, user: AppUser, *, status: str = "active") -> ContractorOrgLink:
        return self._save(ContractorOrgLink(org_id=org.id, contractor_user_id=user.id, status=status))

    def profile(self, user: AppUser, *, is_available: bool = True, response_time_hours: int | None = None) -> ContractorProfile:
        return self._save(
            ContractorProfile(user_id=user.id, is_available=is_available, response_time_hours=response_time_hours)
        )

    def specialty(self, user: AppUser, name: str) -> None:
        row = self.db.query(ContractorSpecialty).filter(ContractorSpecialty.name == name).one_or_none()
        if row is None:
            row = self._save(ContractorSpecialty(name=name))
        self._save(UserContractorSpecialty(user_id=user.id, specialty_id=row.id))

    def favorite(self, org: Organization, user: AppUser) -> FavoriteContractor:
        return self._save(FavoriteContractor(org_id=org.id, contractor_user_id=user.id))

    def policy(
        self,
        org: Organization,
        *,
        mode: str = "balanced",
        trusted: list[str] | None = None,
        limit: float = 500.0,
        emergencies: bool = True,
    ) -> ApprovalPolicy:
        return self._save(
            ApprovalPolicy(
                org_id=org.id,
                involvement_mode=mode,
                trusted_contractor_ids_json=json.dumps(trusted or []),
                auto_approve_cost_limit=limit,
                auto_approve_emergencies=emergencies,
                is_active=True,
            )
        )

    def case(
        self,
        org: Organization,
        title: str = "Leaking kitchen faucet",
        *,
        category: str | None = "Plumbing",
        status: str = "New",
        priority: str = "Normal",
        estimated_cost: float | None = None,
        triage: str | None = None,
        assigned_contractor_id: str | None = None,
    ) -> MaintenanceCase:
        return self._save(
            MaintenanceCase(
                org_id=org.id,
                title=title,
                category=category,
                status=status,
                priority=priority,
                is_urgent=priority == "Urgent",
                estimated_cost=estimated_cost,
                ai_triage_json=triage,
                assigned_contractor_id=assigned_contractor_id,
            )
        )

    def quote(
        self,
        case: MaintenanceCase,
        contractor: AppUser,
        *,
        status: str = "sent",
        total: float = 250.0,
        expires_at: datetime | None = None,
        approved_at: datetime | None = None,
    ) -> Quote:
        return self._save(
            Quote(
                org_id=case.org_id,
                case_id=case.id,
                contractor_id=contractor.id,
                title=f"Quote for {case.title}",
                status=status,
                subtotal=total,
                total=total,
                expires_at=expires_at if expires_at is not None else datetime.utcnow() + timedelta(days=30),
                approved_at=approved_at,
            )
        )


@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def make(db) -> Factory:
    return Factory(db)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture()
def broken_notifier() -> BrokenNotifier:
    return BrokenNotifier()


@pytest.fixture()
def landlord_headers():
    def _headers(org: Organization, email: str | None = None) -> dict[str, str]:
        return {
            "X-Org-Slug": org.slug,
            "X-User-Email": email or f"owner-{org.slug}@test.local",
            "X-User-Role": "org_admin",
        }

    return _headers


@pytest.fixture()
def contractor_headers():
    def _headers(org: Organization, user: AppUser) -> dict[str, str]:
        return {"X-Org-Slug": org.slug, "X-User-Email": user.email, "X-User-Role": "contractor"}

    return _headers
