# backend/caseflow/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .errors import AuthorizationError
from .models import AppUser, Organization, OrgMembership

ROLE_ORG_ADMIN = "org_admin"
ROLE_CONTRACTOR = "contractor"
ROLE_VIEWER = "viewer"

ROLES = (ROLE_ORG_ADMIN, ROLE_CONTRACTOR, ROLE_VIEWER)


@dataclass(frozen=True)
class Principal:
    org_id: str
    org_slug: str
    user_id: str
    email: str
    role: str  # org_admin | contractor | viewer
    name: Optional[str] = None


def _require_role(principal: Principal, role: str) -> None:
    if principal.role != role:
        raise AuthorizationError(f"requires role {role}", meta={"role": principal.role})


def _get_or_create_org(db: Session, slug: str) -> Optional[Organization]:
    org = db.scalar(select(Organization).where(Organization.slug == slug))
    if org is None and settings.dev_auto_provision:
        org = Organization(slug=slug, name=slug, created_at=datetime.utcnow())
        db.add(org)
        db.commit()
        db.refresh(org)
    return org


def _get_or_create_user(db: Session, email: str) -> Optional[AppUser]:
    user = db.scalar(select(AppUser).where(AppUser.email == email))
    if user is None and settings.dev_auto_provision:
        user = AppUser(email=email, first_name=email.split("@")[0], created_at=datetime.utcnow())
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Resolves the caller's organization before any dispatch operation runs.

    Only dev header auth is implemented here (settings.auth_mode == "dev");
    production deployments put a real identity provider in front and forward
    the same headers.
    """
    if settings.auth_mode != "dev":
        raise AuthorizationError("no authentication backend configured")

    org_slug = (request.headers.get(settings.dev_header_org_slug) or "").strip()
    if not org_slug:
        raise AuthorizationError("No organization access")

    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    if not email:
        raise AuthorizationError(f"Missing {settings.dev_header_user_email}")

    role_hint = (request.headers.get(settings.dev_header_user_role) or ROLE_ORG_ADMIN).strip().lower()

    org = _get_or_create_org(db, org_slug)
    user = _get_or_create_user(db, email)
    if org is None or user is None:
        raise AuthorizationError("unknown organization or user")

    mem = db.scalar(
        select(OrgMembership).where(OrgMembership.org_id == org.id, OrgMembership.user_id == user.id)
    )
    if mem is None and settings.dev_auto_provision:
        mem = OrgMembership(
            org_id=org.id,
            user_id=user.id,
            role=role_hint if role_hint in ROLES else ROLE_ORG_ADMIN,
            created_at=datetime.utcnow(),
        )
        db.add(mem)
        db.commit()
    if mem is None:
        raise AuthorizationError("Not a member of this org")

    return Principal(
        org_id=str(org.id),
        org_slug=str(org.slug),
        user_id=str(user.id),
        email=str(user.email),
        role=str(mem.role),
        name=user.display_name,
    )


def require_org_admin(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, ROLE_ORG_ADMIN)
    return p


def require_contractor(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, ROLE_CONTRACTOR)
    return p
