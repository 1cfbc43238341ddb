# backend/caseflow/services/roster.py
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.policy import Policy
from ..domain.scoring import Candidate, apply_trust_flags
from ..models import (
    AppUser,
    ContractorOrgLink,
    ContractorProfile,
    ContractorSpecialty,
    UserContractorSpecialty,
    Vendor,
)
from ..repositories import PolicyRepo, storage_errors

log = logging.getLogger("caseflow.roster")

DEFAULT_RESPONSE_HOURS = 24


class ContractorRoster:
    """
    Candidate pool for one organization: org vendors first, then contractors
    with an active link who have no vendor record in the org.
    """

    def __init__(self, db: Session, policies: Optional[PolicyRepo] = None) -> None:
        self.db = db
        self.policies = policies or PolicyRepo(db)

    # ---------------- lookups ----------------
    def _vendors(self, org_id: str) -> list[Vendor]:
        with storage_errors("vendor listing"):
            return list(
                self.db.scalars(
                    select(Vendor)
                    .where(Vendor.org_id == str(org_id), Vendor.status == "active")
                    .order_by(Vendor.created_at, Vendor.name)
                ).all()
            )

    def _links(self, org_id: str) -> list[tuple[ContractorOrgLink, AppUser]]:
        with storage_errors("contractor link listing"):
            rows = self.db.execute(
                select(ContractorOrgLink, AppUser)
                .join(AppUser, AppUser.id == ContractorOrgLink.contractor_user_id)
                .where(ContractorOrgLink.org_id == str(org_id), ContractorOrgLink.status == "active")
                .order_by(ContractorOrgLink.created_at, ContractorOrgLink.id)
            ).all()
        return [(link, user) for link, user in rows]

    def _profiles(self, user_ids: set[str]) -> dict[str, ContractorProfile]:
        if not user_ids:
            return {}
        with storage_errors("profile lookup"):
            rows = self.db.scalars(select(ContractorProfile).where(ContractorProfile.user_id.in_(user_ids))).all()
        return {str(p.user_id): p for p in rows}

    def _specialties(self, user_ids: set[str]) -> dict[str, list[str]]:
        out: dict[str, list[str]] = defaultdict(list)
        if not user_ids:
            return out
        with storage_errors("specialty lookup"):
            rows = self.db.execute(
                select(UserContractorSpecialty.user_id, ContractorSpecialty.name)
                .join(ContractorSpecialty, ContractorSpecialty.id == UserContractorSpecialty.specialty_id)
                .where(UserContractorSpecialty.user_id.in_(user_ids))
                .order_by(UserContractorSpecialty.id)
            ).all()
        for uid, name in rows:
            out[str(uid)].append(str(name))
        return out

    # ---------------- public ----------------
    def list_candidates(self, org_id: str, policy: Policy) -> list[Candidate]:
        vendors = self._vendors(org_id)
        links = self._links(org_id)

        vendor_user_ids = {str(v.user_id) for v in vendors if v.user_id}
        link_only = [(l, u) for l, u in links if str(u.id) not in vendor_user_ids]

        user_ids = vendor_user_ids | {str(u.id) for _, u in link_only}
        profiles = self._profiles(user_ids)
        specialties = self._specialties(user_ids)
        favorites = self.policies.favorite_user_ids(org_id)
        link_rating = {str(l.contractor_user_id): l.average_rating for l, _ in links}

        out: list[Candidate] = []
        for v in vendors:
            uid = str(v.user_id) if v.user_id else None
            prof = profiles.get(uid) if uid else None
            out.append(
                Candidate(
                    id=str(v.id),
                    name=v.name,
                    user_id=uid,
                    vendor_id=str(v.id),
                    category=v.category,
                    rating=v.rating if v.rating is not None else link_rating.get(uid or ""),
                    response_time_hours=_first_int(
                        prof.response_time_hours if prof else None, v.response_time_hours, DEFAULT_RESPONSE_HOURS
                    ),
                    emergency_available=_first_bool(
                        prof.emergency_available if prof else None, v.emergency_available, False
                    ),
                    is_preferred=bool(v.is_preferred),
                    is_available=bool(prof.is_available) if prof else True,
                    is_favorite=bool(uid and uid in favorites),
                    specialties=tuple(specialties.get(uid or "", ())),
                    source="vendor",
                )
            )

        for link, user in link_only:
            uid = str(user.id)
            prof = profiles.get(uid)
            out.append(
                Candidate(
                    id=uid,
                    name=user.display_name,
                    user_id=uid,
                    vendor_id=None,
                    category=None,
                    rating=link.average_rating,
                    response_time_hours=_first_int(prof.response_time_hours if prof else None, DEFAULT_RESPONSE_HOURS),
                    emergency_available=_first_bool(prof.emergency_available if prof else None, False),
                    is_preferred=False,
                    is_available=bool(prof.is_available) if prof else True,
                    is_favorite=uid in favorites,
                    specialties=tuple(specialties.get(uid, ())),
                    source="linked",
                )
            )

        return apply_trust_flags(out, policy)

    def resolve_vendor(self, org_id: str, contractor_id: str) -> Optional[Vendor]:
        """
        Assignment target lookup: an org vendor by id, else an actively linked
        contractor user. A linked user gets a vendor record in this org
        (flushed, not committed) so the case always points at a vendor.
        """
        with storage_errors("contractor lookup"):
            v = self.db.scalar(select(Vendor).where(Vendor.id == str(contractor_id), Vendor.org_id == str(org_id)))
            if v is not None:
                return v

            link = self.db.scalar(
                select(ContractorOrgLink).where(
                    ContractorOrgLink.org_id == str(org_id),
                    ContractorOrgLink.contractor_user_id == str(contractor_id),
                    ContractorOrgLink.status == "active",
                )
            )
            if link is None:
                return None

            existing = self.db.scalar(
                select(Vendor).where(Vendor.org_id == str(org_id), Vendor.user_id == str(contractor_id))
            )
            if existing is not None:
                return existing

            user = self.db.get(AppUser, str(contractor_id))
            if user is None:
                return None
            specs = self._specialties({str(user.id)}).get(str(user.id), [])

            v = Vendor(
                org_id=str(org_id),
                user_id=str(user.id),
                name=user.display_name,
                category=specs[0] if specs else "General",
                rating=link.average_rating,
                status="active",
            )
            self.db.add(v)
            self.db.flush()

        log.info(
            "vendor record created for linked contractor",
            extra={"org_id": org_id, "contractor_id": contractor_id},
        )
        return v


def _first_int(*vals) -> int:
    for v in vals:
        if v is not None:
            return int(v)
    return DEFAULT_RESPONSE_HOURS


def _first_bool(*vals) -> bool:
    for v in vals:
        if v is not None:
            return bool(v)
    return False
