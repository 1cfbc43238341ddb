# backend/caseflow/services/policy_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.policy import (
    Policy,
    default_policy,
    normalize_mode,
    trusted_ids_from_json,
    trusted_ids_to_json,
)
from ..errors import NotFoundError, ValidationError
from ..models import ApprovalPolicy, AppUser
from ..repositories import PolicyRepo, storage_errors

log = logging.getLogger("caseflow.policy")


def _to_policy(row: ApprovalPolicy) -> Policy:
    return Policy(
        org_id=str(row.org_id),
        involvement_mode=str(row.involvement_mode),
        trusted_contractor_ids=trusted_ids_from_json(row.trusted_contractor_ids_json),
        auto_approve_cost_limit=float(row.auto_approve_cost_limit),
        auto_approve_emergencies=bool(row.auto_approve_emergencies),
        policy_id=str(row.id),
    )


class PolicyStore:
    """
    Read side for the dispatch engine, write side for org admins.

    The dispatch engine only ever calls get_active_policy().
    """

    def __init__(self, db: Session, repo: Optional[PolicyRepo] = None) -> None:
        self.db = db
        self.repo = repo or PolicyRepo(db)

    def get_active_policy(self, org_id: str) -> Policy:
        row = self.repo.get_active(org_id)
        if row is None:
            return default_policy(org_id)
        return _to_policy(row)

    def favorite_user_ids(self, org_id: str) -> set[str]:
        return self.repo.favorite_user_ids(org_id)

    def is_favorite(self, org_id: str, user_id: Optional[str]) -> bool:
        return self.repo.is_favorite(org_id, user_id)

    def replace_active_policy(
        self,
        org_id: str,
        *,
        actor_user_id: Optional[str],
        involvement_mode: str,
        trusted_contractor_ids: Optional[list[str]] = None,
        auto_approve_cost_limit: Optional[float] = None,
        auto_approve_emergencies: Optional[bool] = None,
    ) -> Policy:
        """
        Swap the active policy: old row deactivated, new row inserted, one commit.
        Unspecified numeric/boolean fields carry over from the current policy.
        """
        try:
            mode = normalize_mode(involvement_mode)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        before = self.get_active_policy(org_id)

        limit = before.auto_approve_cost_limit if auto_approve_cost_limit is None else float(auto_approve_cost_limit)
        if limit < 0:
            raise ValidationError("autoApproveCostLimit must be >= 0")
        emergencies = (
            before.auto_approve_emergencies if auto_approve_emergencies is None else bool(auto_approve_emergencies)
        )
        trusted = sorted(before.trusted_contractor_ids) if trusted_contractor_ids is None else trusted_contractor_ids

        now = datetime.utcnow()
        self.repo.deactivate_all(org_id)
        row = self.repo.add(
            ApprovalPolicy(
                org_id=str(org_id),
                involvement_mode=mode,
                trusted_contractor_ids_json=trusted_ids_to_json(trusted),
                auto_approve_cost_limit=limit,
                auto_approve_emergencies=emergencies,
                is_active=True,
                created_by_user_id=actor_user_id,
                created_at=now,
                updated_at=now,
            )
        )
        after = _to_policy(row)

        audit_write(
            self.db,
            org_id=org_id,
            actor_user_id=actor_user_id,
            action="policy.replace",
            entity_type="approval_policy",
            entity_id=str(row.id),
            before=before.as_dict(),
            after=after.as_dict(),
        )
        with storage_errors("policy commit"):
            self.db.commit()

        log.info(
            "active policy replaced",
            extra={"org_id": org_id, "user_id": actor_user_id},
        )
        return after

    def _require_user(self, user_id: str) -> AppUser:
        with storage_errors("user lookup"):
            u = self.db.scalar(select(AppUser).where(AppUser.id == str(user_id)))
        if u is None:
            raise NotFoundError("contractor not found", meta={"user_id": user_id})
        return u

    def add_favorite(self, org_id: str, user_id: str, *, actor_user_id: Optional[str]) -> bool:
        self._require_user(user_id)
        added = self.repo.add_favorite(org_id, user_id)
        if added:
            audit_write(
                self.db,
                org_id=org_id,
                actor_user_id=actor_user_id,
                action="favorite.add",
                entity_type="contractor",
                entity_id=str(user_id),
                after={"favorite": True},
            )
        with storage_errors("favorite commit"):
            self.db.commit()
        return added

    def remove_favorite(self, org_id: str, user_id: str, *, actor_user_id: Optional[str]) -> bool:
        removed = self.repo.remove_favorite(org_id, user_id)
        if removed:
            audit_write(
                self.db,
                org_id=org_id,
                actor_user_id=actor_user_id,
                action="favorite.remove",
                entity_type="contractor",
                entity_id=str(user_id),
                before={"favorite": True},
                after={"favorite": False},
            )
        with storage_errors("favorite commit"):
            self.db.commit()
        return removed
