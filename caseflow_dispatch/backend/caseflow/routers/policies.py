# backend/caseflow/routers/policies.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_org_admin
from ..db import get_db
from ..schemas import OkOut, PolicyIn
from ..services.policy_store import PolicyStore

router = APIRouter(prefix="/policies", tags=["policies"])


@router.get("/active")
def get_active(db: Session = Depends(get_db), p: Principal = Depends(get_principal)) -> dict[str, Any]:
    return PolicyStore(db).get_active_policy(p.org_id).as_dict()


@router.put("/active")
def put_active(
    payload: PolicyIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
) -> dict[str, Any]:
    policy = PolicyStore(db).replace_active_policy(
        p.org_id,
        actor_user_id=p.user_id,
        involvement_mode=payload.involvement_mode,
        trusted_contractor_ids=payload.trusted_contractor_ids,
        auto_approve_cost_limit=payload.auto_approve_cost_limit,
        auto_approve_emergencies=payload.auto_approve_emergencies,
    )
    return policy.as_dict()


@router.post("/favorites/{user_id}", response_model=OkOut)
def add_favorite(user_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_org_admin)):
    PolicyStore(db).add_favorite(p.org_id, user_id, actor_user_id=p.user_id)
    return OkOut(ok=True)


@router.delete("/favorites/{user_id}", response_model=OkOut)
def remove_favorite(user_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_org_admin)):
    PolicyStore(db).remove_favorite(p.org_id, user_id, actor_user_id=p.user_id)
    return OkOut(ok=True)
