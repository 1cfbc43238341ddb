# backend/caseflow/routers/recommendations.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, require_org_admin
from ..config import settings
from ..db import get_db
from ..domain.scoring import rank
from ..services.lifecycle_service import CaseLifecycle
from ..services.policy_store import PolicyStore
from ..services.roster import ContractorRoster

router = APIRouter(prefix="/maya", tags=["recommendations"])


@router.get("/recommendations/{case_id}")
def recommend_contractors(
    case_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_org_admin),
) -> dict[str, Any]:
    case = CaseLifecycle(db).get_case(p.org_id, case_id)
    policies = PolicyStore(db)
    policy = policies.get_active_policy(p.org_id)
    candidates = ContractorRoster(db, policies.repo).list_candidates(p.org_id, policy)

    ranked = rank(case.category, candidates, policy, limit=settings.recommendation_limit)
    return {
        "contractors": [s.as_dict() for s in ranked],
        "involvementMode": policy.involvement_mode,
        "autoApproveCostLimit": policy.auto_approve_cost_limit,
    }
