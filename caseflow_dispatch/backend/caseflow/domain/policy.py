# backend/caseflow/domain/policy.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import settings

HANDS_OFF = "hands-off"
BALANCED = "balanced"
HANDS_ON = "hands-on"

INVOLVEMENT_MODES = (HANDS_OFF, BALANCED, HANDS_ON)


def normalize_mode(mode: Optional[str]) -> str:
    m = (mode or "").strip().lower().replace("_", "-")
    if m not in INVOLVEMENT_MODES:
        raise ValueError(f"involvement_mode must be one of {', '.join(INVOLVEMENT_MODES)}")
    return m


@dataclass(frozen=True)
class Policy:
    """
    Read-only view of an organization's dispatch policy.

    `policy_id` is None for the synthesized default (no active row).
    """

    org_id: str
    involvement_mode: str = BALANCED
    trusted_contractor_ids: frozenset[str] = field(default_factory=frozenset)
    auto_approve_cost_limit: float = 500.0
    auto_approve_emergencies: bool = True
    policy_id: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.policy_id is None

    def trusts(self, *ids: Optional[str]) -> bool:
        return any(i is not None and str(i) in self.trusted_contractor_ids for i in ids)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.policy_id,
            "orgId": self.org_id,
            "involvementMode": self.involvement_mode,
            "trustedContractorIds": sorted(self.trusted_contractor_ids),
            "autoApproveCostLimit": self.auto_approve_cost_limit,
            "autoApproveEmergencies": self.auto_approve_emergencies,
            "isDefault": self.is_default,
        }


def default_policy(org_id: str) -> Policy:
    return Policy(
        org_id=str(org_id),
        involvement_mode=settings.default_involvement_mode,
        trusted_contractor_ids=frozenset(),
        auto_approve_cost_limit=float(settings.default_auto_approve_cost_limit),
        auto_approve_emergencies=bool(settings.default_auto_approve_emergencies),
        policy_id=None,
    )


def trusted_ids_from_json(s: Optional[str]) -> frozenset[str]:
    if not s:
        return frozenset()
    try:
        v = json.loads(s)
    except (TypeError, ValueError):
        return frozenset()
    if not isinstance(v, list):
        return frozenset()
    return frozenset(str(x) for x in v if x is not None and str(x).strip())


def trusted_ids_to_json(ids: Optional[list[str]]) -> str:
    # sorted + deduped so the stored column is stable across edits
    return json.dumps(sorted({str(x) for x in (ids or []) if str(x).strip()}))
