# backend/caseflow/domain/assignment_rules.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from .lifecycle import IN_REVIEW, SCHEDULED
from .policy import HANDS_OFF, BALANCED, Policy

URGENT = "Urgent"

FLOW_AUTO_CONFIRMED = "auto-confirmed"
FLOW_QUOTE_OPTIONAL = "quote-optional"
FLOW_QUOTE_REQUIRED = "quote-required"

_DIGIT_GROUP = re.compile(r"\d[\d,]*")


@dataclass(frozen=True)
class AssignmentContext:
    involvement_mode: str
    is_trusted: bool
    is_under_threshold: bool
    is_emergency: bool
    auto_approve_emergencies: bool
    effective_cost: float = 0.0
    cost_limit: float = 0.0


@dataclass(frozen=True)
class AssignmentDecision:
    auto_confirm: bool
    new_status: str
    flow_path: str
    reasons: List[str]


def load_triage(raw: Any) -> dict[str, Any]:
    """The triage payload is an untyped side channel: accept dict/JSON text, else {}."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        v = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return v if isinstance(v, dict) else {}


def parse_cost_text(text: Any) -> float:
    """
    Largest number found in a free-text estimate ("$150 - $1,200" -> 1200.0).
    Returns 0.0 if nothing parseable.
    """
    if text is None:
        return 0.0
    if isinstance(text, bool):
        return 0.0
    if isinstance(text, (int, float)):
        return float(text) if text > 0 else 0.0

    best = 0.0
    for tok in _DIGIT_GROUP.findall(str(text)):
        digits = tok.replace(",", "")
        if not digits:
            continue
        try:
            best = max(best, float(digits))
        except ValueError:
            continue
    return best


def effective_cost(estimated_cost: Optional[float], triage: Any) -> float:
    try:
        est = float(estimated_cost) if estimated_cost is not None else 0.0
    except (TypeError, ValueError):
        est = 0.0
    if est > 0:
        return est
    return parse_cost_text(load_triage(triage).get("estimatedCost"))


def is_emergency(priority: Optional[str], is_urgent: bool = False) -> bool:
    return (priority or "") == URGENT or bool(is_urgent)


def build_context(
    *,
    policy: Policy,
    is_trusted: bool,
    estimated_cost: Optional[float],
    triage: Any,
    priority: Optional[str],
    is_urgent: bool = False,
) -> AssignmentContext:
    cost = effective_cost(estimated_cost, triage)
    limit = float(policy.auto_approve_cost_limit)
    return AssignmentContext(
        involvement_mode=policy.involvement_mode,
        is_trusted=bool(is_trusted),
        is_under_threshold=cost > 0 and cost <= limit,
        is_emergency=is_emergency(priority, is_urgent),
        auto_approve_emergencies=bool(policy.auto_approve_emergencies),
        effective_cost=cost,
        cost_limit=limit,
    )


def should_auto_confirm(ctx: AssignmentContext) -> bool:
    mode = ctx.involvement_mode
    return (
        (mode == HANDS_OFF and ctx.is_trusted and ctx.is_under_threshold)
        or (mode == HANDS_OFF and ctx.is_emergency and ctx.auto_approve_emergencies)
        or (
            mode == BALANCED
            and ctx.is_trusted
            and ctx.is_under_threshold
            and ctx.is_emergency
            and ctx.auto_approve_emergencies
        )
    )


def decide(ctx: AssignmentContext) -> AssignmentDecision:
    """
    Deterministic auto-confirm decision. hands-on never auto-confirms.
    """
    auto = should_auto_confirm(ctx)

    reasons: list[str] = [f"mode={ctx.involvement_mode}"]
    reasons.append("trusted contractor" if ctx.is_trusted else "contractor not in trusted set")
    if ctx.effective_cost > 0:
        cmp = "<=" if ctx.is_under_threshold else ">"
        reasons.append(f"cost {ctx.effective_cost:.0f} {cmp} limit {ctx.cost_limit:.0f}")
    else:
        reasons.append("no usable cost estimate")
    if ctx.is_emergency:
        reasons.append(
            "emergency (auto-approve enabled)" if ctx.auto_approve_emergencies else "emergency (auto-approve disabled)"
        )

    if auto:
        return AssignmentDecision(True, SCHEDULED, FLOW_AUTO_CONFIRMED, reasons)

    flow = FLOW_QUOTE_OPTIONAL if ctx.involvement_mode == HANDS_OFF else FLOW_QUOTE_REQUIRED
    return AssignmentDecision(False, IN_REVIEW, flow, reasons)
