# backend/tests/test_assignment_rules.py
from __future__ import annotations

import json

import pytest

from caseflow.domain.assignment_rules import (
    FLOW_AUTO_CONFIRMED,
    FLOW_QUOTE_OPTIONAL,
    FLOW_QUOTE_REQUIRED,
    build_context,
    decide,
    effective_cost,
    parse_cost_text,
)
from caseflow.domain.policy import Policy


def _policy(mode: str, *, limit: float = 500.0, emergencies: bool = True) -> Policy:
    return Policy(org_id="o1", involvement_mode=mode, auto_approve_cost_limit=limit, auto_approve_emergencies=emergencies)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$150 - $1,200", 1200.0),
        ("about 300 dollars", 300.0),
        ("call for pricing", 0.0),
        (None, 0.0),
        (450, 450.0),
        (-5, 0.0),
    ],
)
def test_cost_text_uses_largest_number(text, expected):
    assert parse_cost_text(text) == expected


def test_estimated_cost_wins_over_triage():
    triage = json.dumps({"estimatedCost": "$900"})
    assert effective_cost(250.0, triage) == 250.0
    assert effective_cost(None, triage) == 900.0
    assert effective_cost(0, "not json") == 0.0
    assert effective_cost(None, json.dumps(["unexpected", "shape"])) == 0.0


def test_hands_off_trusted_under_limit_auto_confirms():
    ctx = build_context(policy=_policy("hands-off"), is_trusted=True, estimated_cost=300, triage=None, priority="Normal")
    d = decide(ctx)
    assert d.auto_confirm is True
    assert d.new_status == "Scheduled"
    assert d.flow_path == FLOW_AUTO_CONFIRMED


def test_hands_off_over_limit_is_quote_optional():
    ctx = build_context(policy=_policy("hands-off"), is_trusted=True, estimated_cost=800, triage=None, priority="Normal")
    d = decide(ctx)
    assert d.auto_confirm is False
    assert d.new_status == "In Review"
    assert d.flow_path == FLOW_QUOTE_OPTIONAL


def test_hands_off_emergency_auto_confirms_even_when_untrusted():
    ctx = build_context(policy=_policy("hands-off"), is_trusted=False, estimated_cost=None, triage=None, priority="Urgent")
    assert decide(ctx).auto_confirm is True


def test_hands_off_emergency_respects_disabled_auto_approve():
    ctx = build_context(
        policy=_policy("hands-off", emergencies=False), is_trusted=False, estimated_cost=None, triage=None, priority="Urgent"
    )
    assert decide(ctx).auto_confirm is False


def test_balanced_needs_trust_threshold_and_emergency():
    base = dict(policy=_policy("balanced"), estimated_cost=200, triage=None)
    assert decide(build_context(is_trusted=True, priority="Urgent", **base)).auto_confirm is True
    assert decide(build_context(is_trusted=True, priority="Normal", **base)).auto_confirm is False
    assert decide(build_context(is_trusted=False, priority="Urgent", **base)).auto_confirm is False


def test_hands_on_never_auto_confirms():
    ctx = build_context(policy=_policy("hands-on"), is_trusted=True, estimated_cost=10, triage=None, priority="Urgent")
    d = decide(ctx)
    assert d.auto_confirm is False
    assert d.flow_path == FLOW_QUOTE_REQUIRED


def test_unknown_cost_is_never_under_threshold():
    ctx = build_context(policy=_policy("hands-off"), is_trusted=True, estimated_cost=None, triage=None, priority="Normal")
    assert ctx.is_under_threshold is False
    assert "no usable cost estimate" in decide(ctx).reasons
