# backend/tests/test_case_lifecycle_rules.py
from __future__ import annotations

import pytest

from caseflow.domain import lifecycle as lc
from caseflow.domain import quote_states as qs
from caseflow.errors import InvalidTransitionError, ValidationError


def test_external_vocabulary_maps_to_canonical_statuses():
    assert lc.normalize_status("Submitted") == lc.NEW
    assert lc.normalize_status("open") == lc.NEW
    assert lc.normalize_status("Confirmed") == lc.SCHEDULED
    assert lc.normalize_status(" in_progress ") == lc.IN_PROGRESS
    assert lc.normalize_status("Completed") == lc.RESOLVED


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        lc.normalize_status("teleported")


def test_forward_moves_across_phases_are_allowed():
    assert lc.can_transition(lc.NEW, lc.IN_REVIEW)
    assert lc.can_transition(lc.NEW, lc.RESOLVED)
    assert lc.can_transition(lc.QUOTED, lc.SCHEDULED)


def test_sideways_moves_within_assignment_and_execution():
    assert lc.can_transition(lc.IN_REVIEW, lc.QUOTED)
    assert lc.can_transition(lc.QUOTED, lc.IN_REVIEW)
    assert lc.can_transition(lc.IN_PROGRESS, lc.ON_HOLD)
    assert lc.can_transition(lc.ON_HOLD, lc.IN_PROGRESS)


def test_backward_moves_and_terminal_exits_are_refused():
    assert not lc.can_transition(lc.SCHEDULED, lc.IN_REVIEW)
    assert not lc.can_transition(lc.RESOLVED, lc.IN_PROGRESS)
    assert not lc.can_transition(lc.CLOSED, lc.NEW)
    with pytest.raises(InvalidTransitionError):
        lc.ensure_transition(lc.RESOLVED, lc.CLOSED)


def test_self_transition_is_not_an_edge():
    with pytest.raises(InvalidTransitionError):
        lc.ensure_transition(lc.SCHEDULED, lc.SCHEDULED)


def test_quote_terminal_states_have_no_exits():
    for terminal in (qs.APPROVED, qs.DECLINED, qs.CANCELLED, qs.EXPIRED):
        for target in qs.QUOTE_STATUSES:
            assert not qs.can_move(terminal, target)
    assert qs.can_move(qs.AWAITING_RESPONSE, qs.SENT)
    with pytest.raises(InvalidTransitionError):
        qs.ensure_quote_transition(qs.DRAFT, qs.APPROVED)
