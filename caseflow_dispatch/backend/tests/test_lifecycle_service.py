# backend/tests/test_lifecycle_service.py
from __future__ import annotations

from datetime import datetime

import pytest

from caseflow.domain import events as ev
from caseflow.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from caseflow.repositories import CaseRepo
from caseflow.services.lifecycle_service import CaseLifecycle


def test_transition_writes_status_event_and_bumps_version(db, make):
    org = make.org()
    case = make.case(org)

    out = CaseLifecycle(db).transition(org.id, case.id, "In Review", actor_user_id="u1", reason="triaged")

    assert out.status == "In Review"
    assert out.version == 2
    (event,) = CaseLifecycle(db).list_events(org.id, case.id)
    assert event.type == ev.STATUS_CHANGED
    assert ev.event_metadata(event) == {"from": "New", "to": "In Review", "reason": "triaged"}


def test_illegal_transition_is_refused_without_writing(db, make):
    org = make.org()
    case = make.case(org, status="Resolved")

    with pytest.raises(InvalidTransitionError):
        CaseLifecycle(db).transition(org.id, case.id, "In Progress")

    assert CaseLifecycle(db).list_events(org.id, case.id) == []


def test_stale_version_turns_into_conflict(db, make):
    org = make.org()
    case = make.case(org)
    svc = CaseLifecycle(db)

    # someone else moved the row after we read it
    assert CaseRepo(db).compare_and_set(case, expected_status="New", values={"status": "In Review"})
    db.commit()
    case.version = 1
    case.status = "New"

    with pytest.raises(ConflictError):
        svc._move(case, "Quoted", actor_user_id=None, description="stale write")


def test_close_hold_and_resume(db, make):
    org = make.org()
    case = make.case(org, status="In Progress")
    svc = CaseLifecycle(db)

    assert svc.hold(org.id, case.id, reason="waiting on parts").status == "On Hold"
    assert svc.resume(org.id, case.id).status == "In Progress"
    assert svc.close_case(org.id, case.id).status == "Resolved"

    descriptions = [e.description for e in svc.list_events(org.id, case.id)]
    assert descriptions[0] == "Job put on hold: waiting on parts"
    assert descriptions[-1] == "Case closed by landlord"


def test_resume_requires_on_hold(db, make):
    org = make.org()
    case = make.case(org, status="Scheduled")
    with pytest.raises(InvalidTransitionError):
        CaseLifecycle(db).resume(org.id, case.id)


def test_priority_change_sets_urgent_flag_and_logs_once(db, make):
    org = make.org()
    case = make.case(org)
    svc = CaseLifecycle(db)

    out = svc.set_priority(org.id, case.id, "Urgent")
    assert out.is_urgent is True
    svc.set_priority(org.id, case.id, "Urgent")

    types = [e.type for e in svc.list_events(org.id, case.id)]
    assert types == [ev.PRIORITY_CHANGED]


def test_invalid_priority_is_rejected(db, make):
    org = make.org()
    case = make.case(org)
    with pytest.raises(ValidationError, match="Must be Normal, High, or Urgent"):
        CaseLifecycle(db).set_priority(org.id, case.id, "Whenever")


def test_empty_note_is_rejected(db, make):
    org = make.org()
    case = make.case(org)
    with pytest.raises(ValidationError):
        CaseLifecycle(db).add_note(org.id, case.id, "   ")


def test_case_in_another_org_is_not_found(db, make):
    org_a, org_b = make.org(), make.org()
    case = make.case(org_b)
    with pytest.raises(NotFoundError):
        CaseLifecycle(db).get_case(org_a.id, case.id)
    with pytest.raises(NotFoundError):
        CaseLifecycle(db).list_events(org_a.id, case.id)


def test_contractor_confirms_starts_and_completes(db, make):
    org = make.org()
    user = make.user()
    case = make.case(org, status="In Review", assigned_contractor_id=user.id)
    svc = CaseLifecycle(db)

    start = datetime(2026, 11, 2, 9, 0)
    out = svc.confirm_job(org.id, case.id, user.id, start_date=start, estimated_days=3)
    assert out.status == "Scheduled"
    assert out.scheduled_end_at == datetime(2026, 11, 5, 9, 0)

    # re-confirming a scheduled job with new dates is allowed
    later = datetime(2026, 11, 9, 9, 0)
    assert svc.confirm_job(org.id, case.id, user.id, start_date=later).scheduled_start_at == later

    assert svc.start_job(org.id, case.id, user.id).status == "In Progress"
    assert svc.complete_job(org.id, case.id, user.id, completion_notes="replaced valve").status == "Resolved"
    assert [c.id for c in svc.assigned_cases(org.id, user.id)] == [case.id]


def test_contractor_cannot_touch_someone_elses_job(db, make):
    org = make.org()
    owner, other = make.user(), make.user()
    case = make.case(org, status="Scheduled", assigned_contractor_id=owner.id)

    with pytest.raises(NotFoundError):
        CaseLifecycle(db).start_job(org.id, case.id, other.id)


def test_contractor_steps_out_of_order_are_refused(db, make):
    org = make.org()
    user = make.user()
    case = make.case(org, status="In Review", assigned_contractor_id=user.id)
    svc = CaseLifecycle(db)

    with pytest.raises(InvalidTransitionError):
        svc.start_job(org.id, case.id, user.id)
    with pytest.raises(InvalidTransitionError):
        svc.complete_job(org.id, case.id, user.id)
