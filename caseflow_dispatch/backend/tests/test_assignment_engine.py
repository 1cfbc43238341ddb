# backend/tests/test_assignment_engine.py
from __future__ import annotations

import pytest

from caseflow.domain import events as ev
from caseflow.errors import ConflictError, NotFoundError, ValidationError
from caseflow.models import Vendor
from caseflow.repositories import EventLog
from caseflow.services.assignment_engine import AssignmentEngine
from caseflow.services.runtime_metrics import METRICS


def _event_types(db, case_id: str) -> list[str]:
    return [e.type for e in EventLog(db).list_for_case(case_id)]


def test_hands_off_trusted_vendor_under_limit_is_auto_confirmed(db, make, notifier):
    org = make.org()
    user = make.user("Pat", "Rivera")
    v1 = make.vendor(org, "Pat's Plumbing", user=user)
    make.policy(org, mode="hands-off", trusted=[v1.id], limit=500)
    case = make.case(org, estimated_cost=300)

    result = AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v1.id, actor_user_id="landlord-1")

    assert result.auto_confirmed is True
    assert result.flow_path == "auto-confirmed"
    assert result.case.status == "Scheduled"
    assert result.case.assigned_contractor_id == user.id
    assert result.case.version == 2
    assert _event_types(db, case.id) == [ev.JOB_AUTO_CONFIRMED]
    assert notifier.sent == [(user.id, f"You have a confirmed job: {case.title}. Schedule and start when ready.")]


def test_same_setup_over_the_cost_limit_goes_to_review(db, make, notifier):
    org = make.org()
    user = make.user()
    v1 = make.vendor(org, user=user)
    make.policy(org, mode="hands-off", trusted=[v1.id], limit=500)
    case = make.case(org, estimated_cost=800)

    result = AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v1.id)

    assert result.auto_confirmed is False
    assert result.flow_path == "quote-optional"
    assert result.case.status == "In Review"
    assert _event_types(db, case.id) == [ev.CONTRACTOR_ASSIGNED]
    assert "Please review and provide your quote" in notifier.sent[0][1]


def test_event_metadata_records_the_decision_inputs(db, make, notifier):
    org = make.org()
    v = make.vendor(org, "Sparks Electric", category="Electrical")
    make.policy(org, mode="balanced", trusted=[v.id], limit=500)
    case = make.case(org, "Breaker trips", category="Electrical", priority="Urgent", estimated_cost=200)

    AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v.id)

    (event,) = EventLog(db).list_for_case(case.id)
    meta = ev.event_metadata(event)
    assert meta["isTrusted"] is True
    assert meta["isUnderThreshold"] is True
    assert meta["isEmergency"] is True
    assert meta["involvementMode"] == "balanced"
    assert event.description.startswith("Job auto-confirmed and assigned to Sparks Electric (balanced mode")


def test_vendor_without_login_is_assigned_by_vendor_id_and_not_notified(db, make, notifier):
    org = make.org()
    v = make.vendor(org, "Offline Handyman", category="General")
    case = make.case(org)

    result = AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v.id)

    assert result.case.assigned_contractor_id == v.id
    assert result.notification is None
    assert notifier.sent == []


def test_favorite_contractor_counts_as_trusted(db, make, notifier):
    org = make.org()
    user = make.user()
    v = make.vendor(org, user=user)
    make.favorite(org, user)
    make.policy(org, mode="hands-off", trusted=[], limit=500)
    case = make.case(org, estimated_cost=100)

    assert AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v.id).auto_confirmed is True


def test_linked_contractor_gets_a_vendor_record(db, make, notifier):
    org = make.org()
    user = make.user("Lee", "Nguyen")
    make.link(org, user)
    make.specialty(user, "Electrical & Lighting")
    case = make.case(org, "Outlet sparking", category="Electrical")

    result = AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, user.id)

    assert result.case.assigned_contractor_id == user.id
    (event,) = EventLog(db).list_for_case(case.id)
    vendor_id = ev.event_metadata(event)["vendorId"]
    vendor = db.get(Vendor, vendor_id)
    assert vendor.user_id == user.id
    assert vendor.category == "Electrical & Lighting"
    assert vendor.name == "Lee Nguyen"


def test_landlord_note_is_recorded_after_the_assignment_event(db, make, notifier):
    org = make.org()
    v = make.vendor(org)
    case = make.case(org)

    AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v.id, note="  Gate code 1234  ")

    events = EventLog(db).list_for_case(case.id)
    assert [e.type for e in events] == [ev.CONTRACTOR_ASSIGNED, ev.LANDLORD_NOTE]
    assert events[1].description == "Gate code 1234"


def test_second_assignment_conflicts_and_changes_nothing(db, make, notifier):
    org = make.org()
    v1 = make.vendor(org, "First")
    v2 = make.vendor(org, "Second")
    case = make.case(org)
    engine = AssignmentEngine(db, notifier=notifier)

    engine.assign(org.id, case.id, v1.id)
    with pytest.raises(ConflictError):
        engine.assign(org.id, case.id, v2.id)

    db.refresh(case)
    assert case.assigned_contractor_id == v1.id
    assert len(_event_types(db, case.id)) == 1


def test_missing_contractor_id_is_rejected(db, make, notifier):
    org = make.org()
    case = make.case(org)
    with pytest.raises(ValidationError):
        AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, "  ")


def test_unknown_vendor_leaves_case_untouched(db, make, notifier):
    org = make.org()
    case = make.case(org)
    with pytest.raises(NotFoundError):
        AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, "no-such-vendor")

    db.refresh(case)
    assert case.status == "New"
    assert case.assigned_contractor_id is None
    assert _event_types(db, case.id) == []


def test_vendor_from_another_org_is_not_found(db, make, notifier):
    org_a, org_b = make.org(), make.org()
    foreign = make.vendor(org_b)
    case = make.case(org_a)
    with pytest.raises(NotFoundError):
        AssignmentEngine(db, notifier=notifier).assign(org_a.id, case.id, foreign.id)


def test_case_from_another_org_is_not_found(db, make, notifier):
    org_a, org_b = make.org(), make.org()
    v = make.vendor(org_a)
    case = make.case(org_b)
    with pytest.raises(NotFoundError):
        AssignmentEngine(db, notifier=notifier).assign(org_a.id, case.id, v.id)


def test_notifier_failure_does_not_undo_the_assignment(db, make, failing_notifier):
    org = make.org()
    user = make.user()
    v = make.vendor(org, user=user)
    case = make.case(org)
    failed_before = METRICS.get("notifications_failed")

    result = AssignmentEngine(db, notifier=failing_notifier).assign(org.id, case.id, v.id)

    assert failing_notifier.calls == 1
    assert METRICS.get("notifications_failed") == failed_before + 1
    db.expire_all()
    db.refresh(case)
    assert case.assigned_contractor_id == user.id
    assert case.status == result.new_status


def test_notify_false_leaves_delivery_to_the_caller(db, make, notifier):
    org = make.org()
    user = make.user()
    v = make.vendor(org, user=user)
    case = make.case(org)

    result = AssignmentEngine(db, notifier=notifier).assign(org.id, case.id, v.id, notify=False)

    assert notifier.sent == []
    assert result.notification is not None
    assert result.notification.contractor_id == user.id


def test_unexpected_notifier_error_is_swallowed_after_commit(db, make, broken_notifier):
    org = make.org()
    user = make.user()
    v = make.vendor(org, user=user)
    case = make.case(org)
    failed_before = METRICS.get("notifications_failed")

    result = AssignmentEngine(db, notifier=broken_notifier).assign(org.id, case.id, v.id)

    assert broken_notifier.calls == 1
    assert METRICS.get("notifications_failed") == failed_before + 1
    db.expire_all()
    db.refresh(case)
    assert case.status == result.new_status == "In Review"
    assert case.assigned_contractor_id == user.id
