# backend/tests/test_concurrent_assignment.py
from __future__ import annotations

import threading

from caseflow.db import SessionLocal
from caseflow.domain import events as ev
from caseflow.errors import ConflictError
from caseflow.models import MaintenanceCase
from caseflow.repositories import EventLog
from caseflow.services.assignment_engine import AssignmentEngine


def test_two_simultaneous_assignments_produce_exactly_one_winner(make, notifier):
    org = make.org()
    v1 = make.vendor(org, "Pat's Plumbing")
    case = make.case(org, estimated_cost=300)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def worker() -> None:
        s = SessionLocal()
        try:
            engine = AssignmentEngine(s, notifier=notifier)
            barrier.wait(timeout=10)
            try:
                engine.assign(org.id, case.id, v1.id)
                outcome = "ok"
            except ConflictError:
                outcome = "conflict"
            with lock:
                outcomes.append(outcome)
        except BaseException as e:  # surfaced below
            with lock:
                errors.append(e)
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert sorted(outcomes) == ["conflict", "ok"]

    s = SessionLocal()
    try:
        final = s.get(MaintenanceCase, case.id)
        assert final.assigned_contractor_id == v1.id
        assert final.version == 2
        assigned = [e for e in EventLog(s).list_for_case(case.id) if e.type == ev.CONTRACTOR_ASSIGNED]
        assert len(assigned) == 1
    finally:
        s.close()
