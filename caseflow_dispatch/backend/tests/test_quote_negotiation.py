# backend/tests/test_quote_negotiation.py
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from caseflow.domain import events as ev
from caseflow.errors import AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError
from caseflow.services.negotiation import LineItemIn, QuoteNegotiation


def _svc(db, notifier) -> QuoteNegotiation:
    return QuoteNegotiation(db, notifier=notifier)


def test_submitting_a_quote_totals_line_items_and_moves_case_to_quoted(db, make, notifier):
    org = make.org()
    pat = make.user("Pat", "Rivera")
    case = make.case(org)

    result = _svc(db, notifier).submit_quote(
        org.id,
        pat.id,
        case.id,
        line_items=[LineItemIn("Cartridge", 2, 35.5), LineItemIn("Labor", 1.5, 90)],
        tax_amount=10,
    )

    q = result.quote
    assert q.status == "sent"
    assert q.subtotal == 206.0
    assert q.total == 216.0
    assert [li.total for li in q.line_items] == [71.0, 135.0]
    assert result.case.status == "Quoted"
    types = [e.type for e in _svc(db, notifier).events.list_for_case(case.id)]
    assert types == [ev.QUOTE_SUBMITTED]


def test_one_open_quote_per_contractor_per_case(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org)
    svc = _svc(db, notifier)
    svc.submit_quote(org.id, pat.id, case.id, total=100)

    with pytest.raises(ConflictError):
        svc.submit_quote(org.id, pat.id, case.id, total=90)


def test_case_assigned_to_someone_else_takes_no_quotes(db, make, notifier):
    org = make.org()
    pat, sam = make.user(), make.user()
    case = make.case(org, status="In Review", assigned_contractor_id=sam.id)

    with pytest.raises(ConflictError):
        _svc(db, notifier).submit_quote(org.id, pat.id, case.id, total=100)


def test_draft_then_send(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org)
    svc = _svc(db, notifier)

    draft = svc.submit_quote(org.id, pat.id, case.id, total=120, send=False).quote
    assert draft.status == "draft"
    db.refresh(case)
    assert case.status == "New"

    sent = svc.send_quote(org.id, pat.id, draft.id).quote
    assert sent.status == "sent"
    assert sent.sent_at is not None
    db.refresh(case)
    assert case.status == "Quoted"


def test_accept_is_winner_take_all(db, make, notifier):
    org = make.org()
    pat, sam = make.user("Pat", "Rivera"), make.user("Sam", "Okafor")
    case = make.case(org, status="Quoted")
    q1 = make.quote(case, pat, total=300)
    q2 = make.quote(case, sam, total=250)
    svc = _svc(db, notifier)

    result = svc.accept(org.id, q1.id, actor_user_id="landlord")
    svc.deliver(result)

    db.refresh(q1)
    db.refresh(q2)
    db.refresh(case)
    assert q1.status == "approved"
    assert q1.approved_at is not None
    assert q2.status == "declined"
    assert case.status == "In Review"
    assert case.assigned_contractor_id == pat.id
    assert notifier.sent == [(pat.id, f"Your quote for {case.title} was accepted. Please confirm the job.")]

    with pytest.raises(ConflictError):
        svc.accept(org.id, q1.id)
    with pytest.raises(InvalidTransitionError):
        svc.accept(org.id, q2.id)


def test_decline_touches_only_the_target_quote(db, make, notifier):
    org = make.org()
    pat, sam = make.user(), make.user()
    case = make.case(org, status="Quoted")
    q1 = make.quote(case, pat)
    q2 = make.quote(case, sam)

    result = _svc(db, notifier).decline(org.id, q1.id, reason="too expensive")

    assert result.quote.status == "declined"
    assert result.quote.internal_notes == "Declined: too expensive"
    db.refresh(q2)
    db.refresh(case)
    assert q2.status == "sent"
    assert case.status == "Quoted"


def test_quote_in_another_org_is_forbidden(db, make, notifier):
    org_a, org_b = make.org(), make.org()
    pat = make.user()
    q = make.quote(make.case(org_b, status="Quoted"), pat)
    svc = _svc(db, notifier)

    with pytest.raises(AuthorizationError):
        svc.accept(org_a.id, q.id)
    with pytest.raises(AuthorizationError):
        svc.decline(org_a.id, q.id)
    with pytest.raises(NotFoundError):
        svc.accept(org_a.id, "missing-quote")


def test_archived_quote_cannot_be_accepted(db, make, notifier):
    org = make.org()
    q = make.quote(make.case(org, status="Quoted"), make.user())
    q.archived_at = datetime.utcnow()
    db.commit()

    with pytest.raises(InvalidTransitionError):
        _svc(db, notifier).accept(org.id, q.id)


@pytest.mark.parametrize("status", ["approved", "declined", "cancelled", "expired"])
def test_closed_quotes_cannot_be_countered(db, make, notifier, status):
    org = make.org()
    case = make.case(org, status="Quoted")
    q = make.quote(case, make.user(), status=status, total=400)

    with pytest.raises(InvalidTransitionError):
        _svc(db, notifier).counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=300)

    db.refresh(q)
    assert q.status == status
    assert q.counter_proposal_count == 0
    assert q.has_counter_proposal is False


def test_archived_quote_cannot_be_countered(db, make, notifier):
    org = make.org()
    q = make.quote(make.case(org, status="Quoted"), make.user())
    q.archived_at = datetime.utcnow()
    db.commit()

    with pytest.raises(InvalidTransitionError):
        _svc(db, notifier).counter_propose(org.id, q.id, actor_user_id="landlord", message="lower please")


def test_delivery_after_accept_survives_a_broken_notifier(db, make, broken_notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org, status="Quoted")
    q = make.quote(case, pat)
    svc = _svc(db, broken_notifier)

    result = svc.accept(org.id, q.id)
    svc.deliver(result)

    assert broken_notifier.calls == 1
    db.refresh(q)
    assert q.status == "approved"


def test_each_counter_proposal_increments_the_count(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org, status="Quoted")
    q = make.quote(case, pat, total=400)
    svc = _svc(db, notifier)

    first = svc.counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=350)
    assert first.quote.status == "awaiting_response"
    assert first.quote.has_counter_proposal is True
    assert first.quote.counter_proposal_count == 1
    assert first.counter_proposal.proposed_by_role == "landlord"

    second = svc.counter_propose(org.id, q.id, actor_user_id="landlord", message="can you start Monday?")
    assert second.quote.counter_proposal_count == 2

    _, quotes = svc.list_case_quotes(org.id, case.id)
    assert quotes[0].counter_proposals[0].id == second.counter_proposal.id
    assert q.id in [p.id for p in svc.pending_responses(org.id)]


def test_contractor_accepting_a_counter_applies_its_terms(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org, status="Quoted")
    q = make.quote(case, pat, total=400)
    svc = _svc(db, notifier)
    start = datetime(2026, 12, 1, 8, 0)
    cp = svc.counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=320, proposed_start_date=start).counter_proposal

    result = svc.respond_to_counter(org.id, pat.id, cp.id, "accept")

    assert result.quote.status == "sent"
    assert result.quote.total == 320.0
    assert result.quote.available_start_date == start
    assert result.quote.has_counter_proposal is False
    assert result.counter_proposal.status == "accepted"

    with pytest.raises(ConflictError):
        svc.respond_to_counter(org.id, pat.id, cp.id, "decline")


def test_contractor_declining_a_counter_keeps_original_terms(db, make, notifier):
    org = make.org()
    pat = make.user()
    q = make.quote(make.case(org, status="Quoted"), pat, total=400)
    svc = _svc(db, notifier)
    cp = svc.counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=200).counter_proposal

    result = svc.respond_to_counter(org.id, pat.id, cp.id, "decline", reason="materials went up")

    assert result.quote.status == "sent"
    assert result.quote.total == 400.0
    assert result.counter_proposal.response_message == "materials went up"


def test_contractor_counter_replaces_the_landlord_counter(db, make, notifier):
    org = make.org()
    pat = make.user()
    q = make.quote(make.case(org, status="Quoted"), pat, total=400)
    svc = _svc(db, notifier)
    landlord_cp = svc.counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=200).counter_proposal

    result = svc.respond_to_counter(org.id, pat.id, landlord_cp.id, "counter", proposed_total=300)

    db.refresh(landlord_cp)
    assert landlord_cp.status == "rejected"
    assert result.counter_proposal.id != landlord_cp.id
    assert result.counter_proposal.proposed_by_role == "contractor"
    assert result.counter_proposal.status == "pending"
    assert result.quote.status == "awaiting_response"
    assert result.quote.counter_proposal_count == 2


def test_only_the_quoting_contractor_may_respond(db, make, notifier):
    org = make.org()
    pat, sam = make.user(), make.user()
    q = make.quote(make.case(org, status="Quoted"), pat)
    svc = _svc(db, notifier)
    cp = svc.counter_propose(org.id, q.id, actor_user_id="landlord", proposed_total=100).counter_proposal

    with pytest.raises(AuthorizationError):
        svc.respond_to_counter(org.id, sam.id, cp.id, "accept")


def test_withdrawn_quote_is_final(db, make, notifier):
    org = make.org()
    pat = make.user()
    q = make.quote(make.case(org, status="Quoted"), pat)
    svc = _svc(db, notifier)

    assert svc.withdraw_quote(org.id, pat.id, q.id).quote.status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        svc.accept(org.id, q.id)


def test_stale_open_quotes_expire(db, make, notifier):
    org = make.org()
    case = make.case(org, status="Quoted")
    stale = make.quote(case, make.user(), expires_at=datetime.utcnow() - timedelta(days=1))
    fresh = make.quote(case, make.user())

    assert _svc(db, notifier).expire_stale_quotes() >= 1

    db.refresh(stale)
    db.refresh(fresh)
    assert stale.status == "expired"
    assert fresh.status == "sent"


def test_accept_case_without_price_is_a_tbd_quote_and_never_auto_confirms(db, make, notifier):
    org = make.org()
    pat = make.user()
    make.policy(org, mode="hands-off", trusted=[pat.id], limit=10_000)
    case = make.case(org, estimated_cost=50)

    result = _svc(db, notifier).accept_case(org.id, pat.id, case.id, estimated_days=2)

    assert result.quote.price_tbd is True
    assert result.quote.status == "sent"
    assert result.case.status == "Quoted"
    assert result.case.assigned_contractor_id is None


def _draft(db, notifier, org, contractor, case):
    return _svc(db, notifier).submit_quote(
        org.id,
        contractor.id,
        case.id,
        line_items=[LineItemIn("Cartridge", 2, 35.5), LineItemIn("Labor", 1, 90)],
        tax_amount=10,
        send=False,
    ).quote


def test_updating_a_draft_replaces_items_and_retotals(db, make, notifier):
    org = make.org()
    pat = make.user("Pat", "Rivera")
    case = make.case(org)
    q = _draft(db, notifier, org, pat, case)
    assert q.status == "draft"
    assert q.total == 171.0

    result = _svc(db, notifier).update_draft(
        org.id,
        pat.id,
        q.id,
        title="Faucet swap",
        tax_amount=5,
        line_items=[LineItemIn("New faucet", 1, 120)],
    )

    db.refresh(q)
    assert result.quote.id == q.id
    assert q.status == "draft"
    assert q.title == "Faucet swap"
    assert [li.name for li in q.line_items] == ["New faucet"]
    assert (q.subtotal, q.tax_amount, q.total) == (120.0, 5.0, 125.0)


def test_a_draft_without_items_keeps_a_flat_total(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org)
    q = _svc(db, notifier).submit_quote(org.id, pat.id, case.id, total=200, send=False).quote

    _svc(db, notifier).update_draft(org.id, pat.id, q.id, total=240, tax_amount=40)

    db.refresh(q)
    assert (q.subtotal, q.tax_amount, q.total) == (200.0, 40.0, 240.0)


def test_line_item_edits_recompute_the_draft_total(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org)
    q = _draft(db, notifier, org, pat, case)
    svc = _svc(db, notifier)

    added = svc.add_line_item(org.id, pat.id, q.id, LineItemIn("Parts run", 1, 25))
    assert added.id is not None
    db.refresh(q)
    assert q.total == 196.0

    edited = svc.update_line_item(org.id, pat.id, q.id, added.id, quantity=2)
    assert edited.total == 50.0
    db.refresh(q)
    assert q.subtotal == 211.0
    assert q.total == 221.0

    svc.delete_line_item(org.id, pat.id, q.id, added.id)
    db.refresh(q)
    assert [li.name for li in q.line_items] == ["Cartridge", "Labor"]
    assert q.total == 171.0

    with pytest.raises(NotFoundError):
        svc.delete_line_item(org.id, pat.id, q.id, added.id)


def test_sent_quotes_cannot_be_edited(db, make, notifier):
    org = make.org()
    pat = make.user()
    case = make.case(org)
    q = _svc(db, notifier).submit_quote(org.id, pat.id, case.id, total=150).quote
    svc = _svc(db, notifier)

    with pytest.raises(InvalidTransitionError):
        svc.update_draft(org.id, pat.id, q.id, total=99)
    with pytest.raises(InvalidTransitionError):
        svc.add_line_item(org.id, pat.id, q.id, LineItemIn("Extra", 1, 10))

    db.refresh(q)
    assert q.total == 150.0
    assert q.line_items == []


def test_drafts_are_private_to_their_contractor(db, make, notifier):
    org = make.org()
    pat, sam = make.user("Pat", "Rivera"), make.user("Sam", "Okafor")
    case = make.case(org)
    q = _draft(db, notifier, org, pat, case)
    svc = _svc(db, notifier)

    with pytest.raises(NotFoundError):
        svc.update_draft(org.id, sam.id, q.id, title="mine now")
    with pytest.raises(NotFoundError):
        svc.update_line_item(org.id, sam.id, q.id, q.line_items[0].id, unit_price=1)
    with pytest.raises(NotFoundError):
        svc.contractor_quote(org.id, sam.id, q.id)

    assert [x.id for x in svc.contractor_quotes(org.id, pat.id)] == [q.id]
    assert svc.contractor_quotes(org.id, sam.id) == []


def test_pending_counters_list_only_quotes_waiting_on_the_contractor(db, make, notifier):
    org = make.org()
    pat = make.user()
    waiting_case, quiet_case = make.case(org), make.case(org, "Sticky door")
    waiting = make.quote(waiting_case, pat)
    make.quote(quiet_case, pat)
    svc = _svc(db, notifier)

    svc.counter_propose(org.id, waiting.id, actor_user_id="landlord", proposed_total=200)

    pending = svc.counters_awaiting(org.id, pat.id)
    assert [q.id for q in pending] == [waiting.id]
    assert pending[0].status == "awaiting_response"
