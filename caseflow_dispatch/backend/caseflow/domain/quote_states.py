# backend/caseflow/domain/quote_states.py
from __future__ import annotations

from ..errors import InvalidTransitionError

DRAFT = "draft"
SENT = "sent"
AWAITING_RESPONSE = "awaiting_response"
APPROVED = "approved"
DECLINED = "declined"
CANCELLED = "cancelled"
EXPIRED = "expired"

QUOTE_STATUSES = (DRAFT, SENT, AWAITING_RESPONSE, APPROVED, DECLINED, CANCELLED, EXPIRED)

# awaiting_response -> sent happens when the counter-proposal is resolved and
# the landlord has to look at the (possibly revised) quote again.
QUOTE_TRANSITIONS: dict[str, frozenset[str]] = {
    DRAFT: frozenset({SENT, CANCELLED}),
    SENT: frozenset({APPROVED, DECLINED, AWAITING_RESPONSE, EXPIRED, CANCELLED}),
    AWAITING_RESPONSE: frozenset({APPROVED, DECLINED, SENT, EXPIRED, CANCELLED}),
    APPROVED: frozenset(),
    DECLINED: frozenset(),
    CANCELLED: frozenset(),
    EXPIRED: frozenset(),
}

# states a landlord can act on (accept/decline/counter)
OPEN_STATUSES = frozenset({SENT, AWAITING_RESPONSE})

# counter-proposals are refused on these
NOT_COUNTERABLE = frozenset({APPROVED, DECLINED, CANCELLED})

COUNTER_PENDING = "pending"
COUNTER_ACCEPTED = "accepted"
COUNTER_REJECTED = "rejected"

ROLE_LANDLORD = "landlord"
ROLE_CONTRACTOR = "contractor"


def can_move(current: str, target: str) -> bool:
    return target in QUOTE_TRANSITIONS.get(current, frozenset())


def ensure_quote_transition(current: str, target: str, *, quote_id: str | None = None) -> None:
    if not can_move(current, target):
        raise InvalidTransitionError(
            f"quote cannot move from {current!r} to {target!r}",
            meta={"quote_id": quote_id, "from": current, "to": target},
        )
