# backend/caseflow/domain/lifecycle.py
from __future__ import annotations

from typing import Optional

from ..errors import InvalidTransitionError, ValidationError

# -----------------------------------------------------------------------------
# Case lifecycle
# -----------------------------------------------------------------------------
# One canonical status vocabulary. Other surfaces (contractor app, homeowner
# portal) use their own words; those are mapped in STATUS_ALIASES at the API
# boundary and never reach the rules below.
# -----------------------------------------------------------------------------

NEW = "New"
IN_REVIEW = "In Review"
QUOTED = "Quoted"
SCHEDULED = "Scheduled"
IN_PROGRESS = "In Progress"
ON_HOLD = "On Hold"
RESOLVED = "Resolved"
CLOSED = "Closed"

PHASE_ORDER = ["intake", "assignment", "execution", "closure"]

PHASES: dict[str, tuple[str, ...]] = {
    "intake": (NEW,),
    "assignment": (IN_REVIEW, QUOTED),
    "execution": (SCHEDULED, IN_PROGRESS, ON_HOLD),
    "closure": (RESOLVED, CLOSED),
}

STATUSES: tuple[str, ...] = tuple(s for phase in PHASE_ORDER for s in PHASES[phase])

TERMINAL = frozenset({RESOLVED, CLOSED})

# phases whose members may move between each other
_SIDEWAYS_PHASES = frozenset({"assignment", "execution"})

STATUS_ALIASES: dict[str, str] = {
    "new": NEW,
    "submitted": NEW,
    "open": NEW,
    "in review": IN_REVIEW,
    "in_review": IN_REVIEW,
    "assigned": IN_REVIEW,
    "pending quote": IN_REVIEW,
    "quoted": QUOTED,
    "quote received": QUOTED,
    "scheduled": SCHEDULED,
    "confirmed": SCHEDULED,
    "in progress": IN_PROGRESS,
    "in_progress": IN_PROGRESS,
    "started": IN_PROGRESS,
    "on hold": ON_HOLD,
    "on_hold": ON_HOLD,
    "paused": ON_HOLD,
    "resolved": RESOLVED,
    "completed": RESOLVED,
    "complete": RESOLVED,
    "closed": CLOSED,
}


def phase_of(status: str) -> str:
    for phase, members in PHASES.items():
        if status in members:
            return phase
    raise ValidationError(f"unknown case status {status!r}")


def normalize_status(value: Optional[str]) -> str:
    """Map any external status wording onto the canonical vocabulary."""
    key = (value or "").strip().lower()
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    raise ValidationError(f"unknown case status {value!r}")


def _build_edges() -> dict[str, frozenset[str]]:
    edges: dict[str, frozenset[str]] = {}
    for src in STATUSES:
        if src in TERMINAL:
            edges[src] = frozenset()
            continue
        src_rank = PHASE_ORDER.index(phase_of(src))
        targets: set[str] = set()
        for dst in STATUSES:
            if dst == src:
                continue
            dst_phase = phase_of(dst)
            dst_rank = PHASE_ORDER.index(dst_phase)
            if dst_rank > src_rank:
                targets.add(dst)
            elif dst_rank == src_rank and dst_phase in _SIDEWAYS_PHASES:
                targets.add(dst)
        edges[src] = frozenset(targets)
    return edges


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = _build_edges()


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if target not in STATUSES:
        raise ValidationError(f"unknown case status {target!r}")
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"case cannot move from {current!r} to {target!r}",
            meta={"from": current, "to": target},
        )
