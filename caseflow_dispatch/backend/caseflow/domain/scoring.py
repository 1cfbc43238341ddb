# backend/caseflow/domain/scoring.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .categories import category_matches, any_specialty_matches
from .policy import HANDS_OFF, HANDS_ON, BALANCED, Policy

# -----------------------------------------------------------------------------
# Candidate scoring
# -----------------------------------------------------------------------------
# Additive points, no normalization. Only the relative order matters, so the
# numbers are tuned per involvement mode: hands-on leans on trade fit,
# hands-off leans almost entirely on trust.
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreWeights:
    match: int
    available: int
    trusted: int
    favorite: int
    preferred: int = 10


WEIGHTS: dict[str, ScoreWeights] = {
    HANDS_ON: ScoreWeights(match=60, available=40, trusted=50, favorite=30),
    BALANCED: ScoreWeights(match=30, available=20, trusted=100, favorite=50),
    HANDS_OFF: ScoreWeights(match=30, available=20, trusted=200, favorite=150),
}

DEFAULT_LIMIT = 3


@dataclass(frozen=True)
class Candidate:
    """A contractor in an organization's pool, enriched for scoring."""

    id: str
    name: str
    user_id: Optional[str] = None
    vendor_id: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    response_time_hours: int = 24
    emergency_available: bool = False
    is_preferred: bool = False
    is_available: bool = True
    is_favorite: bool = False
    is_trusted: bool = False
    specialties: tuple[str, ...] = ()
    source: str = "vendor"  # vendor|linked


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: int
    note: str
    category_match: bool
    specialty_match: bool
    signals: dict[str, bool] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        c = self.candidate
        # score stays internal; callers only need the order and the note
        return {
            "id": c.id,
            "userId": c.user_id,
            "name": c.name,
            "category": c.category,
            "rating": c.rating,
            "responseTimeHours": c.response_time_hours,
            "emergencyAvailable": c.emergency_available,
            "isPreferred": c.is_preferred,
            "isTrusted": c.is_trusted,
            "isFavorite": c.is_favorite,
            "specialties": list(c.specialties),
            "mayaNote": self.note,
        }


def _note(c: Candidate, *, matched: bool) -> str:
    if c.is_trusted and c.is_favorite:
        return "Trusted & favorite contractor"
    if c.is_trusted:
        return "Trusted contractor per your policy"
    if c.is_favorite:
        return "One of your favorite contractors"
    if matched:
        label = c.category or ", ".join(c.specialties)
        return f"Specializes in {label}" if label else "Matches this job's trade"
    if c.is_available:
        return "Currently available"
    return ""


def score_candidate(case_category: Optional[str], c: Candidate, mode: str) -> ScoredCandidate:
    w = WEIGHTS.get(mode, WEIGHTS[BALANCED])

    category_match = category_matches(case_category, c.category)
    # specialties only count when the headline category missed
    specialty_match = (not category_match) and any_specialty_matches(case_category, c.specialties)
    matched = category_match or specialty_match

    score = 0
    if matched:
        score += w.match
    if c.is_available:
        score += w.available
    if c.is_trusted:
        score += w.trusted
    if c.is_favorite:
        score += w.favorite
    if c.is_preferred:
        score += w.preferred

    return ScoredCandidate(
        candidate=c,
        score=score,
        note=_note(c, matched=matched),
        category_match=category_match,
        specialty_match=specialty_match,
        signals={
            "match": matched,
            "available": c.is_available,
            "trusted": c.is_trusted,
            "favorite": c.is_favorite,
            "preferred": c.is_preferred,
        },
    )


def apply_trust_flags(candidates: list[Candidate], policy: Policy) -> list[Candidate]:
    """Recompute is_trusted against the policy (trusted set OR favorite)."""
    out: list[Candidate] = []
    for c in candidates:
        trusted = policy.trusts(c.id, c.vendor_id, c.user_id) or c.is_favorite
        out.append(c if trusted == c.is_trusted else replace(c, is_trusted=trusted))
    return out


def rank(
    case_category: Optional[str],
    candidates: list[Candidate],
    policy: Policy,
    *,
    limit: int = DEFAULT_LIMIT,
) -> list[ScoredCandidate]:
    """
    Deterministic, explainable shortlist.

    - hands-off: pool is narrowed to trusted/favorite candidates when any exist,
      otherwise the full pool is scored (never an empty list from filtering).
    - sorted by score descending; ties keep the input order (sorted() is stable).
    - capped at `limit`.
    """
    pool = list(candidates)
    if policy.involvement_mode == HANDS_OFF:
        preferred_pool = [c for c in pool if c.is_trusted or c.is_favorite]
        if preferred_pool:
            pool = preferred_pool

    scored = [score_candidate(case_category, c, policy.involvement_mode) for c in pool]
    scored = sorted(scored, key=lambda s: s.score, reverse=True)
    return scored[: max(0, int(limit))]
