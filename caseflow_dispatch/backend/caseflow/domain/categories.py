# backend/caseflow/domain/categories.py
from __future__ import annotations

from typing import Iterable, Optional

# Trade synonym groups. Two category strings are considered the same trade if
# one contains the other, or if both hit the same group below.
CATEGORY_ROOTS: dict[str, tuple[str, ...]] = {
    "electric": ("electrical", "electrician", "electrical & lighting", "wiring", "outlet", "circuit"),
    "plumb": ("plumbing", "plumber", "pipe", "drain", "faucet", "toilet"),
    "hvac": ("hvac", "heating", "cooling", "air conditioning", "furnace"),
    "appli": ("appliance", "appliances", "appliance repair"),
    "roof": ("roofing", "roofer", "roof repair", "roof"),
    "paint": ("painting", "painter", "paint"),
    "carpentry": ("carpentry", "carpenter", "woodwork"),
    "landscap": ("landscaping", "lawn", "garden"),
    "general": ("general maintenance", "handyman", "general"),
    "garage": ("garage", "garage door", "garage doors"),
}


def _norm(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def _hits(text: str, synonyms: Iterable[str]) -> bool:
    return any(syn in text or text in syn for syn in synonyms)


def root_for(category: Optional[str]) -> Optional[str]:
    """First synonym root a category string belongs to (None if unknown)."""
    c = _norm(category)
    if not c:
        return None
    for root, synonyms in CATEGORY_ROOTS.items():
        if _hits(c, synonyms):
            return root
    return None


def category_matches(a: Optional[str], b: Optional[str]) -> bool:
    """
    Case-insensitive trade match.

    >>> category_matches("Leaking kitchen faucet", "Plumbing")
    True
    """
    c1 = _norm(a)
    c2 = _norm(b)
    if not c1 or not c2:
        return False
    if c1 in c2 or c2 in c1:
        return True
    for synonyms in CATEGORY_ROOTS.values():
        if _hits(c1, synonyms) and _hits(c2, synonyms):
            return True
    return False


def any_specialty_matches(case_category: Optional[str], specialties: Iterable[str]) -> bool:
    return any(category_matches(case_category, s) for s in specialties or ())
