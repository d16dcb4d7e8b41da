"""
Normalization and eligibility rules for the college predictor.

Seat-type and sub-category labels arrive in many spellings; each collapses to
one canonical bucket, and the Store is queried with every raw spelling of that
bucket. Quota eligibility and round ordering are fixed rule tables.
"""

import re
from typing import Dict, List, Optional, Tuple

from shared.errors import ValidationError
from .models import PredictorMode

SEAT_TYPE_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "OPEN": ("OPEN", "GEN", "General", "UR"),
    "OPEN-PWD": ("OPEN-PWD", "OPEN (PwD)", "GEN-PwD", "General-PwD"),
    "OBC-NCL": ("OBC-NCL", "OBC", "OBC-NCL (NCL as per Central List)"),
    "OBC-NCL-PWD": ("OBC-NCL-PWD", "OBC-NCL (PwD)", "OBC-PwD"),
    "EWS": ("EWS", "GEN-EWS"),
    "EWS-PWD": ("EWS-PWD", "EWS (PwD)", "GEN-EWS-PwD"),
    "SC": ("SC",),
    "SC-PWD": ("SC-PWD", "SC (PwD)"),
    "ST": ("ST",),
    "ST-PWD": ("ST-PWD", "ST (PwD)"),
}

SUB_CATEGORY_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "GENDER-NEUTRAL": ("GENDER-NEUTRAL", "Gender-Neutral", "Gender Neutral", "Neutral"),
    "FEMALE-ONLY": (
        "FEMALE-ONLY",
        "Female-only",
        "Female",
        "Female-only (including Supernumerary)",
    ),
}

ALWAYS_ELIGIBLE_QUOTAS = frozenset({"AI"})
HOME_STATE_QUOTAS = frozenset({"HS"})
OTHER_STATE_QUOTAS = frozenset({"OS"})
BLOCKED_QUOTAS = frozenset({"GO", "JK", "LA"})

SAFE_ROUNDS: Tuple[str, ...] = ("Round-1", "Round-2", "Round-3", "Round-4", "Round-5", "Round-6")
RISK_ROUNDS: Tuple[str, ...] = SAFE_ROUNDS + ("CSAB-1", "CSAB-2", "CSAB-3", "Special")

UNKNOWN_ROUND_BASE = 100
UNKNOWN_ROUND_LAST = 999

_DIGITS = re.compile(r"(\d+)")


def _label(value: str) -> str:
    return " ".join(value.strip().upper().split())


def _build_index(synonyms: Dict[str, Tuple[str, ...]]) -> Dict[str, str]:
    index = {}
    for canonical, labels in synonyms.items():
        for label in labels + (canonical,):
            index[_label(label)] = canonical
    return index


_SEAT_TYPE_INDEX = _build_index(SEAT_TYPE_SYNONYMS)
_SUB_CATEGORY_INDEX = _build_index(SUB_CATEGORY_SYNONYMS)


def _normalize(value: str, index: Dict[str, str], synonyms: Dict[str, Tuple[str, ...]], name: str) -> Tuple[str, List[str]]:
    canonical = index.get(_label(value))
    if canonical is None:
        raise ValidationError(
            f"Unknown {name}: {value}",
            details={"field": name, "allowed": sorted(synonyms)}
        )
    return canonical, sorted(set(synonyms[canonical]))


def normalize_seat_type(value: str) -> Tuple[str, List[str]]:
    """Canonical seat-type bucket and every raw label stored under it."""
    return _normalize(value, _SEAT_TYPE_INDEX, SEAT_TYPE_SYNONYMS, "seatType")


def normalize_sub_category(value: str) -> Tuple[str, List[str]]:
    """Canonical sub-category bucket and every raw label stored under it."""
    return _normalize(value, _SUB_CATEGORY_INDEX, SUB_CATEGORY_SYNONYMS, "subCategory")


def quota_eligible(quota: str, row_state: Optional[str], home_state: Optional[str]) -> bool:
    """Whether a row's quota is usable by a candidate from ``home_state``."""
    quota = _label(quota or "")
    if quota in BLOCKED_QUOTAS:
        return False
    if quota in ALWAYS_ELIGIBLE_QUOTAS:
        return True

    same_state = bool(home_state and row_state) and _label(home_state) == _label(row_state)
    if quota in HOME_STATE_QUOTAS:
        return same_state
    if quota in OTHER_STATE_QUOTAS:
        return bool(home_state) and not same_state
    return False


def allowed_rounds(mode: PredictorMode) -> Tuple[str, ...]:
    return SAFE_ROUNDS if mode == PredictorMode.SAFE else RISK_ROUNDS


def round_sequence(label: str) -> int:
    """Position in the admission calendar; unknown labels come after every known one."""
    for position, known in enumerate(RISK_ROUNDS, start=1):
        if _label(known) == _label(label):
            return position

    match = _DIGITS.search(label or "")
    if match is None:
        return UNKNOWN_ROUND_LAST
    return UNKNOWN_ROUND_BASE + int(match.group(1))


def slug_tag(slug: str) -> str:
    """Category derived from the slug prefix, e.g. ``iit-bombay`` -> ``iit``."""
    return slug.split("-", 1)[0].lower()


def round_allowed(label: str, mode: PredictorMode) -> bool:
    """Whether ``label`` belongs to the mode's ordered round set."""
    return round_sequence(label) <= len(allowed_rounds(mode))
