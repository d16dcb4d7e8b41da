"""
Prediction pipeline stages.

Each stage is a pure function over immutable inputs:
filter -> group -> select representative -> score -> sort -> post-filter -> paginate.
"""

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import (
    DEFAULT_WEIGHT, EligibilityRow, PredictionGroup, PredictorMode, PredictRequest, ScoredGroup,
)
from .rules import quota_eligible, round_allowed, round_sequence, slug_tag

RANK_SCORE_WEIGHT = 0.4
BRANCH_WEIGHT_SHARE = 0.3
COLLEGE_WEIGHT_SHARE = 0.3

College = Mapping[str, Any]


def filter_by_quota(rows: Iterable[EligibilityRow], home_state: Optional[str]) -> Tuple[EligibilityRow, ...]:
    return tuple(row for row in rows if quota_eligible(row.quota, row.state, home_state))


def group_rows(rows: Iterable[EligibilityRow]) -> Tuple[PredictionGroup, ...]:
    """Group by (slug, course, branch), keeping first-seen order."""
    buckets: "OrderedDict[Tuple[str, str, str], List[EligibilityRow]]" = OrderedDict()
    for row in rows:
        buckets.setdefault(row.group_key, []).append(row)
    return tuple(
        PredictionGroup(slug=slug, course=course, branch=branch, rows=tuple(members))
        for (slug, course, branch), members in buckets.items()
    )


def select_representative(group: PredictionGroup, rank: int, mode: PredictorMode) -> Optional[EligibilityRow]:
    """Earliest allowed round whose closing rank admits ``rank``; ties go to the earliest year.

    In risk mode a group with no allowed-round match falls back to its
    earliest-by-year row that still admits ``rank``.
    """
    admitting = [row for row in group.rows if row.closing_rank >= rank]
    candidates = [row for row in admitting if round_allowed(row.round, mode)]
    if candidates:
        return min(candidates, key=lambda row: (round_sequence(row.round), row.year))

    if mode == PredictorMode.RISK and admitting:
        return min(admitting, key=lambda row: (row.year, round_sequence(row.round)))
    return None


def rank_score(rank: int, threshold: int) -> float:
    """1.0 when rank equals the threshold, falling linearly to 0 with distance."""
    if threshold <= 0:
        return 0.0
    return max(0.0, 1.0 - abs(rank - threshold) / threshold)


def clamp_weight(weight: Any) -> float:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        return DEFAULT_WEIGHT
    return min(100.0, max(0.0, float(weight)))


def final_score(rank_component: float, branch_weight: float, college_weight: float) -> float:
    return (
        rank_component * RANK_SCORE_WEIGHT
        + (branch_weight / 100) * BRANCH_WEIGHT_SHARE
        + (college_weight / 100) * COLLEGE_WEIGHT_SHARE
    )


def score_groups(
    groups: Iterable[PredictionGroup],
    rank: int,
    mode: PredictorMode,
    colleges: Mapping[str, College],
) -> Tuple[ScoredGroup, ...]:
    """Score every group that has a representative; groups without one are dropped."""
    scored = []
    for group in groups:
        representative = select_representative(group, rank, mode)
        if representative is None:
            continue

        branch_weight = clamp_weight(representative.branch_weight)
        college_weight = clamp_weight(colleges.get(group.slug, {}).get("collegeWeight"))
        rank_component = rank_score(rank, representative.closing_rank)
        scored.append(ScoredGroup(
            group=group,
            representative=representative,
            rank_score=rank_component,
            final_score=final_score(rank_component, branch_weight, college_weight),
            branch_weight=branch_weight,
            college_weight=college_weight,
        ))
    return tuple(scored)


def sort_scored(scored: Iterable[ScoredGroup]) -> Tuple[ScoredGroup, ...]:
    """Best score first; equal scores in (slug, course, branch) order so pages are stable."""
    return tuple(sorted(
        scored,
        key=lambda item: (-item.final_score, item.group.slug, item.group.course, item.group.branch)
    ))


def numeric_fee(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def post_filter(
    scored: Iterable[ScoredGroup],
    colleges: Mapping[str, College],
    tag: Optional[str] = None,
    fees_ceiling: Optional[float] = None,
) -> Tuple[ScoredGroup, ...]:
    """Apply the optional tag and fee-ceiling filters.

    With a ceiling set, colleges whose fee is missing or non-numeric are excluded.
    """
    kept = []
    for item in scored:
        if tag and slug_tag(item.group.slug) != tag.strip().lower():
            continue
        if fees_ceiling is not None:
            fee = numeric_fee(colleges.get(item.group.slug, {}).get("fees"))
            if fee is None or fee > fees_ceiling:
                continue
        kept.append(item)
    return tuple(kept)


def cutoff_map(group: PredictionGroup) -> Dict[str, Dict[str, int]]:
    """``{round: {year: closingRank}}`` over every row in the group, rounds in calendar order.

    Rows sharing a round and year keep the most lenient closing rank.
    """
    cutoffs: Dict[str, Dict[str, int]] = {}
    for row in sorted(group.rows, key=lambda row: (round_sequence(row.round), row.round, row.year)):
        years = cutoffs.setdefault(row.round, {})
        year = str(row.year)
        years[year] = max(years.get(year, row.closing_rank), row.closing_rank)
    return cutoffs


def build_result(item: ScoredGroup, college: College) -> Dict[str, Any]:
    """JSON-native result record for one group."""
    representative = item.representative
    location = ", ".join(part for part in (college.get("location"), college.get("state")) if part)
    return {
        "slug": item.group.slug,
        "collegeName": college.get("name") or item.group.slug,
        "location": location,
        "nirfRank": college.get("nirf"),
        "fees": college.get("fees"),
        "instituteType": college.get("instituteType"),
        "tag": slug_tag(item.group.slug),
        "course": item.group.course,
        "branch": item.group.branch,
        "round": representative.round,
        "year": representative.year,
        "quota": representative.quota,
        "closingRank": representative.closing_rank,
        "rankScore": item.rank_score,
        "finalScore": item.final_score,
        "branchWeight": item.branch_weight,
        "collegeWeight": item.college_weight,
        "cutoffs": cutoff_map(item.group),
    }


def run_pipeline(
    rows: Iterable[EligibilityRow],
    request: PredictRequest,
    colleges: Mapping[str, College],
) -> List[Dict[str, Any]]:
    """Every stage except pagination; the result is the full ranked list."""
    eligible = filter_by_quota(rows, request.home_state)
    groups = group_rows(eligible)
    scored = score_groups(groups, request.rank, request.mode, colleges)
    ranked = post_filter(sort_scored(scored), colleges, request.tag, request.fees_ceiling)
    return [build_result(item, colleges.get(item.group.slug, {})) for item in ranked]


def paginate(items: Sequence[Any], page: int, page_size: int) -> List[Any]:
    """1-indexed page slice; pages past the end are empty."""
    start = (page - 1) * page_size
    return list(items[start:start + page_size])
