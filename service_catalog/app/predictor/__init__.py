"""
College predictor package.

Ranks (college, course, branch) options for a candidate rank from historical
closing ranks. The ranking is a fixed pipeline of pure stages so tie-break and
scoring rules can be exercised independently.

Modules of interest:
- models: Eligibility rows, groups, request validation and result pages.
- rules: Seat-type/sub-category synonyms, quota eligibility, round order.
- pipeline: filter, group, select, score, sort, post-filter, paginate.
- engine: Batched Store retrieval and cache-aside wrapping.
"""

from .engine import PredictionEngine
from .models import EligibilityRow, PredictionPage, PredictorMode, PredictRequest

__all__ = ["EligibilityRow", "PredictionEngine", "PredictionPage", "PredictorMode", "PredictRequest"]
