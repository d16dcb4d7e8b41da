"""
Predictor data models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError

DEFAULT_WEIGHT = 70.0


class PredictorMode(str, Enum):
    """Which admission rounds count as a match."""
    SAFE = "safe"
    RISK = "risk"


@dataclass(frozen=True)
class EligibilityRow:
    """One closing-rank data point for an (college, course, branch, round, year)."""
    slug: str
    course: str
    branch: str
    round: str
    year: int
    closing_rank: int
    quota: str
    seat_type: Optional[str] = None
    sub_category: Optional[str] = None
    state: Optional[str] = None
    branch_weight: Optional[float] = None

    @property
    def group_key(self) -> Tuple[str, str, str]:
        return (self.slug, self.course, self.branch)

    @classmethod
    def from_document(cls, document: Dict[str, Any], state: Optional[str] = None) -> Optional["EligibilityRow"]:
        """Build a row from a cutoff document; None when it has no usable closing rank."""
        closing_rank = document.get("closingRank")
        if isinstance(closing_rank, bool) or not isinstance(closing_rank, (int, float)):
            return None
        try:
            year = int(document.get("year"))
        except (TypeError, ValueError):
            return None

        weight = document.get("branchWeight")
        return cls(
            slug=str(document.get("slug", "")),
            course=str(document.get("course", "")),
            branch=str(document.get("branch", "")),
            round=str(document.get("round", "")),
            year=year,
            closing_rank=int(closing_rank),
            quota=str(document.get("quota", "")),
            seat_type=document.get("seatType"),
            sub_category=document.get("subCategory"),
            state=document.get("state") or state,
            branch_weight=float(weight) if isinstance(weight, (int, float)) and not isinstance(weight, bool) else None,
        )


@dataclass(frozen=True)
class PredictionGroup:
    """All rows sharing one (slug, course, branch); lives for a single request."""
    slug: str
    course: str
    branch: str
    rows: Tuple[EligibilityRow, ...]


@dataclass(frozen=True)
class ScoredGroup:
    """A group with its representative row and composite score."""
    group: PredictionGroup
    representative: EligibilityRow
    rank_score: float
    final_score: float
    branch_weight: float
    college_weight: float


@dataclass
class PredictionPage:
    """One page of predictor results."""
    total_results: int
    page: int
    page_size: int
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalResults": self.total_results,
            "page": self.page,
            "pageSize": self.page_size,
            "results": self.results,
        }


class PredictRequest(BaseModel):
    """Request model for a college prediction."""
    model_config = ConfigDict(populate_by_name=True)

    rank: int = Field(..., ge=1, description="Candidate rank")
    exam_type: str = Field(..., alias="examType", min_length=1, description="Exam, e.g. JEE-Main")
    seat_type: str = Field(..., alias="seatType", min_length=1, description="Seat type / category label")
    sub_category: str = Field(..., alias="subCategory", min_length=1, description="Gender pool label")
    home_state: Optional[str] = Field(None, alias="homeState", description="Candidate's home state")
    mode: PredictorMode = Field(PredictorMode.SAFE, description="safe or risk")
    tag: Optional[str] = Field(None, description="Slug-prefix category, e.g. iit")
    fees_ceiling: Optional[float] = Field(None, alias="feesCeiling", ge=0, description="Maximum fee")
    page: int = Field(1, ge=1)
    page_size: int = Field(20, alias="pageSize", ge=1, le=100)

    @classmethod
    def parse(cls, params: Dict[str, Any]) -> "PredictRequest":
        """Validate raw parameters, raising the service's ValidationError."""
        try:
            return cls.model_validate({key: value for key, value in params.items() if value is not None})
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid predictor parameters",
                details={"errors": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in e.errors()
                ]}
            )
