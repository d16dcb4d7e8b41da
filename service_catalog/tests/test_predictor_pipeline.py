"""
Unit tests for predictor rules and pipeline stages.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.predictor import EligibilityRow, PredictorMode, PredictRequest
from service_catalog.app.predictor.pipeline import (
    clamp_weight, cutoff_map, final_score, group_rows, numeric_fee, paginate, post_filter,
    rank_score, run_pipeline, score_groups, select_representative, sort_scored,
)
from service_catalog.app.predictor.rules import (
    normalize_seat_type, normalize_sub_category, quota_eligible, round_allowed, round_sequence, slug_tag,
)
from shared.errors import ValidationError
from shared.test_helpers import TestDataFactory


def make_row(slug="iit-bombay", round="Round-1", closing_rank=500, year=2024, state=None, **overrides):
    document = TestDataFactory.cutoff(slug, round, closing_rank, year=year, **overrides)
    return EligibilityRow.from_document(document, state=state)


def single_group(*rows):
    groups = group_rows(rows)
    assert len(groups) == 1
    return groups[0]


@pytest.fixture
def colleges():
    return {college["slug"]: college for college in TestDataFactory.create_test_colleges()}


class TestNormalization:
    """Test cases for label normalization."""

    @pytest.mark.parametrize("label", ["OPEN", "open", "General", "  gen ", "UR"])
    def test_open_synonyms(self, label):
        canonical, labels = normalize_seat_type(label)

        assert canonical == "OPEN"
        assert "General" in labels
        assert labels == sorted(labels)

    def test_pwd_bucket_is_separate(self):
        assert normalize_seat_type("OPEN (PwD)")[0] == "OPEN-PWD"
        assert normalize_seat_type("obc-ncl (pwd)")[0] == "OBC-NCL-PWD"

    def test_unknown_seat_type(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_seat_type("VIP")

        assert "OPEN" in exc_info.value.details["allowed"]

    def test_sub_category(self):
        assert normalize_sub_category("gender-neutral")[0] == "GENDER-NEUTRAL"
        assert normalize_sub_category("Female-only (including Supernumerary)")[0] == "FEMALE-ONLY"

        with pytest.raises(ValidationError):
            normalize_sub_category("Mixed")


class TestRules:
    """Test cases for quota and round rules."""

    def test_all_india_always_eligible(self):
        assert quota_eligible("AI", None, None)
        assert quota_eligible("AI", "Goa", "Kerala")

    def test_home_state_quota(self):
        assert quota_eligible("HS", "Tamil Nadu", "tamil nadu")
        assert not quota_eligible("HS", "Tamil Nadu", "Kerala")
        assert not quota_eligible("HS", "Tamil Nadu", None)

    def test_other_state_quota(self):
        assert quota_eligible("OS", "Tamil Nadu", "Kerala")
        assert not quota_eligible("OS", "Tamil Nadu", "Tamil Nadu")
        assert not quota_eligible("OS", "Tamil Nadu", None)

    @pytest.mark.parametrize("quota", ["GO", "JK", "LA", "XX", ""])
    def test_blocked_and_unknown_quotas(self, quota):
        assert not quota_eligible(quota, "Goa", "Goa")

    def test_round_sequence(self):
        assert round_sequence("Round-1") == 1
        assert round_sequence("round-2") == 2
        assert round_sequence("CSAB-2") == 8
        assert round_sequence("Round-7") == 107
        assert round_sequence("Spot") == 999

    def test_round_allowed_by_mode(self):
        assert round_allowed("Round-6", PredictorMode.SAFE)
        assert not round_allowed("CSAB-1", PredictorMode.SAFE)
        assert round_allowed("CSAB-1", PredictorMode.RISK)
        assert round_allowed("Special", PredictorMode.RISK)
        assert not round_allowed("Round-7", PredictorMode.RISK)

    def test_slug_tag(self):
        assert slug_tag("iit-bombay") == "iit"
        assert slug_tag("NIT-Trichy") == "nit"
        assert slug_tag("bits") == "bits"


class TestEligibilityRow:
    """Test cases for building rows from cutoff documents."""

    def test_from_document(self):
        row = make_row(branchWeight=85)

        assert row.group_key == ("iit-bombay", "B.Tech", "Computer Science and Engineering")
        assert row.closing_rank == 500
        assert row.branch_weight == 85.0

    @pytest.mark.parametrize("closing_rank", [None, "500", True])
    def test_unusable_closing_rank(self, closing_rank):
        document = TestDataFactory.cutoff("iit-bombay", "Round-1", 500)
        document["closingRank"] = closing_rank

        assert EligibilityRow.from_document(document) is None

    def test_state_falls_back_to_college(self):
        document = TestDataFactory.cutoff("iit-bombay", "Round-1", 500)

        assert EligibilityRow.from_document(document, state="Maharashtra").state == "Maharashtra"

        document["state"] = "Goa"
        assert EligibilityRow.from_document(document, state="Maharashtra").state == "Goa"


class TestScoring:
    """Test cases for the scoring functions."""

    def test_rank_score_at_threshold(self):
        assert rank_score(600, 600) == 1.0

    def test_rank_score_zero_threshold(self):
        assert rank_score(5, 0) == 0.0
        assert rank_score(5, -10) == 0.0

    def test_rank_score_floor(self):
        assert rank_score(5000, 600) == 0.0

    def test_rank_score_monotonic_in_distance(self):
        scores = [rank_score(rank, 1000) for rank in (1000, 900, 700, 400, 100)]

        assert scores == sorted(scores, reverse=True)

    def test_clamp_weight(self):
        assert clamp_weight(None) == 70.0
        assert clamp_weight("90") == 70.0
        assert clamp_weight(150) == 100.0
        assert clamp_weight(-5) == 0.0
        assert clamp_weight(85) == 85.0

    @pytest.mark.parametrize("rank_component,branch,college", [
        (0.0, 0.0, 0.0), (1.0, 100.0, 100.0), (0.5, 70.0, 30.0),
    ])
    def test_final_score_bounds(self, rank_component, branch, college):
        assert 0.0 <= final_score(rank_component, branch, college) <= 1.0

    def test_final_score_weights(self):
        assert final_score(1.0, 100.0, 100.0) == pytest.approx(1.0)
        assert final_score(1.0, 70.0, 70.0) == pytest.approx(0.4 + 0.21 + 0.21)


class TestRepresentative:
    """Test cases for representative row selection."""

    def test_earliest_admitting_round(self):
        group = single_group(
            make_row(round="Round-1", closing_rank=500),
            make_row(round="Round-2", closing_rank=600),
            make_row(round="Round-1", closing_rank=450, year=2023),
        )

        representative = select_representative(group, 550, PredictorMode.SAFE)

        assert representative.round == "Round-2"
        assert representative.closing_rank == 600
        assert rank_score(550, representative.closing_rank) == pytest.approx(0.9167, abs=1e-4)

    def test_ties_go_to_earliest_year(self):
        group = single_group(
            make_row(round="Round-1", closing_rank=800, year=2024),
            make_row(round="Round-1", closing_rank=700, year=2023),
        )

        assert select_representative(group, 600, PredictorMode.SAFE).year == 2023

    def test_safe_mode_ignores_csab(self):
        group = single_group(make_row(round="CSAB-1", closing_rank=9000))

        assert select_representative(group, 8000, PredictorMode.SAFE) is None
        assert select_representative(group, 8000, PredictorMode.RISK).round == "CSAB-1"

    def test_risk_mode_falls_back_to_unknown_round(self):
        group = single_group(
            make_row(round="Spot", closing_rank=12000, year=2024),
            make_row(round="Spot", closing_rank=11000, year=2023),
        )

        representative = select_representative(group, 10000, PredictorMode.RISK)

        assert representative.year == 2023
        assert select_representative(group, 10000, PredictorMode.SAFE) is None

    def test_no_admitting_row(self):
        group = single_group(make_row(closing_rank=100))

        assert select_representative(group, 550, PredictorMode.RISK) is None


class TestPipeline:
    """Test cases for the full ranking pipeline."""

    @pytest.fixture
    def rows(self, colleges):
        rows = []
        for document in TestDataFactory.create_test_cutoffs():
            state = colleges[document["slug"]].get("state")
            rows.append(EligibilityRow.from_document(document, state=state))
        return rows

    def request(self, **params):
        base = {"rank": 550, "examType": "JEE-Main", "seatType": "OPEN", "subCategory": "Gender-Neutral"}
        base.update(params)
        return PredictRequest.parse(base)

    def test_ranked_results(self, rows, colleges):
        results = run_pipeline(rows, self.request(homeState="Tamil Nadu"), colleges)

        assert [(r["slug"], r["branch"]) for r in results] == [
            ("iit-bombay", "Computer Science and Engineering"),
            ("iit-bombay", "Electrical Engineering"),
            ("nit-trichy", "Computer Science and Engineering"),
        ]

        top = results[0]
        assert top["round"] == "Round-2"
        assert top["closingRank"] == 600
        assert top["rankScore"] == pytest.approx(0.9167, abs=1e-4)
        assert top["finalScore"] == pytest.approx(0.4 * (1 - 50 / 600) + 0.21 + 0.285)
        assert top["collegeName"] == "Indian Institute of Technology Bombay"
        assert top["location"] == "Mumbai, Maharashtra"
        assert top["tag"] == "iit"
        assert top["cutoffs"] == {"Round-1": {"2023": 450, "2024": 500}, "Round-2": {"2024": 600}}

        # Home state Tamil Nadu: only the HS row of nit-trichy applies.
        assert results[2]["quota"] == "HS"

    def test_eligible_groups_shrink_as_rank_worsens(self, rows, colleges):
        counts = [
            len(run_pipeline(rows, self.request(rank=rank, homeState="Tamil Nadu"), colleges))
            for rank in (100, 550, 2000, 5000, 7000)
        ]

        assert counts == [3, 3, 2, 1, 0]

    def test_scores_within_bounds(self, rows, colleges):
        for rank in (1, 550, 3000, 10000):
            for mode in ("safe", "risk"):
                request = self.request(rank=rank, mode=mode, homeState="Kerala")
                for result in run_pipeline(rows, request, colleges):
                    assert 0.0 <= result["rankScore"] <= 1.0
                    assert 0.0 <= result["finalScore"] <= 1.0

    def test_without_home_state_only_all_india(self, rows, colleges):
        results = run_pipeline(rows, self.request(), colleges)

        assert {r["slug"] for r in results} == {"iit-bombay"}

    def test_other_state_candidate(self, rows, colleges):
        results = run_pipeline(rows, self.request(homeState="Kerala", mode="risk"), colleges)
        nit = [r for r in results if r["slug"] == "nit-trichy"]

        assert len(nit) == 1
        assert nit[0]["quota"] == "OS"
        assert nit[0]["round"] == "Round-1"

    def test_tag_filter(self, rows, colleges):
        results = run_pipeline(rows, self.request(homeState="Tamil Nadu", tag="NIT"), colleges)

        assert [r["slug"] for r in results] == ["nit-trichy"]

    def test_fee_ceiling(self, rows, colleges):
        results = run_pipeline(rows, self.request(homeState="Tamil Nadu", feesCeiling="200000"), colleges)

        assert [r["slug"] for r in results] == ["nit-trichy"]

    def test_fee_ceiling_excludes_missing_fees(self, colleges):
        rows = [make_row(slug="nlsiu-bangalore", closing_rank=900)]
        request = self.request(feesCeiling="1000000")

        assert run_pipeline(rows, request, colleges) == []
        assert len(run_pipeline(rows, self.request(), colleges)) == 1

    def test_equal_scores_sorted_by_slug(self):
        rows = [make_row(slug="b-college"), make_row(slug="a-college")]
        scored = score_groups(group_rows(rows), 500, PredictorMode.SAFE, {})

        assert [item.group.slug for item in sort_scored(scored)] == ["a-college", "b-college"]

    def test_post_filter_with_string_fees(self):
        rows = [make_row(slug="x-one"), make_row(slug="x-two")]
        colleges = {"x-one": {"fees": "1,50,000"}, "x-two": {"fees": "on request"}}
        scored = score_groups(group_rows(rows), 500, PredictorMode.SAFE, colleges)

        kept = post_filter(scored, colleges, fees_ceiling=200000)

        assert [item.group.slug for item in kept] == ["x-one"]

    def test_numeric_fee(self):
        assert numeric_fee(1628) == 1628.0
        assert numeric_fee("2,30,000") == 230000.0
        assert numeric_fee("free") is None
        assert numeric_fee(True) is None

    def test_cutoff_map_keeps_most_lenient_duplicate(self):
        group = single_group(
            make_row(round="Round-1", closing_rank=500),
            make_row(round="Round-1", closing_rank=520),
        )

        assert cutoff_map(group) == {"Round-1": {"2024": 520}}


class TestPaginate:
    """Test cases for pagination."""

    def test_pages(self):
        items = list(range(45))

        assert paginate(items, 1, 20) == list(range(20))
        assert paginate(items, 3, 20) == list(range(40, 45))
        assert paginate(items, 4, 20) == []

    def test_pages_concatenate_to_full_list(self):
        items = list(range(45))
        pages = [paginate(items, page, 10) for page in range(1, 6)]

        assert sum(pages, []) == items


class TestPredictRequest:
    """Test cases for request validation."""

    def test_parse_coerces_strings(self):
        request = PredictRequest.parse({
            "rank": "550", "examType": "JEE-Main", "seatType": "OPEN",
            "subCategory": "Gender-Neutral", "mode": "risk", "pageSize": "50", "homeState": None,
        })

        assert request.rank == 550
        assert request.mode == PredictorMode.RISK
        assert request.page == 1
        assert request.page_size == 50
        assert request.home_state is None

    @pytest.mark.parametrize("overrides", [
        {"rank": None},
        {"rank": "0"},
        {"rank": "abc"},
        {"examType": ""},
        {"mode": "aggressive"},
        {"page": "0"},
        {"pageSize": "101"},
        {"feesCeiling": "-1"},
    ])
    def test_invalid_parameters(self, overrides):
        params = {"rank": "550", "examType": "JEE-Main", "seatType": "OPEN", "subCategory": "Gender-Neutral"}
        params.update(overrides)

        with pytest.raises(ValidationError) as exc_info:
            PredictRequest.parse(params)

        assert exc_info.value.details["errors"]
