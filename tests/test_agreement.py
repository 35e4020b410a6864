"""Tests for backend.agreement."""

import math

import pytest

from backend.agreement import (
    KAPPA_NOT_APPLICABLE,
    NOT_RETAINED,
    RETAINED,
    analyze_delphi,
    analyze_face_validity,
    analyze_project,
    binary_vector,
    cohens_kappa,
    criterion_agreement_percent,
    delphi_cell_stats,
    format_fixed,
    interpret_kappa,
    item_agreement_percent,
    modified_kappa,
    overall_agreement,
    pearson_correlation,
    percentage,
    proportion,
    rating_band,
    round_half_up,
    yes_count,
)
from backend.config import AnalysisSettings
from backend.survey import Project, ProjectType

from conftest import make_items, make_response

ALL_YES = [1] * 10
ALL_NO = [0] * 10


# ---------------------------------------------------------------------------
# Rounding and ratios
# ---------------------------------------------------------------------------

class TestRounding:
    """Tests for round_half_up, percentage and proportion."""

    def test_half_rounds_up(self):
        assert round_half_up(0.125, 2) == 0.13
        assert round_half_up(2.5) == 3.0

    def test_format_fixed_rounds_half_up(self):
        assert format_fixed(0.125) == "0.13"
        assert format_fixed(2.5, 0) == "3"
        assert format_fixed(0.1235, 3) == "0.124"
        assert format_fixed(1) == "1.00"

    def test_percentage_of_zero_is_zero(self):
        assert percentage(3, 0) == 0.0

    def test_percentage_places(self):
        assert percentage(1, 3) == 33.33
        assert percentage(1, 3, places=1) == 33.3
        assert percentage(2, 3, places=0) == 67.0

    def test_proportion_of_zero_is_zero(self):
        assert proportion(0, 0) == 0.0
        assert proportion(1, 4) == 0.25


# ---------------------------------------------------------------------------
# Face validity building blocks
# ---------------------------------------------------------------------------

class TestFaceValidityCounts:
    """Tests for per-item and per-criterion Yes counting."""

    def test_yes_count_ignores_no_and_unanswered(self):
        expert = make_response("A", [[1, 0, None, 1]])
        assert yes_count(expert, 0, 4) == 2

    def test_criterion_agreement_is_whole_percent(self):
        experts = [
            make_response("A", [[1]]),
            make_response("B", [[0]]),
            make_response("C", [[1]]),
        ]
        assert criterion_agreement_percent(experts, 0, 1) == 67

    def test_criterion_agreement_without_experts(self):
        assert criterion_agreement_percent([], 0, 1) == 0

    def test_item_agreement(self):
        experts = [make_response("A", [ALL_YES]), make_response("B", [[1] * 5 + [0] * 5])]
        assert item_agreement_percent(experts, 0, 10) == 75

    def test_overall_agreement_all_yes_vs_all_no(self):
        experts = [make_response("A", [ALL_YES]), make_response("B", [ALL_NO])]
        assert overall_agreement(experts, 1, 10) == (10, 20, 50.0)

    def test_overall_equals_sum_of_item_counts(self):
        experts = [
            make_response("A", [ALL_YES, [1, 0] * 5, ALL_NO]),
            make_response("B", [[0, 1] * 5, ALL_YES, [1] * 3 + [0] * 7]),
        ]
        total_yes, total_possible, pct = overall_agreement(experts, 3, 10)
        per_item = sum(yes_count(e, i, 10) for e in experts for i in range(3))
        assert total_yes == per_item
        assert total_possible == 60
        assert pct == percentage(per_item, 60)

    def test_binary_vector_order(self):
        expert = make_response("A", [[1, 0], [None, 1]])
        assert binary_vector(expert, 2, 2) == [1, 0, 0, 1]


# ---------------------------------------------------------------------------
# cohens_kappa / interpret_kappa / modified_kappa
# ---------------------------------------------------------------------------

class TestCohensKappa:
    """Tests for cohens_kappa."""

    def test_identical_all_yes_is_one(self):
        """Pe == 1 short-circuits to a kappa of exactly 1."""
        result = cohens_kappa(ALL_YES, ALL_YES)
        assert result.kappa == 1.0
        assert result.expected == 1.0

    def test_identical_mixed_is_one(self):
        ratings = [1, 0, 1, 1, 0]
        assert cohens_kappa(ratings, ratings).kappa == pytest.approx(1.0)

    def test_complete_disagreement_is_not_positive(self):
        result = cohens_kappa(ALL_YES, ALL_NO)
        assert result.observed == 0.0
        assert result.expected == 0.0
        assert result.kappa == 0.0

    def test_balanced_disagreement_is_minus_one(self):
        result = cohens_kappa([1, 0, 1, 0], [0, 1, 0, 1])
        assert result.kappa == pytest.approx(-1.0)

    def test_partial_agreement(self):
        result = cohens_kappa([1, 1, 1, 0], [1, 1, 0, 0])
        assert result.observed == 0.75
        assert result.expected == 0.5
        assert result.kappa == pytest.approx(0.5)

    def test_empty_returns_none(self):
        assert cohens_kappa([], []) is None

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            cohens_kappa([1, 0], [1])


class TestInterpretKappa:
    """Tests for the Landis & Koch bands."""

    @pytest.mark.parametrize(
        "kappa, label",
        [
            (-0.2, "Poor agreement"),
            (0.0, "Slight agreement"),
            (0.19, "Slight agreement"),
            (0.20, "Fair agreement"),
            (0.45, "Moderate agreement"),
            (0.79, "Substantial agreement"),
            (0.80, "Almost perfect agreement"),
            (1.0, "Almost perfect agreement"),
        ],
    )
    def test_bands(self, kappa, label):
        assert interpret_kappa(kappa) == label

    def test_none_is_not_applicable(self):
        assert interpret_kappa(None) == KAPPA_NOT_APPLICABLE


class TestModifiedKappa:
    """Tests for modified_kappa."""

    def test_unanimous_panel_close_to_one(self):
        # 6 of 6 experts: Pc = 1/64
        assert modified_kappa(1.0, 6, 6) == pytest.approx((1 - 1 / 64) / (1 - 1 / 64))

    def test_half_agreement(self):
        pc = math.comb(4, 2) * 0.5 ** 4
        assert modified_kappa(0.5, 4, 2) == pytest.approx((0.5 - pc) / (1 - pc))

    def test_no_experts(self):
        assert modified_kappa(0.0, 0, 0) == 0.0


# ---------------------------------------------------------------------------
# analyze_face_validity
# ---------------------------------------------------------------------------

class TestAnalyzeFaceValidity:
    """Tests for analyze_face_validity."""

    def test_single_expert_kappa_not_applicable(self):
        analysis = analyze_face_validity(make_items(1), [make_response("A", [ALL_YES])])
        assert analysis.mean_kappa is None
        assert analysis.kappa_display == KAPPA_NOT_APPLICABLE
        assert analysis.kappa_interpretation == KAPPA_NOT_APPLICABLE
        assert analysis.pair_count == 0

    def test_all_yes_vs_all_no(self):
        experts = [make_response("A", [ALL_YES]), make_response("B", [ALL_NO])]
        analysis = analyze_face_validity(make_items(1), experts)
        assert analysis.overall_agreement == 50.0
        assert analysis.mean_kappa <= 0
        item = analysis.items[0]
        assert item.expert_yes_counts == [10, 0]
        assert item.expert_retained == [True, False]
        assert item.i_cvi == 0.5
        assert item.criterion_agreement == [50] * 10

    def test_perfect_agreement(self):
        experts = [make_response(n, [ALL_YES, ALL_YES]) for n in ("A", "B", "C")]
        analysis = analyze_face_validity(make_items(2), experts)
        assert analysis.mean_kappa == 1.0
        assert analysis.kappa_display == "1.000"
        assert analysis.pair_count == 3
        assert len(analysis.pairwise) == 3
        assert all(item.retained_by_all for item in analysis.items)
        assert analysis.s_cvi_ave == 1.0

    def test_retention_threshold_is_inclusive(self):
        eight = [1] * 8 + [0] * 2
        seven = [1] * 7 + [0] * 3
        experts = [make_response("A", [eight]), make_response("B", [seven])]
        analysis = analyze_face_validity(make_items(1), experts)
        assert analysis.items[0].expert_retained == [True, False]

    def test_custom_threshold(self):
        seven = [1] * 7 + [0] * 3
        analysis = analyze_face_validity(
            make_items(1),
            [make_response("A", [seven])],
            AnalysisSettings(retention_threshold=7),
        )
        assert analysis.items[0].expert_retained == [True]

    def test_no_responses(self):
        analysis = analyze_face_validity(make_items(2), [])
        assert analysis.overall_agreement == 0.0
        assert analysis.total_possible == 0
        assert analysis.items[0].agreement_percent == 0
        assert analysis.items[0].i_cvi == 0.0

    def test_percentages_in_range(self):
        experts = [
            make_response("A", [[1, 0] * 5, ALL_YES]),
            make_response("B", [ALL_NO, [0, 1] * 5]),
        ]
        analysis = analyze_face_validity(make_items(2), experts)
        assert 0 <= analysis.overall_agreement <= 100
        for item in analysis.items:
            assert 0 <= item.agreement_percent <= 100
            assert all(0 <= p <= 100 for p in item.criterion_agreement)
            assert 0 <= item.i_cvi <= 1

    def test_to_dict_status_labels(self):
        experts = [make_response("A", [ALL_YES]), make_response("B", [ALL_NO])]
        data = analyze_face_validity(make_items(1), experts).to_dict()
        assert data["mode"] == "face-validity"
        assert data["items"][0]["expert_status"] == [RETAINED, NOT_RETAINED]
        assert data["cohens_kappa"] == "0.000"


# ---------------------------------------------------------------------------
# Delphi
# ---------------------------------------------------------------------------

class TestRatingBand:
    """Tests for rating_band."""

    def test_default_bands(self):
        settings = AnalysisSettings()
        assert [rating_band(r, settings) for r in (1, 3, 4, 6, 7, 9)] == [
            "low", "low", "medium", "medium", "high", "high",
        ]

    def test_unanswered_has_no_band(self):
        assert rating_band(0, AnalysisSettings()) is None


class TestDelphiCellStats:
    """Tests for delphi_cell_stats."""

    def test_one_rating_per_band(self):
        stats = delphi_cell_stats([2, 5, 8], 0, 1, AnalysisSettings())
        assert stats.low_percent == 33.3
        assert stats.medium_percent == 33.3
        assert stats.high_percent == 33.3
        assert stats.i_cvi == pytest.approx(1 / 3)
        assert stats.median == 5.0
        assert stats.sd == pytest.approx(math.sqrt(6))
        data = stats.to_dict()
        assert data["i_cvi"] == "0.33"
        assert data["median"] == "5.00"
        assert data["sd"] == "2.45"
        assert data["cv"] == "0.49"

    def test_report_fields_round_half_up(self):
        stats = delphi_cell_stats([7] + [1] * 7, 0, 1, AnalysisSettings())
        assert stats.i_cvi == 0.125
        assert stats.to_dict()["i_cvi"] == "0.13"

    def test_unanswered_excluded_from_bands_but_counted_in_denominator(self):
        stats = delphi_cell_stats([0, 8, 9, 2], 0, 1, AnalysisSettings())
        assert stats.high_percent == 50.0
        assert stats.low_percent == 25.0
        assert stats.answered == 3
        assert stats.i_cvi == pytest.approx(2 / 3)
        assert stats.median == 8.0

    def test_unanimous_only_when_all_relevant(self):
        assert delphi_cell_stats([7, 8, 9], 0, 1, AnalysisSettings()).is_unanimous
        assert not delphi_cell_stats([7, 8, 6], 0, 1, AnalysisSettings()).is_unanimous

    def test_no_ratings(self):
        stats = delphi_cell_stats([0, 0], 0, 1, AnalysisSettings())
        assert stats.i_cvi == 0.0
        assert stats.median == 0.0
        assert stats.cv == 0.0
        assert not stats.is_unanimous

    def test_no_experts(self):
        stats = delphi_cell_stats([], 0, 1, AnalysisSettings())
        assert stats.low_percent == 0.0
        assert stats.sd == 0.0


class TestPearsonCorrelation:
    """Tests for pearson_correlation."""

    def test_perfect_positive(self):
        assert pearson_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert pearson_correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    def test_constant_side_is_zero(self):
        assert pearson_correlation([5, 5, 5], [1, 2, 3]) == 0.0

    def test_empty_is_zero(self):
        assert pearson_correlation([], []) == 0.0

    def test_partial_correlation(self):
        assert pearson_correlation([1, 2, 3, 4], [1, 3, 2, 4]) == pytest.approx(0.8)

    def test_single_value_is_zero(self):
        assert pearson_correlation([7], [9]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            pearson_correlation([1, 2], [1, 2, 3])


class TestAnalyzeDelphi:
    """Tests for analyze_delphi."""

    def test_grid_shape_and_s_cvi_ua(self):
        experts = [
            make_response("A", [[8, 9, 7, 8, 9], [2, 8, 8, 8, 8]]),
            make_response("B", [[9, 9, 8, 7, 7], [9, 8, 8, 8, 8]]),
        ]
        analysis = analyze_delphi(make_items(2), experts)
        assert len(analysis.cells) == 2
        assert all(len(row) == 5 for row in analysis.cells)
        # Criterion 1: item 1 unanimous, item 2 not
        assert analysis.s_cvi_ua[0] == 0.5
        assert analysis.s_cvi_ua[1:] == [1.0, 1.0, 1.0, 1.0]
        assert analysis.cell(1, 1).i_cvi == 0.5

    def test_item_consensus(self):
        experts = [
            make_response("A", [[8] * 5, [2] * 5]),
            make_response("B", [[7] * 5, [9] * 5]),
        ]
        analysis = analyze_delphi(make_items(2), experts)
        first, second = analysis.items
        assert first.mean == 7.5
        assert first.retained is True
        # Expert means 2 and 9: SD 3.5 exceeds the cut-off
        assert second.sd == 3.5
        assert second.retained is False

    def test_correlations(self):
        experts = [
            make_response("A", [[1, 2, 3, 4, 5]]),
            make_response("B", [[2, 4, 6, 8, 9]]),
            make_response("C", [[0, 0, 0, 0, 7]]),
        ]
        analysis = analyze_delphi(make_items(1), experts)
        # C shares a single rated cell with each expert, so only A-B is kept
        assert len(analysis.correlations) == 1
        assert analysis.correlations[0].expert_a == "A"
        assert analysis.mean_correlation == pytest.approx(
            analysis.correlations[0].correlation
        )

    def test_no_responses(self):
        analysis = analyze_delphi(make_items(2), [])
        assert analysis.s_cvi_ua == [0.0] * 5
        assert analysis.mean_correlation is None
        assert analysis.items[0].retained is False

    def test_proportions_in_range(self):
        experts = [
            make_response("A", [[1, 5, 9, 0, 7]]),
            make_response("B", [[9, 9, 2, 3, 7]]),
        ]
        analysis = analyze_delphi(make_items(1), experts)
        for cell in analysis.cells[0]:
            assert 0 <= cell.i_cvi <= 1
            assert 0 <= cell.low_percent + cell.medium_percent + cell.high_percent <= 100.1
        assert all(0 <= v <= 1 for v in analysis.s_cvi_ua)


class TestAnalyzeProject:
    """Tests for analyze_project dispatch."""

    def test_dispatches_by_type(self):
        project = Project(
            id="p1",
            name="Study",
            type=ProjectType.FACE_VALIDITY,
            owner="local",
            translated_scale_items=make_items(1),
            expert_responses=[make_response("A", [ALL_YES])],
        )
        assert analyze_project(project).mode == ProjectType.FACE_VALIDITY

        project.type = ProjectType.DELPHI
        project.expert_responses = [make_response("A", [[8] * 5])]
        assert analyze_project(project).mode == ProjectType.DELPHI
