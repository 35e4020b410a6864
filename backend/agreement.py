"""Inter-rater agreement and content validity statistics.

Everything here is a pure function of a project snapshot: nothing is cached,
persisted or mutated. Zero denominators are handled with explicit branches
that return the documented fallback value instead of NaN.

Face Validity (binary Yes/No per item x criterion):
    item/criterion agreement percentages, per-expert retention, overall
    agreement, mean pairwise Cohen's kappa, item I-CVI with Polit's
    modified kappa, and S-CVI/Ave.

Delphi (ordinal 1-9 per item x criterion, 0 = unanswered):
    low/medium/high band shares, I-CVI, median, population SD, CV,
    S-CVI/UA per criterion, item consensus, and pairwise Pearson correlation.
"""

import logging
import math
import statistics
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from itertools import combinations
from typing import Any, Sequence

from scipy.stats import pearsonr

from .config import (
    DELPHI_CRITERIA,
    DELPHI_UNANSWERED,
    FACE_VALIDITY_CRITERIA,
    AnalysisSettings,
)
from .survey import ExpertResponse, Project, ProjectType, ScaleItem

logger = logging.getLogger(__name__)

KAPPA_NOT_APPLICABLE = "N/A"

RETAINED = "RETAINED"
NOT_RETAINED = "NOT RETAINED"

# Upper bounds (exclusive) of the Landis & Koch bands, checked in order
KAPPA_BANDS = [
    (0.0, "Poor agreement"),
    (0.20, "Slight agreement"),
    (0.40, "Fair agreement"),
    (0.60, "Moderate agreement"),
    (0.80, "Substantial agreement"),
]
KAPPA_TOP_BAND = "Almost perfect agreement"


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a report would (0.5 goes up), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_fixed(value: float, places: int = 2) -> str:
    """Fixed-point text of a half-up rounded value, like JavaScript's toFixed."""
    return f"{round_half_up(value, places):.{places}f}"


def percentage(part: int, whole: int, places: int = 2) -> float:
    """part / whole as a percentage; 0.0 when whole is 0."""
    if whole == 0:
        return 0.0
    return round_half_up(part / whole * 100, places)


def proportion(part: int, whole: int) -> float:
    """part / whole; 0.0 when whole is 0."""
    if whole == 0:
        return 0.0
    return part / whole


# ---------------------------------------------------------------------------
# Face validity
# ---------------------------------------------------------------------------

def is_yes(value: int | None) -> bool:
    return value == 1


def yes_count(response: ExpertResponse, item_index: int, criterion_count: int) -> int:
    """Number of criteria an expert answered Yes for one item."""
    return sum(
        1
        for criterion_id in range(1, criterion_count + 1)
        if is_yes(response.ratings.get(item_index, criterion_id))
    )


def is_retained(count: int, threshold: int) -> bool:
    return count >= threshold


def criterion_agreement_percent(
    responses: Sequence[ExpertResponse], item_index: int, criterion_id: int
) -> int:
    """Share of experts answering Yes for one (item, criterion), whole percent."""
    yes = sum(1 for r in responses if is_yes(r.ratings.get(item_index, criterion_id)))
    return int(percentage(yes, len(responses), places=0))


def item_agreement_percent(
    responses: Sequence[ExpertResponse], item_index: int, criterion_count: int
) -> int:
    """Share of (expert x criterion) cells answered Yes for one item, whole percent."""
    yes = sum(yes_count(r, item_index, criterion_count) for r in responses)
    return int(percentage(yes, len(responses) * criterion_count, places=0))


def overall_agreement(
    responses: Sequence[ExpertResponse], item_count: int, criterion_count: int
) -> tuple[int, int, float]:
    """
    Total Yes answers over every item, expert and criterion.

    Returns:
        Tuple of (total_yes, total_possible, percentage to two decimals)
    """
    total_possible = item_count * len(responses) * criterion_count
    total_yes = sum(
        yes_count(r, item_index, criterion_count)
        for r in responses
        for item_index in range(item_count)
    )
    return total_yes, total_possible, percentage(total_yes, total_possible)


def binary_vector(response: ExpertResponse, item_count: int, criterion_count: int) -> list[int]:
    """Flatten an expert's answers into 1/0 values in (item, criterion) order."""
    return [
        1 if is_yes(response.ratings.get(item_index, criterion_id)) else 0
        for item_index in range(item_count)
        for criterion_id in range(1, criterion_count + 1)
    ]


@dataclass(frozen=True)
class KappaResult:
    """Cohen's kappa between two raters."""

    observed: float
    expected: float
    kappa: float


def cohens_kappa(ratings_a: Sequence[int], ratings_b: Sequence[int]) -> KappaResult | None:
    """
    Cohen's kappa for two binary raters using per-rater marginals.

    Args:
        ratings_a: 1/0 answers of the first rater
        ratings_b: 1/0 answers of the second rater, same cells in the same order

    Returns:
        KappaResult, or None when there are no cells to compare

    Raises:
        ValueError: If the two sequences differ in length
    """
    if len(ratings_a) != len(ratings_b):
        raise ValueError("Both raters must answer the same cells")
    n = len(ratings_a)
    if n == 0:
        return None

    agreements = sum(1 for a, b in zip(ratings_a, ratings_b) if a == b)
    yes_a = sum(ratings_a)
    yes_b = sum(ratings_b)

    observed = agreements / n
    # Integer numerator keeps the Pe == 1 test exact
    expected_numerator = yes_a * yes_b + (n - yes_a) * (n - yes_b)
    expected = expected_numerator / (n * n)

    if expected_numerator == n * n:
        return KappaResult(observed=observed, expected=1.0, kappa=1.0)
    return KappaResult(
        observed=observed,
        expected=expected,
        kappa=(observed - expected) / (1 - expected),
    )


def interpret_kappa(kappa: float | None) -> str:
    """Landis & Koch label for a kappa value."""
    if kappa is None:
        return KAPPA_NOT_APPLICABLE
    for upper, label in KAPPA_BANDS:
        if kappa < upper:
            return label
    return KAPPA_TOP_BAND


def modified_kappa(i_cvi: float, expert_count: int, agreeing: int) -> float:
    """Polit, Beck & Owen's kappa*, I-CVI adjusted for chance agreement."""
    if expert_count == 0:
        return 0.0
    chance = math.comb(expert_count, agreeing) * 0.5 ** expert_count
    return (i_cvi - chance) / (1 - chance)


@dataclass(frozen=True)
class PairwiseKappa:
    """Kappa for one unordered pair of experts."""

    expert_a: str
    expert_b: str
    observed: float
    expected: float
    kappa: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "expert_a": self.expert_a,
            "expert_b": self.expert_b,
            "observed": round_half_up(self.observed, 3),
            "expected": round_half_up(self.expected, 3),
            "kappa": round_half_up(self.kappa, 3),
        }


@dataclass(frozen=True)
class FaceItemStats:
    """Face validity statistics for one translated item."""

    item_index: int
    item_text: str
    criterion_agreement: list[int]
    expert_yes_counts: list[int]
    expert_retained: list[bool]
    yes_total: int
    possible_total: int
    agreement_percent: int
    i_cvi: float
    modified_kappa: float

    @property
    def retaining_experts(self) -> int:
        return sum(self.expert_retained)

    @property
    def retained_by_all(self) -> bool:
        return bool(self.expert_retained) and all(self.expert_retained)

    @property
    def retained_by_majority(self) -> bool:
        return bool(self.expert_retained) and self.i_cvi >= 0.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_index": self.item_index,
            "item_text": self.item_text,
            "criterion_agreement": self.criterion_agreement,
            "expert_yes_counts": self.expert_yes_counts,
            "expert_status": [RETAINED if r else NOT_RETAINED for r in self.expert_retained],
            "yes_total": self.yes_total,
            "possible_total": self.possible_total,
            "agreement_percent": self.agreement_percent,
            "i_cvi": round_half_up(self.i_cvi, 2),
            "modified_kappa": round_half_up(self.modified_kappa, 2),
            "retained_by_all": self.retained_by_all,
            "retained_by_majority": self.retained_by_majority,
        }


@dataclass(frozen=True)
class FaceValidityAnalysis:
    """Complete face validity result for a project."""

    item_count: int
    expert_count: int
    criterion_count: int
    retention_threshold: int
    total_yes: int
    total_possible: int
    overall_agreement: float
    mean_kappa: float | None
    pairwise: list[PairwiseKappa] = field(default_factory=list)
    items: list[FaceItemStats] = field(default_factory=list)
    s_cvi_ave: float = 0.0

    mode = ProjectType.FACE_VALIDITY

    @property
    def kappa_display(self) -> str:
        if self.mean_kappa is None:
            return KAPPA_NOT_APPLICABLE
        return format_fixed(self.mean_kappa, 3)

    @property
    def kappa_interpretation(self) -> str:
        return interpret_kappa(self.mean_kappa)

    @property
    def pair_count(self) -> int:
        return math.comb(self.expert_count, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "item_count": self.item_count,
            "expert_count": self.expert_count,
            "criterion_count": self.criterion_count,
            "retention_threshold": self.retention_threshold,
            "total_yes": self.total_yes,
            "total_possible": self.total_possible,
            "overall_agreement": self.overall_agreement,
            "cohens_kappa": self.kappa_display,
            "kappa_interpretation": self.kappa_interpretation,
            "pair_count": self.pair_count,
            "pairwise": [p.to_dict() for p in self.pairwise],
            "items": [i.to_dict() for i in self.items],
            "s_cvi_ave": round_half_up(self.s_cvi_ave, 2),
        }


def pairwise_kappas(
    responses: Sequence[ExpertResponse], item_count: int, criterion_count: int
) -> list[PairwiseKappa]:
    """Kappa for every unordered pair of experts; empty with fewer than 2."""
    vectors = [
        (r.expert_name or r.expert_id, binary_vector(r, item_count, criterion_count))
        for r in responses
    ]
    pairs = []
    for (name_a, vector_a), (name_b, vector_b) in combinations(vectors, 2):
        result = cohens_kappa(vector_a, vector_b)
        if result is None:
            continue
        pairs.append(PairwiseKappa(
            expert_a=name_a,
            expert_b=name_b,
            observed=result.observed,
            expected=result.expected,
            kappa=result.kappa,
        ))
    return pairs


def analyze_face_validity(
    items: Sequence[ScaleItem],
    responses: Sequence[ExpertResponse],
    settings: AnalysisSettings | None = None,
    criterion_count: int = len(FACE_VALIDITY_CRITERIA),
) -> FaceValidityAnalysis:
    """
    Compute every face validity statistic for a snapshot of a project.

    Args:
        items: Translated scale items, in rating order
        responses: Expert submissions
        settings: Thresholds (defaults if None)
        criterion_count: Number of rubric criteria

    Returns:
        FaceValidityAnalysis
    """
    settings = settings or AnalysisSettings()
    item_count = len(items)
    expert_count = len(responses)

    item_stats = []
    for item_index, item in enumerate(items):
        counts = [yes_count(r, item_index, criterion_count) for r in responses]
        retained = [is_retained(c, settings.retention_threshold) for c in counts]
        i_cvi = proportion(sum(retained), expert_count)
        item_stats.append(FaceItemStats(
            item_index=item_index,
            item_text=item.text,
            criterion_agreement=[
                criterion_agreement_percent(responses, item_index, criterion_id)
                for criterion_id in range(1, criterion_count + 1)
            ],
            expert_yes_counts=counts,
            expert_retained=retained,
            yes_total=sum(counts),
            possible_total=expert_count * criterion_count,
            agreement_percent=item_agreement_percent(responses, item_index, criterion_count),
            i_cvi=i_cvi,
            modified_kappa=modified_kappa(i_cvi, expert_count, sum(retained)),
        ))

    total_yes, total_possible, overall = overall_agreement(responses, item_count, criterion_count)

    pairs = pairwise_kappas(responses, item_count, criterion_count)
    mean_kappa = statistics.fmean(p.kappa for p in pairs) if pairs else None

    s_cvi_ave = statistics.fmean(s.i_cvi for s in item_stats) if item_stats else 0.0

    logger.debug(
        "Face validity analysis: %d items, %d experts, kappa=%s",
        item_count,
        expert_count,
        mean_kappa,
    )

    return FaceValidityAnalysis(
        item_count=item_count,
        expert_count=expert_count,
        criterion_count=criterion_count,
        retention_threshold=settings.retention_threshold,
        total_yes=total_yes,
        total_possible=total_possible,
        overall_agreement=overall,
        mean_kappa=mean_kappa,
        pairwise=pairs,
        items=item_stats,
        s_cvi_ave=s_cvi_ave,
    )


# ---------------------------------------------------------------------------
# Delphi
# ---------------------------------------------------------------------------

def delphi_rating(response: ExpertResponse, item_index: int, criterion_id: int) -> int:
    """Rating for one cell; missing cells read as unanswered."""
    value = response.ratings.get(item_index, criterion_id)
    return DELPHI_UNANSWERED if value is None else value


def rating_band(rating: int, settings: AnalysisSettings) -> str | None:
    """'low', 'medium' or 'high'; None for an unanswered rating."""
    if rating == DELPHI_UNANSWERED:
        return None
    if rating <= settings.delphi_low_max:
        return "low"
    if rating <= settings.delphi_medium_max:
        return "medium"
    return "high"


@dataclass(frozen=True)
class DelphiCellStats:
    """Delphi statistics for one (item, criterion) across experts."""

    item_index: int
    criterion_id: int
    ratings: tuple[int, ...]
    low_percent: float
    medium_percent: float
    high_percent: float
    relevant: int
    answered: int
    i_cvi: float
    median: float
    sd: float
    cv: float

    @property
    def is_unanimous(self) -> bool:
        """True when I-CVI is exactly 1.00."""
        return self.answered > 0 and self.relevant == self.answered

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_index": self.item_index,
            "criterion_id": self.criterion_id,
            "low_percent": self.low_percent,
            "medium_percent": self.medium_percent,
            "high_percent": self.high_percent,
            "answered": self.answered,
            "i_cvi": format_fixed(self.i_cvi),
            "median": format_fixed(self.median),
            "sd": format_fixed(self.sd),
            "cv": format_fixed(self.cv),
        }


def delphi_cell_stats(
    ratings: Sequence[int],
    item_index: int,
    criterion_id: int,
    settings: AnalysisSettings,
) -> DelphiCellStats:
    """
    Band shares, I-CVI and spread for one cell's ratings.

    Band shares use every expert as the denominator; I-CVI, median, SD and
    CV use only the experts who gave a rating.
    """
    expert_count = len(ratings)
    answered = [r for r in ratings if r != DELPHI_UNANSWERED]
    bands = [rating_band(r, settings) for r in answered]
    relevant = sum(1 for r in answered if r >= settings.relevance_threshold)

    if answered:
        median = float(statistics.median(answered))
        mean = statistics.fmean(answered)
        sd = statistics.pstdev(answered)
    else:
        median = mean = sd = 0.0
    cv = sd / mean if mean != 0 else 0.0

    return DelphiCellStats(
        item_index=item_index,
        criterion_id=criterion_id,
        ratings=tuple(ratings),
        low_percent=percentage(bands.count("low"), expert_count, places=1),
        medium_percent=percentage(bands.count("medium"), expert_count, places=1),
        high_percent=percentage(bands.count("high"), expert_count, places=1),
        relevant=relevant,
        answered=len(answered),
        i_cvi=proportion(relevant, len(answered)),
        median=median,
        sd=sd,
        cv=cv,
    )


@dataclass(frozen=True)
class DelphiItemConsensus:
    """Consensus on one item from each expert's mean rating across criteria."""

    item_index: int
    item_text: str
    rated_by: int
    mean: float
    sd: float
    cv: float
    retained: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_index": self.item_index,
            "item_text": self.item_text,
            "rated_by": self.rated_by,
            "mean": round_half_up(self.mean, 2),
            "sd": round_half_up(self.sd, 2),
            "cv": round_half_up(self.cv, 2),
            "status": RETAINED if self.retained else NOT_RETAINED,
        }


def item_consensus(
    responses: Sequence[ExpertResponse],
    item_index: int,
    item_text: str,
    criterion_count: int,
    settings: AnalysisSettings,
) -> DelphiItemConsensus:
    expert_means = []
    for response in responses:
        answered = [
            rating
            for criterion_id in range(1, criterion_count + 1)
            if (rating := delphi_rating(response, item_index, criterion_id)) != DELPHI_UNANSWERED
        ]
        if answered:
            expert_means.append(statistics.fmean(answered))

    if expert_means:
        mean = statistics.fmean(expert_means)
        sd = statistics.pstdev(expert_means)
    else:
        mean = sd = 0.0
    cv = sd / mean if mean != 0 else 0.0

    return DelphiItemConsensus(
        item_index=item_index,
        item_text=item_text,
        rated_by=len(expert_means),
        mean=mean,
        sd=sd,
        cv=cv,
        retained=bool(expert_means)
        and mean >= settings.consensus_min_mean
        and sd <= settings.consensus_max_sd,
    )


@dataclass(frozen=True)
class ExpertCorrelation:
    """Pearson correlation between two experts over cells both rated."""

    expert_a: str
    expert_b: str
    shared_cells: int
    correlation: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "expert_a": self.expert_a,
            "expert_b": self.expert_b,
            "shared_cells": self.shared_cells,
            "correlation": round_half_up(self.correlation, 3),
        }


def pearson_correlation(values_a: Sequence[float], values_b: Sequence[float]) -> float:
    """Pearson r; 0.0 with fewer than 2 values or when either side is constant."""
    if len(values_a) != len(values_b):
        raise ValueError("Both experts must rate the same cells")
    # pearsonr yields NaN for these inputs
    if len(values_a) < 2:
        return 0.0
    if min(values_a) == max(values_a) or min(values_b) == max(values_b):
        return 0.0
    r, _ = pearsonr(values_a, values_b)
    return float(r)


def expert_correlations(
    responses: Sequence[ExpertResponse], item_count: int, criterion_count: int
) -> list[ExpertCorrelation]:
    """Pairwise correlations; pairs sharing fewer than 2 rated cells are skipped."""
    cells = [
        (item_index, criterion_id)
        for item_index in range(item_count)
        for criterion_id in range(1, criterion_count + 1)
    ]
    results = []
    for first, second in combinations(responses, 2):
        shared = [
            (delphi_rating(first, i, c), delphi_rating(second, i, c))
            for i, c in cells
        ]
        shared = [(a, b) for a, b in shared if a != DELPHI_UNANSWERED and b != DELPHI_UNANSWERED]
        if len(shared) < 2:
            continue
        results.append(ExpertCorrelation(
            expert_a=first.expert_name or first.expert_id,
            expert_b=second.expert_name or second.expert_id,
            shared_cells=len(shared),
            correlation=pearson_correlation([a for a, _ in shared], [b for _, b in shared]),
        ))
    return results


@dataclass(frozen=True)
class DelphiAnalysis:
    """Complete Delphi result for a project."""

    item_count: int
    expert_count: int
    criterion_count: int
    cells: list[list[DelphiCellStats]] = field(default_factory=list)
    s_cvi_ua: list[float] = field(default_factory=list)
    items: list[DelphiItemConsensus] = field(default_factory=list)
    correlations: list[ExpertCorrelation] = field(default_factory=list)
    mean_correlation: float | None = None

    mode = ProjectType.DELPHI

    def cell(self, item_index: int, criterion_id: int) -> DelphiCellStats:
        return self.cells[item_index][criterion_id - 1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "item_count": self.item_count,
            "expert_count": self.expert_count,
            "criterion_count": self.criterion_count,
            "cells": [[c.to_dict() for c in row] for row in self.cells],
            "s_cvi_ua": [format_fixed(v) for v in self.s_cvi_ua],
            "items": [i.to_dict() for i in self.items],
            "correlations": [c.to_dict() for c in self.correlations],
            "mean_correlation": (
                None if self.mean_correlation is None else round_half_up(self.mean_correlation, 3)
            ),
        }


def scale_cvi_universal(cells: Sequence[Sequence[DelphiCellStats]], criterion_id: int) -> float:
    """S-CVI/UA for one criterion: share of items with I-CVI of exactly 1.00."""
    unanimous = sum(1 for row in cells if row[criterion_id - 1].is_unanimous)
    return proportion(unanimous, len(cells))


def analyze_delphi(
    items: Sequence[ScaleItem],
    responses: Sequence[ExpertResponse],
    settings: AnalysisSettings | None = None,
    criterion_count: int = len(DELPHI_CRITERIA),
) -> DelphiAnalysis:
    """
    Compute every Delphi statistic for a snapshot of a project.

    Args:
        items: Translated scale items, in rating order
        responses: Expert submissions
        settings: Thresholds (defaults if None)
        criterion_count: Number of rubric criteria

    Returns:
        DelphiAnalysis
    """
    settings = settings or AnalysisSettings()
    item_count = len(items)

    cells = [
        [
            delphi_cell_stats(
                [delphi_rating(r, item_index, criterion_id) for r in responses],
                item_index,
                criterion_id,
                settings,
            )
            for criterion_id in range(1, criterion_count + 1)
        ]
        for item_index in range(item_count)
    ]

    correlations = expert_correlations(responses, item_count, criterion_count)
    mean_correlation = (
        statistics.fmean(c.correlation for c in correlations) if correlations else None
    )

    logger.debug(
        "Delphi analysis: %d items, %d experts, %d correlated pairs",
        item_count,
        len(responses),
        len(correlations),
    )

    return DelphiAnalysis(
        item_count=item_count,
        expert_count=len(responses),
        criterion_count=criterion_count,
        cells=cells,
        s_cvi_ua=[
            scale_cvi_universal(cells, criterion_id)
            for criterion_id in range(1, criterion_count + 1)
        ],
        items=[
            item_consensus(responses, item_index, item.text, criterion_count, settings)
            for item_index, item in enumerate(items)
        ],
        correlations=correlations,
        mean_correlation=mean_correlation,
    )


def analyze_project(
    project: Project, settings: AnalysisSettings | None = None
) -> FaceValidityAnalysis | DelphiAnalysis:
    """Run the calculator matching the project's study type."""
    if project.type == ProjectType.FACE_VALIDITY:
        return analyze_face_validity(
            project.translated_scale_items, project.expert_responses, settings
        )
    return analyze_delphi(project.translated_scale_items, project.expert_responses, settings)
