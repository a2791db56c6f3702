"""
Tests for the Hi-Lo range and selection engine.

Comprehensive tests verifying:
- Box arithmetic around the center
- Center bases: median, weighted primaries (with fallback), model
- Polygon filtering and center fallback to the full pool
- Missing GLA under $/SF basis is excluded and counted
- Selection never pads primaries with outside-box candidates
- Empty pool vs. no matches are distinct outcomes
- Deterministic results for same input, serial or threaded
"""

import logging
import pytest
from datetime import date
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import (
    Basis,
    CandidateComp,
    CenterBasis,
    CompType,
    ConstraintSet,
    EmptyCandidatePoolError,
    HiLoEngine,
    HiLoSettings,
    HiLoStatus,
    InvalidInputError,
    Subject,
    TrendMethod,
    TrendResult,
    WeightSet,
)
from core.comp_engine.hilo import (
    HiLoContext,
    calculate_center_value,
    compute_hilo_range,
)
from core.comp_engine.scoring import validate_score_consistency


EFFECTIVE = date(2025, 1, 15)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def subject():
    return Subject(gla=2000, quality=3, condition=3)


@pytest.fixture
def create_candidate():
    """Factory fixture; sale dated on the effective date so no adjustment applies."""
    def _create(
        comp_id: str,
        price: float,
        comp_type: CompType = CompType.SALE,
        gla=2000,
        distance_miles: float = 0.2,
        months_since_sale: float = 1,
        quality: int = 3,
        condition: int = 3,
        inside_polygon: bool = True,
        sale_date: date = EFFECTIVE,
    ) -> CandidateComp:
        return CandidateComp(
            id=comp_id,
            type=comp_type,
            sale_price=price,
            sale_date=sale_date,
            gla=gla,
            distance_miles=distance_miles,
            months_since_sale=months_since_sale,
            quality=quality,
            condition=condition,
            inside_polygon=inside_polygon,
        )
    return _create


@pytest.fixture
def context():
    return HiLoContext(effective_date=EFFECTIVE, pct_per_month=0.0)


@pytest.fixture
def mixed_pool(create_candidate):
    """Six sales and three listings around 450k; two sales well outside the box."""
    return [
        create_candidate("S1", 440000, distance_miles=0.1),
        create_candidate("S2", 450000, distance_miles=0.2),
        create_candidate("S3", 460000, distance_miles=0.3),
        create_candidate("S4", 455000, distance_miles=0.4),
        create_candidate("S5", 300000, distance_miles=0.05),
        create_candidate("S6", 700000, distance_miles=0.05),
        create_candidate("L1", 449000, CompType.LISTING, distance_miles=0.15),
        create_candidate("L2", 452000, CompType.LISTING, distance_miles=0.25),
        create_candidate("L3", 451000, CompType.LISTING, distance_miles=0.35),
    ]


# =============================================================================
# Range
# =============================================================================

class TestComputeHiLoRange:

    def test_ten_percent_box_is_exact(self):
        hilo = compute_hilo_range(450000, 10, EFFECTIVE, Basis.SALE_PRICE)
        assert hilo.lo == 405000
        assert hilo.hi == 495000
        assert hilo.center == 450000

    def test_contains_is_inclusive(self):
        hilo = compute_hilo_range(450000, 10, EFFECTIVE, Basis.SALE_PRICE)
        assert hilo.contains(405000)
        assert hilo.contains(495000)
        assert not hilo.contains(495000.01)

    def test_box_pct_not_enforced_here(self):
        hilo = compute_hilo_range(100, 50, "2025-01-15", Basis.PPSF)
        assert (hilo.lo, hilo.hi) == (50, 150)
        assert hilo.effective_date == EFFECTIVE


# =============================================================================
# Center
# =============================================================================

class TestCalculateCenterValue:
    """Center value by basis."""

    def test_median_of_time_adjusted_values(self, create_candidate, context):
        pool = [create_candidate(f"C{i}", p) for i, p in enumerate([400000, 450000, 500000])]
        assert calculate_center_value(pool, CenterBasis.MEDIAN_TIME_ADJ, context) == 450000

    def test_median_applies_trend(self, create_candidate):
        pool = [create_candidate("C1", 400000, sale_date=date(2024, 12, 15))]
        context = HiLoContext(EFFECTIVE, pct_per_month=0.01)
        center = calculate_center_value(pool, CenterBasis.MEDIAN_TIME_ADJ, context)
        assert center == pytest.approx(404000)

    def test_inside_polygon_restricts_median(self, create_candidate, context):
        pool = [
            create_candidate("IN1", 400000),
            create_candidate("IN2", 420000),
            create_candidate("OUT1", 900000, inside_polygon=False),
        ]
        center = calculate_center_value(
            pool, CenterBasis.MEDIAN_TIME_ADJ, context, inside_polygon_only=True
        )
        assert center == 410000

    def test_inside_polygon_falls_back_to_full_pool(self, create_candidate, context):
        pool = [
            create_candidate("OUT1", 400000, inside_polygon=False),
            create_candidate("OUT2", 500000, inside_polygon=False),
        ]
        center = calculate_center_value(
            pool, CenterBasis.MEDIAN_TIME_ADJ, context, inside_polygon_only=True
        )
        assert center == 450000

    def test_weighted_primaries_average(self, create_candidate, context):
        pool = [
            create_candidate("P1", 400000),
            create_candidate("P2", 500000),
            create_candidate("X", 900000),
        ]
        center = calculate_center_value(
            pool, CenterBasis.WEIGHTED_PRIMARIES, context, existing_primaries=["P1", "P2"]
        )
        assert center == 450000

    def test_weighted_primaries_unresolved_falls_back_to_median(self, create_candidate, context):
        pool = [create_candidate("A", 400000), create_candidate("B", 600000)]
        center = calculate_center_value(
            pool, CenterBasis.WEIGHTED_PRIMARIES, context, existing_primaries=["missing"]
        )
        assert center == 500000

    def test_model_value_is_opaque(self, create_candidate, context):
        pool = [create_candidate("A", 400000)]
        assert calculate_center_value(
            pool, CenterBasis.MODEL, context, model_value=512345.0
        ) == 512345.0

    def test_model_without_value_is_invalid(self, create_candidate, context):
        with pytest.raises(InvalidInputError):
            calculate_center_value([create_candidate("A", 1)], CenterBasis.MODEL, context)

    def test_empty_pool_raises(self, context):
        with pytest.raises(EmptyCandidatePoolError):
            calculate_center_value([], CenterBasis.MEDIAN_TIME_ADJ, context)

    def test_ppsf_center_skips_missing_gla(self, create_candidate):
        pool = [
            create_candidate("A", 400000, gla=2000),
            create_candidate("B", 500000, gla=None),
        ]
        context = HiLoContext(EFFECTIVE, 0.0, Basis.PPSF)
        assert calculate_center_value(pool, CenterBasis.MEDIAN_TIME_ADJ, context) == 200.0


# =============================================================================
# Engine
# =============================================================================

class TestHiLoEngine:
    """End-to-end Hi-Lo computation."""

    def test_selection_and_primaries(self, subject, mixed_pool):
        engine = HiLoEngine(HiLoSettings(inside_polygon_only=False))
        result = engine.compute(subject, mixed_pool, EFFECTIVE, 0.0)

        assert result.status == HiLoStatus.OK
        assert result.range.center == 451000
        assert set(result.selected_sales) == {"S1", "S2", "S3", "S4"}
        assert "S5" not in result.selected_sales
        assert "S6" not in result.selected_sales
        assert result.primaries == result.selected_sales[:3]
        assert result.listing_primaries == result.selected_listings[:2]
        assert len(result.ranked) == 9

    def test_selected_in_score_order(self, subject, mixed_pool):
        result = HiLoEngine().compute(subject, mixed_pool, EFFECTIVE, 0.0)
        sales = [r for r in result.ranked if r.inside_box and r.type == CompType.SALE]
        assert result.selected_sales == [r.comp_id for r in sales]

    @pytest.mark.parametrize("price", [0, -1, None])
    def test_non_positive_price_rejected_at_construction(self, create_candidate, price):
        with pytest.raises(InvalidInputError) as exc_info:
            create_candidate("BAD", price)
        assert exc_info.value.errors == ["candidate BAD: sale_price must be positive"]

    def test_ranked_descending_with_id_ties(self, subject, create_candidate):
        pool = [create_candidate(i, 450000) for i in ("z", "m", "a")]
        result = HiLoEngine().compute(subject, pool, EFFECTIVE, 0.0)
        assert [r.comp_id for r in result.ranked] == ["a", "m", "z"]
        scores = [r.score for r in result.ranked]
        assert scores == sorted(scores, reverse=True)

    def test_max_counts_bound_selection(self, subject, mixed_pool):
        engine = HiLoEngine(HiLoSettings(max_sales=2, max_listings=1))
        result = engine.compute(subject, mixed_pool, EFFECTIVE, 0.0)
        assert len(result.selected_sales) == 2
        assert len(result.selected_listings) == 1
        assert result.primaries == result.selected_sales
        assert result.listing_primaries == result.selected_listings

    def test_primaries_never_padded(self, subject, create_candidate):
        pool = [
            create_candidate("IN", 450000),
            create_candidate("OUT1", 900000, distance_miles=0.0),
            create_candidate("OUT2", 100000, distance_miles=0.0),
        ]
        engine = HiLoEngine(HiLoSettings(center_basis=CenterBasis.MODEL))
        result = engine.compute(subject, pool, EFFECTIVE, 0.0, model_value=450000)
        assert result.primaries == ["IN"]
        assert result.listing_primaries == []

    def test_no_matches_is_not_an_error(self, subject, create_candidate):
        pool = [create_candidate("A", 300000), create_candidate("B", 900000)]
        engine = HiLoEngine(HiLoSettings(center_basis=CenterBasis.MODEL))
        result = engine.compute(subject, pool, EFFECTIVE, 0.0, model_value=600000)
        assert result.status == HiLoStatus.NO_MATCHES
        assert result.range is not None
        assert len(result.ranked) == 2
        assert result.selected_sales == []
        assert result.primaries == []
        assert result.has_result

    def test_empty_pool_is_no_candidates(self, subject):
        result = HiLoEngine().compute(subject, [], EFFECTIVE, 0.0)
        assert result.status == HiLoStatus.NO_CANDIDATES
        assert result.range is None
        assert result.ranked == []
        assert not result.has_result

    def test_polygon_filter_counts_exclusions(self, subject, create_candidate):
        pool = [
            create_candidate("IN", 450000),
            create_candidate("OUT", 450000, inside_polygon=False),
        ]
        result = HiLoEngine(HiLoSettings(inside_polygon_only=True)).compute(
            subject, pool, EFFECTIVE, 0.0
        )
        assert result.excluded_by_polygon == 1
        assert [r.comp_id for r in result.ranked] == ["IN"]

    def test_all_outside_polygon_keeps_range(self, subject, create_candidate):
        """Center falls back to the full pool; nothing survives to rank."""
        pool = [create_candidate("OUT", 450000, inside_polygon=False)]
        result = HiLoEngine(HiLoSettings(inside_polygon_only=True)).compute(
            subject, pool, EFFECTIVE, 0.0
        )
        assert result.status == HiLoStatus.NO_CANDIDATES
        assert result.range.center == 450000
        assert result.excluded_by_polygon == 1

    def test_missing_gla_excluded_under_ppsf(self, subject, create_candidate, caplog):
        pool = [
            create_candidate("A", 400000, gla=2000),
            create_candidate("B", 410000, gla=2050),
            create_candidate("NOGLA", 405000, gla=None),
        ]
        with caplog.at_level(logging.WARNING, logger="core.comp_engine.hilo"):
            result = HiLoEngine().compute(subject, pool, EFFECTIVE, 0.0, basis=Basis.PPSF)

        assert result.excluded_missing_area == ["NOGLA"]
        assert "NOGLA" not in [r.comp_id for r in result.ranked]
        assert "NOGLA" in caplog.text
        assert result.range.basis == Basis.PPSF
        assert result.range.center == pytest.approx(200.0)

    def test_all_missing_gla_under_ppsf(self, subject, create_candidate):
        pool = [create_candidate("A", 400000, gla=None)]
        result = HiLoEngine().compute(subject, pool, EFFECTIVE, 0.0, basis=Basis.PPSF)
        assert result.status == HiLoStatus.NO_CANDIDATES
        assert result.range is None
        assert result.excluded_missing_area == ["A"]

    def test_trend_result_accepted(self, subject, create_candidate):
        trend = TrendResult(slope=0.00995, intercept=0.0, pct_per_month=0.01,
                            method=TrendMethod.THEIL_SEN, points_used=12)
        pool = [create_candidate("A", 400000, sale_date=date(2024, 12, 15))]
        result = HiLoEngine().compute(subject, pool, EFFECTIVE, trend)
        assert result.ranked[0].time_adjusted_value == pytest.approx(404000)

    def test_score_consistency_for_every_ranked(self, subject, mixed_pool):
        result = HiLoEngine().compute(subject, mixed_pool, EFFECTIVE, 0.0)
        for ranked in result.ranked:
            assert validate_score_consistency(ranked.score, ranked.breakdown)
            assert "location" in ranked.breakdown

    def test_invalid_weights_stop_pipeline(self, subject, mixed_pool):
        engine = HiLoEngine(HiLoSettings(weights=WeightSet(distance=-1)))
        with pytest.raises(InvalidInputError):
            engine.compute(subject, mixed_pool, EFFECTIVE, 0.0)

    def test_invalid_constraints_stop_pipeline(self, subject, mixed_pool):
        engine = HiLoEngine(constraints=ConstraintSet(gla_tolerance_pct=50))
        with pytest.raises(InvalidInputError):
            engine.compute(subject, mixed_pool, EFFECTIVE, 0.0)

    def test_deterministic(self, subject, mixed_pool):
        engine = HiLoEngine()
        first = engine.compute(subject, mixed_pool, EFFECTIVE, 0.002)
        second = engine.compute(subject, list(reversed(mixed_pool)), EFFECTIVE, 0.002)
        assert [r.comp_id for r in first.ranked] == [r.comp_id for r in second.ranked]
        assert first.selected_sales == second.selected_sales
        assert first.selected_listings == second.selected_listings
        assert first.primaries == second.primaries

    def test_threaded_scoring_matches_serial(self, subject, mixed_pool):
        serial = HiLoEngine(max_workers=1).compute(subject, mixed_pool, EFFECTIVE, 0.0)
        threaded = HiLoEngine(max_workers=4).compute(subject, mixed_pool, EFFECTIVE, 0.0)
        assert [r.comp_id for r in serial.ranked] == [r.comp_id for r in threaded.ranked]
        assert [r.score for r in serial.ranked] == [r.score for r in threaded.ranked]

    def test_to_dict(self, subject, mixed_pool):
        data = HiLoEngine().compute(subject, mixed_pool, EFFECTIVE, 0.0).to_dict()
        assert data["status"] == "ok"
        assert data["range"]["basis"] == "salePrice"
        assert data["ranked"][0]["reasons"][0]["key"] == "distance"
        assert isinstance(data["ranked"][0]["score"], float)
