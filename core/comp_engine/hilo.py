"""
Hi-Lo Range & Selection Engine for the Comp Engine.

Implements:
- Center determination (median time-adjusted, weighted primaries, model)
- Hi-Lo box around the center
- Candidate filtering (market polygon, missing GLA under $/SF basis)
- Similarity ranking with deterministic tie-breaks
- Bounded selection of primary sales and listings from inside the box
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .errors import EmptyCandidatePoolError, InvalidInputError, MissingAreaError
from .market_trend import median
from .models import (
    Basis,
    CandidateComp,
    CenterBasis,
    CompType,
    ConstraintSet,
    DateLike,
    HiLoRange,
    HiLoResult,
    HiLoSettings,
    HiLoStatus,
    LOCATION_KEY,
    RankedCandidate,
    Subject,
    TrendResult,
    parse_date,
)
from .scoring import (
    calculate_similarity_scores,
    combine_scores,
    ensure_valid_constraints,
    ensure_valid_weights,
    normalize_weights,
)
from .time_adjust import time_adjusted_value

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

PRIMARY_SALES_COUNT = 3
PRIMARY_LISTINGS_COUNT = 2


@dataclass(frozen=True)
class HiLoContext:
    """Time-adjustment inputs shared by every candidate in one computation."""
    effective_date: date
    pct_per_month: float
    basis: Basis = Basis.SALE_PRICE


# =============================================================================
# Range and center
# =============================================================================

def compute_hilo_range(
    center: float,
    box_pct: float,
    effective_date: DateLike,
    basis: Basis,
) -> HiLoRange:
    """
    Box of +/- box_pct percent around the center.

    box_pct bounds are enforced at the configuration boundary, not here.
    """
    half_width = center * box_pct / 100
    return HiLoRange(
        center=center,
        lo=center - half_width,
        hi=center + half_width,
        effective_date=parse_date(effective_date),
        basis=basis,
    )


def candidate_time_adjusted_value(
    candidate: CandidateComp,
    context: HiLoContext,
) -> Optional[float]:
    """
    Time-adjusted value in basis units, or None when it cannot be computed.

    $/SF basis without GLA is the only expected None.
    """
    try:
        return time_adjusted_value(
            candidate.sale_price,
            candidate.sale_date,
            candidate.gla,
            context.effective_date,
            context.pct_per_month,
            context.basis,
        )
    except MissingAreaError:
        return None


def _median_center(
    candidates: Sequence[CandidateComp],
    context: HiLoContext,
    inside_polygon_only: bool,
) -> float:
    pool = list(candidates)
    if inside_polygon_only:
        inside = [c for c in pool if c.inside_polygon]
        if inside:
            pool = inside
        else:
            logger.info("No candidates inside market polygon; center uses full pool")

    values = [
        v for v in (candidate_time_adjusted_value(c, context) for c in pool)
        if v is not None
    ]
    if not values:
        raise EmptyCandidatePoolError("No valid candidates for center calculation")
    return median(values)


def calculate_center_value(
    candidates: Sequence[CandidateComp],
    center_basis: CenterBasis,
    context: HiLoContext,
    inside_polygon_only: bool = False,
    existing_primaries: Optional[Sequence[str]] = None,
    model_value: Optional[float] = None,
) -> float:
    """
    Center value for the Hi-Lo box.

    Args:
        candidates: Full candidate pool
        center_basis: How the center is chosen
        context: Effective date, trend rate and basis
        inside_polygon_only: Restrict the median to polygon-contained
            candidates when at least one qualifies
        existing_primaries: Primary comp ids for WEIGHTED_PRIMARIES
        model_value: Externally supplied center for MODEL

    Returns:
        Center value in basis units

    Raises:
        InvalidInputError: MODEL basis without a model value
        EmptyCandidatePoolError: no candidate yields a time-adjusted value
    """
    if center_basis == CenterBasis.MODEL:
        if model_value is None:
            raise InvalidInputError(["model center basis requires a model_value"])
        return float(model_value)

    if center_basis == CenterBasis.WEIGHTED_PRIMARIES and existing_primaries:
        wanted = set(existing_primaries)
        values = [
            v for v in (
                candidate_time_adjusted_value(c, context)
                for c in candidates if c.id in wanted
            )
            if v is not None
        ]
        if values:
            return sum(values) / len(values)
        logger.info(
            "None of %d primary id(s) resolved to valid candidates; "
            "falling back to median center",
            len(wanted),
        )

    return _median_center(candidates, context, inside_polygon_only)


# =============================================================================
# Engine
# =============================================================================

class HiLoEngine:
    """
    Ranks candidates against a subject and selects the Hi-Lo box.

    Pipeline order:
    1. VALIDATE - weights and constraints
    2. FILTER - market polygon, missing GLA under $/SF basis
    3. CENTER - center value and box
    4. RANK - similarity score, descending, ties by id
    5. SELECT - inside-box sales and listings, primaries

    Holds configuration only; every compute() call is independent.
    """

    def __init__(
        self,
        settings: Optional[HiLoSettings] = None,
        constraints: Optional[ConstraintSet] = None,
        max_workers: int = 1,
    ):
        """
        Initialize the engine.

        Args:
            settings: Hi-Lo settings (default: HiLoSettings())
            constraints: Similarity constraints (default: ConstraintSet())
            max_workers: Threads for the per-candidate scoring step;
                1 scores inline
        """
        self.settings = settings or HiLoSettings()
        self.constraints = constraints or ConstraintSet()
        self.max_workers = max(1, int(max_workers))

    def compute(
        self,
        subject: Subject,
        candidates: Iterable[CandidateComp],
        effective_date: DateLike,
        trend: Union[float, TrendResult],
        basis: Basis = Basis.SALE_PRICE,
        existing_primaries: Optional[Sequence[str]] = None,
        model_value: Optional[float] = None,
    ) -> HiLoResult:
        """
        Run the full Hi-Lo computation.

        Args:
            subject: The property being valued
            candidates: Sales and listings to consider
            effective_date: Date all sales are adjusted to
            trend: Monthly rate as a decimal, or a TrendResult
            basis: SALE_PRICE or PPSF
            existing_primaries: Primary comp ids for WEIGHTED_PRIMARIES
            model_value: Center for the MODEL basis

        Returns:
            HiLoResult; status NO_CANDIDATES when nothing survives filtering,
            NO_MATCHES when nothing falls inside the box

        Raises:
            InvalidInputError: weights or constraints out of bounds, or
                MODEL basis without a model value
        """
        settings = self.settings
        ensure_valid_weights(settings.weights)
        ensure_valid_constraints(self.constraints)

        pool = list(candidates)
        pct_per_month = trend.pct_per_month if isinstance(trend, TrendResult) else float(trend)
        context = HiLoContext(
            effective_date=parse_date(effective_date),
            pct_per_month=pct_per_month,
            basis=basis,
        )

        # Step 1: Filter
        survivors, excluded_missing_area, excluded_by_polygon = self._filter(pool, context)

        # Step 2: Center and range
        try:
            center = calculate_center_value(
                pool,
                settings.center_basis,
                context,
                inside_polygon_only=settings.inside_polygon_only,
                existing_primaries=existing_primaries,
                model_value=model_value,
            )
        except EmptyCandidatePoolError:
            logger.warning(
                "Hi-Lo: no candidate of %d produced a time-adjusted value", len(pool)
            )
            return HiLoResult(
                status=HiLoStatus.NO_CANDIDATES,
                range=None,
                excluded_missing_area=excluded_missing_area,
                excluded_by_polygon=excluded_by_polygon,
            )

        hilo_range = compute_hilo_range(
            center, settings.box_pct, context.effective_date, basis
        )

        if not survivors:
            logger.warning(
                "Hi-Lo: empty candidate pool after filtering "
                "(%d outside polygon, %d missing GLA)",
                excluded_by_polygon,
                len(excluded_missing_area),
            )
            return HiLoResult(
                status=HiLoStatus.NO_CANDIDATES,
                range=hilo_range,
                excluded_missing_area=excluded_missing_area,
                excluded_by_polygon=excluded_by_polygon,
            )

        # Step 3: Rank
        ranked = self._rank(subject, survivors, hilo_range)

        # Step 4: Select
        selected_sales, selected_listings = self._select(ranked)
        status = HiLoStatus.OK if any(r.inside_box for r in ranked) else HiLoStatus.NO_MATCHES

        logger.info(
            "Hi-Lo %s: center=%.2f box=[%.2f, %.2f] ranked=%d sales=%d listings=%d",
            status.value,
            hilo_range.center,
            hilo_range.lo,
            hilo_range.hi,
            len(ranked),
            len(selected_sales),
            len(selected_listings),
        )

        return HiLoResult(
            status=status,
            range=hilo_range,
            ranked=ranked,
            selected_sales=selected_sales,
            selected_listings=selected_listings,
            primaries=selected_sales[:PRIMARY_SALES_COUNT],
            listing_primaries=selected_listings[:PRIMARY_LISTINGS_COUNT],
            excluded_missing_area=excluded_missing_area,
            excluded_by_polygon=excluded_by_polygon,
        )

    def _filter(
        self,
        candidates: List[CandidateComp],
        context: HiLoContext,
    ) -> Tuple[List[Tuple[CandidateComp, float]], List[str], int]:
        """
        Apply the polygon filter and drop candidates that cannot be adjusted.

        Returns:
            Tuple of:
            - (candidate, time-adjusted value) pairs that survive
            - ids excluded for missing GLA
            - count excluded by the polygon filter
        """
        excluded_by_polygon = 0
        if self.settings.inside_polygon_only:
            inside = [c for c in candidates if c.inside_polygon]
            excluded_by_polygon = len(candidates) - len(inside)
            candidates = inside

        survivors = []
        excluded_missing_area = []
        for candidate in candidates:
            value = candidate_time_adjusted_value(candidate, context)
            if value is None:
                excluded_missing_area.append(candidate.id)
                continue
            survivors.append((candidate, value))

        if excluded_missing_area:
            logger.warning(
                "Excluded %d candidate(s) without GLA under $/SF basis: %s",
                len(excluded_missing_area),
                ", ".join(excluded_missing_area),
            )
        return survivors, excluded_missing_area, excluded_by_polygon

    def _rank(
        self,
        subject: Subject,
        survivors: List[Tuple[CandidateComp, float]],
        hilo_range: HiLoRange,
    ) -> List[RankedCandidate]:
        """Score every survivor, then sort by score descending and id ascending."""
        normalized = normalize_weights(self.settings.weights)
        include_location = LOCATION_KEY in normalized

        def score_one(item: Tuple[CandidateComp, float]) -> RankedCandidate:
            candidate, value = item
            result = combine_scores(
                calculate_similarity_scores(
                    candidate, subject, self.constraints, include_location
                ),
                normalized,
            )
            return RankedCandidate(
                comp_id=candidate.id,
                type=candidate.type,
                inside_box=hilo_range.contains(value),
                inside_polygon=candidate.inside_polygon,
                time_adjusted_value=value,
                score=result.score,
                breakdown=result.breakdown,
            )

        if self.max_workers > 1 and len(survivors) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                ranked = list(executor.map(score_one, survivors))
        else:
            ranked = [score_one(item) for item in survivors]

        ranked.sort(key=lambda r: (-r.score, r.comp_id))
        return ranked

    def _select(self, ranked: List[RankedCandidate]) -> Tuple[List[str], List[str]]:
        """Top inside-box sales and listings in score order; never padded."""
        inside = [r for r in ranked if r.inside_box]
        sales = [r.comp_id for r in inside if r.type == CompType.SALE]
        listings = [r.comp_id for r in inside if r.type == CompType.LISTING]
        return (
            sales[: max(0, self.settings.max_sales)],
            listings[: max(0, self.settings.max_listings)],
        )
