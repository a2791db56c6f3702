"""
Comp Engine v2.0

Comparable selection for residential appraisal: market trend estimation,
time adjustment of sales, similarity scoring, and the Hi-Lo box that
picks the primary sales and listings.
"""

from .errors import (
    CompEngineError,
    InvalidInputError,
    MissingAreaError,
    EmptyCandidatePoolError,
)
from .models import (
    Basis,
    RecordStatus,
    CompType,
    CenterBasis,
    TrendMethod,
    HiLoStatus,
    Subject,
    MarketRecord,
    CandidateComp,
    WeightSet,
    ConstraintSet,
    HiLoSettings,
    TimeAdjustment,
    TrendResult,
    MonthlyMedian,
    MarketMetrics,
    HiLoRange,
    ScorePart,
    ScoreResult,
    RankedCandidate,
    HiLoResult,
)
from .geo import is_inside_polygon, polygon_area_acres, haversine_miles, distance_miles
from .time_adjust import calculate_time_adjustment, months_between
from .market_trend import estimate_trend, compute_monthly_medians, compute_market_metrics
from .trend_cache import TrendCache
from .scoring import (
    normalize_weights,
    calculate_similarity_scores,
    score_candidate,
    score_and_rank,
)
from .hilo import HiLoEngine, calculate_center_value, compute_hilo_range

__all__ = [
    # Errors
    "CompEngineError",
    "InvalidInputError",
    "MissingAreaError",
    "EmptyCandidatePoolError",
    # Models
    "Basis",
    "RecordStatus",
    "CompType",
    "CenterBasis",
    "TrendMethod",
    "HiLoStatus",
    "Subject",
    "MarketRecord",
    "CandidateComp",
    "WeightSet",
    "ConstraintSet",
    "HiLoSettings",
    "TimeAdjustment",
    "TrendResult",
    "MonthlyMedian",
    "MarketMetrics",
    "HiLoRange",
    "ScorePart",
    "ScoreResult",
    "RankedCandidate",
    "HiLoResult",
    # Geo
    "is_inside_polygon",
    "polygon_area_acres",
    "haversine_miles",
    "distance_miles",
    # Time adjustment and trend
    "calculate_time_adjustment",
    "months_between",
    "estimate_trend",
    "compute_monthly_medians",
    "compute_market_metrics",
    "TrendCache",
    # Scoring
    "normalize_weights",
    "calculate_similarity_scores",
    "score_candidate",
    "score_and_rank",
    # Engine
    "HiLoEngine",
    "calculate_center_value",
    "compute_hilo_range",
]

__version__ = "2.0"
