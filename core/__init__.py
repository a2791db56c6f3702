"""
Comp Engine - Core Business Logic

This module provides the comparable-selection pipeline:
1. Ingestion (validated payloads, market records to candidates)
2. Market Trend (monthly medians, Theil-Sen / OLS fit, cached per market)
3. Time Adjustment (compounded monthly rate, sale price or $/SF basis)
4. Scoring & Ranking (weighted similarity, deterministic ties)
5. Hi-Lo Selection (center, box, primary sales and listings)
"""

from .comp_engine import (
    CompEngineError,
    InvalidInputError,
    MissingAreaError,
    EmptyCandidatePoolError,
    Basis,
    CenterBasis,
    CompType,
    RecordStatus,
    Subject,
    MarketRecord,
    CandidateComp,
    WeightSet,
    ConstraintSet,
    HiLoSettings,
    TrendResult,
    MarketMetrics,
    HiLoResult,
    HiLoEngine,
    TrendCache,
    estimate_trend,
    compute_market_metrics,
    calculate_time_adjustment,
    score_candidate,
)

from .ingestion import (
    CandidateAdapter,
    RejectionRecord,
    migrate_legacy_time_adjustments,
    normalize_market_basis,
    parse_hilo_settings,
    parse_market_record,
    parse_candidate,
)

__all__ = [
    # Errors
    "CompEngineError",
    "InvalidInputError",
    "MissingAreaError",
    "EmptyCandidatePoolError",
    # Models
    "Basis",
    "CenterBasis",
    "CompType",
    "RecordStatus",
    "Subject",
    "MarketRecord",
    "CandidateComp",
    "WeightSet",
    "ConstraintSet",
    "HiLoSettings",
    "TrendResult",
    "MarketMetrics",
    "HiLoResult",
    # Engine
    "HiLoEngine",
    "TrendCache",
    "estimate_trend",
    "compute_market_metrics",
    "calculate_time_adjustment",
    "score_candidate",
    # Ingestion
    "CandidateAdapter",
    "RejectionRecord",
    "migrate_legacy_time_adjustments",
    "normalize_market_basis",
    "parse_hilo_settings",
    "parse_market_record",
    "parse_candidate",
]
