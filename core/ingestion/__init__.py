"""
Comp Engine - Ingestion Layer

Validate-then-convert parsers for outside payloads and the adapter that
turns market records into the candidate pool. This is the single entry
point for loosely typed data; everything past it works on the engine's
value objects.
"""

from core.ingestion.schema import (
    BASIS_ALIASES,
    REJECTION_CODES,
    RejectionRecord,
    TimeAdjustments,
    LegacyTimeAdjustmentFields,
    normalize_market_basis,
    migrate_legacy_time_adjustments,
    time_adjustments_variant,
    parse_weight_set,
    parse_constraint_set,
    parse_hilo_settings,
    parse_market_polygon,
    parse_market_record,
    parse_candidate,
)
from core.ingestion.adapter import CandidateAdapter, STATUS_TO_COMP_TYPE

__all__ = [
    # Basis and time adjustments
    "BASIS_ALIASES",
    "normalize_market_basis",
    "TimeAdjustments",
    "LegacyTimeAdjustmentFields",
    "migrate_legacy_time_adjustments",
    "time_adjustments_variant",
    # Payload parsers
    "parse_weight_set",
    "parse_constraint_set",
    "parse_hilo_settings",
    "parse_market_polygon",
    "parse_market_record",
    "parse_candidate",
    # Rejection handling
    "RejectionRecord",
    "REJECTION_CODES",
    # Adapter
    "CandidateAdapter",
    "STATUS_TO_COMP_TYPE",
]
