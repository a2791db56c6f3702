"""
Similarity scoring for comparable properties.

Each factor is a similarity in [0, 1] where 1 means identical to the
subject:

- distance:  1 - clamp(miles / distance cap, 0, 1)
- recency:   1 - clamp(months since sale / 12, 0, 1)
- gla:       1 - clamp(|GLA diff| / (subject GLA * tolerance%), 0, 1)
- quality:   1 - clamp(|rating diff| / 4, 0, 1)
- condition: 1 - clamp(|rating diff| / 4, 0, 1)
- location:  1.0 inside the market polygon, 0.5 outside (only when the
  weight set carries a location weight)

The composite is the weighted sum over normalised weights, and always
equals the sum of the breakdown contributions.
"""

import math
from typing import Dict, Iterable, List, Mapping, Tuple, Union

from .errors import InvalidInputError
from .models import (
    CandidateComp,
    ConstraintSet,
    FACTOR_KEYS,
    LOCATION_KEY,
    RATING_MAX,
    RATING_MIN,
    ScorePart,
    ScoreResult,
    Subject,
    WeightSet,
)


# =============================================================================
# Configuration Constants
# =============================================================================

WEIGHT_MIN = 0.0
WEIGHT_MAX = 10.0

GLA_TOLERANCE_MIN_PCT = 5.0
GLA_TOLERANCE_MAX_PCT = 20.0

DISTANCE_CAP_MIN_MILES = 0.25
DISTANCE_CAP_MAX_MILES = 5.0

RECENCY_HORIZON_MONTHS = 12
MAX_RATING_DIFF = RATING_MAX - RATING_MIN

LOCATION_INSIDE_SIMILARITY = 1.0
LOCATION_OUTSIDE_SIMILARITY = 0.5

KNOWN_WEIGHT_KEYS = FACTOR_KEYS + (LOCATION_KEY,)

WeightsLike = Union[WeightSet, Mapping[str, float]]


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def _as_weight_dict(weights: WeightsLike) -> Dict[str, float]:
    if isinstance(weights, WeightSet):
        return weights.as_dict()
    return dict(weights)


# =============================================================================
# Validation
# =============================================================================

def validate_weights(weights: WeightsLike) -> List[str]:
    """Every weight must name a known factor and be a finite number in [0, 10]."""
    errors = []
    for key, value in _as_weight_dict(weights).items():
        if key not in KNOWN_WEIGHT_KEYS:
            errors.append(f"unknown weight {key!r}")
            continue
        if value is None or not math.isfinite(value) or not (WEIGHT_MIN <= value <= WEIGHT_MAX):
            errors.append(f"{key} weight must be between 0 and 10")
    return errors


def validate_constraints(constraints: ConstraintSet) -> List[str]:
    errors = []
    tol = constraints.gla_tolerance_pct
    if tol is None or not (GLA_TOLERANCE_MIN_PCT <= tol <= GLA_TOLERANCE_MAX_PCT):
        errors.append("GLA tolerance must be between 5% and 20%")
    cap = constraints.distance_cap_miles
    if cap is None or not (DISTANCE_CAP_MIN_MILES <= cap <= DISTANCE_CAP_MAX_MILES):
        errors.append("Distance cap must be between 0.25 and 5.0 miles")
    return errors


def ensure_valid_weights(weights: WeightsLike) -> None:
    errors = validate_weights(weights)
    if errors:
        raise InvalidInputError(errors)


def ensure_valid_constraints(constraints: ConstraintSet) -> None:
    errors = validate_constraints(constraints)
    if errors:
        raise InvalidInputError(errors)


# =============================================================================
# Weights
# =============================================================================

def normalize_weights(weights: WeightsLike) -> Dict[str, float]:
    """
    Scale weights to sum to 1.

    A zero (or non-positive) total gives equal weights across the active
    factors. Never divides by zero.
    """
    raw = _as_weight_dict(weights)
    if not raw:
        return {}

    total = sum(raw.values())
    if total <= 0:
        equal = 1.0 / len(raw)
        return {key: equal for key in raw}
    return {key: value / total for key, value in raw.items()}


def calculate_weight_percentages(weights: WeightsLike) -> Dict[str, int]:
    """Whole-percent share of each weight, for display; all zeros when the total is 0."""
    raw = _as_weight_dict(weights)
    total = sum(raw.values())
    if total == 0:
        return {key: 0 for key in raw}
    return {key: round(value / total * 100) for key, value in raw.items()}


# =============================================================================
# Similarity
# =============================================================================

def calculate_similarity_scores(
    candidate: CandidateComp,
    subject: Subject,
    constraints: ConstraintSet,
    include_location: bool = False,
) -> Dict[str, float]:
    """Per-factor similarity of a candidate to the subject."""
    distance = 1 - clamp(candidate.distance_miles / constraints.distance_cap_miles, 0, 1)
    recency = 1 - clamp(candidate.months_since_sale / RECENCY_HORIZON_MONTHS, 0, 1)

    if candidate.has_gla:
        tolerance = subject.gla * (constraints.gla_tolerance_pct / 100)
        gla = 1 - clamp(abs(candidate.gla - subject.gla) / tolerance, 0, 1)
    else:
        gla = 0.0

    quality = 1 - clamp(abs(candidate.quality - subject.quality) / MAX_RATING_DIFF, 0, 1)
    condition = 1 - clamp(abs(candidate.condition - subject.condition) / MAX_RATING_DIFF, 0, 1)

    similarities = {
        "distance": distance,
        "recency": recency,
        "gla": gla,
        "quality": quality,
        "condition": condition,
    }
    if include_location:
        similarities[LOCATION_KEY] = (
            LOCATION_INSIDE_SIMILARITY if candidate.inside_polygon
            else LOCATION_OUTSIDE_SIMILARITY
        )
    return similarities


def combine_scores(
    similarities: Mapping[str, float],
    normalized_weights: Mapping[str, float],
) -> ScoreResult:
    """
    Weighted sum with its breakdown.

    The score is summed from the breakdown contributions in factor order,
    so score == sum(contribution) holds exactly.
    """
    breakdown = {}
    for key, weight in normalized_weights.items():
        similarity = similarities[key]
        breakdown[key] = ScorePart(
            similarity=similarity,
            weight=weight,
            contribution=weight * similarity,
        )
    score = sum(part.contribution for part in breakdown.values())
    return ScoreResult(score=score, breakdown=breakdown)


def score_candidate(
    candidate: CandidateComp,
    subject: Subject,
    weights: WeightsLike,
    constraints: ConstraintSet,
) -> ScoreResult:
    """
    Composite similarity score for one candidate.

    Raises:
        InvalidInputError: weights or constraints outside documented bounds
    """
    ensure_valid_weights(weights)
    ensure_valid_constraints(constraints)

    normalized = normalize_weights(weights)
    similarities = calculate_similarity_scores(
        candidate, subject, constraints,
        include_location=LOCATION_KEY in normalized,
    )
    return combine_scores(similarities, normalized)


def score_and_rank(
    candidates: Iterable[CandidateComp],
    subject: Subject,
    weights: WeightsLike,
    constraints: ConstraintSet,
) -> List[Tuple[CandidateComp, ScoreResult]]:
    """Score every candidate and sort by score descending, then id ascending."""
    ensure_valid_weights(weights)
    ensure_valid_constraints(constraints)

    normalized = normalize_weights(weights)
    include_location = LOCATION_KEY in normalized
    scored = [
        (
            candidate,
            combine_scores(
                calculate_similarity_scores(candidate, subject, constraints, include_location),
                normalized,
            ),
        )
        for candidate in candidates
    ]
    scored.sort(key=lambda item: (-item[1].score, item[0].id))
    return scored


# =============================================================================
# Breakdown checks
# =============================================================================

def validate_weights_sum(breakdown: Mapping[str, ScorePart], epsilon: float = 1e-9) -> bool:
    """Breakdown weights sum to 1."""
    total = sum(part.weight for part in breakdown.values())
    return abs(total - 1.0) <= epsilon


def validate_score_consistency(
    score: float,
    breakdown: Mapping[str, ScorePart],
    epsilon: float = 1e-9,
) -> bool:
    """Score equals the sum of its contributions."""
    total = sum(part.contribution for part in breakdown.values())
    return abs(score - total) <= epsilon
