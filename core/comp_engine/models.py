"""
Data models for the Comp Engine.

Value objects for the subject, market records, scoring candidates,
configuration (weights, constraints, Hi-Lo settings) and engine results.
Everything here is constructed fresh per computation; nothing is shared
between calls.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import InvalidInputError


DateLike = Union[date, datetime, str]

# Similarity factors, in breakdown order
FACTOR_KEYS: Tuple[str, ...] = ("distance", "recency", "gla", "quality", "condition")
LOCATION_KEY = "location"

# Ordinal rating scale for quality and condition
RATING_MIN = 1
RATING_MAX = 5


def parse_date(value: DateLike) -> date:
    """
    Coerce a date, datetime or ISO-8601 string to a date.

    Raises:
        InvalidInputError: if the value cannot be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            # Full timestamps ("2025-01-01T00:00:00.000Z") keep only the date part
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
    raise InvalidInputError([f"Invalid ISO date: {value!r}"])


class Basis(Enum):
    """Valuation basis: raw sale price or price per square foot."""
    SALE_PRICE = "salePrice"
    PPSF = "ppsf"

    @classmethod
    def from_string(cls, value: str) -> Optional["Basis"]:
        """Exact match on the wire value; see ingestion for lenient aliases."""
        for member in cls:
            if member.value == value:
                return member
        return None


class RecordStatus(Enum):
    """Status of an observed market record."""
    SOLD = "sold"
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"

    @classmethod
    def from_string(cls, value: str) -> Optional["RecordStatus"]:
        """Convert string to RecordStatus, case-insensitive."""
        normalised = value.lower().strip()
        for member in cls:
            if member.value == normalised:
                return member
        return None


class CompType(Enum):
    """Closed sale or active listing."""
    SALE = "sale"
    LISTING = "listing"

    @classmethod
    def from_string(cls, value: str) -> Optional["CompType"]:
        """Convert string to CompType, case-insensitive."""
        normalised = value.lower().strip()
        for member in cls:
            if member.value == normalised:
                return member
        return None


class CenterBasis(Enum):
    """
    How the Hi-Lo center value is chosen.

    MODEL is supplied by an external regression; the engine treats it as
    an opaque number.
    """
    MEDIAN_TIME_ADJ = "medianTimeAdj"
    WEIGHTED_PRIMARIES = "weightedPrimaries"
    MODEL = "model"


class TrendMethod(Enum):
    """Estimator used for a market trend."""
    THEIL_SEN = "theil-sen-log"
    OLS = "ols-log"
    INSUFFICIENT_DATA = "insufficient-data"


class HiLoStatus(Enum):
    """
    Outcome of a Hi-Lo computation.

    NO_MATCHES: candidates were ranked but none fell inside the box.
    NO_CANDIDATES: nothing survived filtering, so there is no range.
    """
    OK = "ok"
    NO_MATCHES = "no_matches"
    NO_CANDIDATES = "no_candidates"


# =============================================================================
# Inputs
# =============================================================================

def _rating_errors(name: str, value: float) -> List[str]:
    if value is None or not (RATING_MIN <= value <= RATING_MAX):
        return [f"{name} must be between {RATING_MIN} and {RATING_MAX}"]
    return []


@dataclass(frozen=True)
class Subject:
    """
    The property being valued.

    Immutable for the duration of a run.
    """
    gla: float  # Gross living area, sq ft
    quality: int  # 1-5
    condition: int  # 1-5
    id: str = "subject"
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self):
        errors = []
        if self.gla is None or self.gla <= 0:
            errors.append("subject gla must be positive")
        errors.extend(_rating_errors("subject quality", self.quality))
        errors.extend(_rating_errors("subject condition", self.condition))
        if errors:
            raise InvalidInputError(errors)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class MarketRecord:
    """
    One observed sale or listing from an external feed.

    Status and dates may be given as strings; they are converted on
    construction.
    """
    id: str
    status: RecordStatus
    sale_price: Optional[float] = None
    list_price: Optional[float] = None
    living_area: Optional[float] = None
    close_date: Optional[date] = None
    list_date: Optional[date] = None

    # Explicit values from the feed win over derived ones
    dom: Optional[int] = None
    sp_to_lp_ratio: Optional[float] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    quality: Optional[int] = None
    condition: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            status = RecordStatus.from_string(self.status)
            if status is None:
                raise InvalidInputError([f"Invalid record status: {self.status}"])
            self.status = status
        if self.close_date is not None:
            self.close_date = parse_date(self.close_date)
        if self.list_date is not None:
            self.list_date = parse_date(self.list_date)

    @property
    def is_sold(self) -> bool:
        return self.status == RecordStatus.SOLD

    @property
    def relevant_date(self) -> Optional[date]:
        """Close date for sold records, list date for everything else."""
        return self.close_date if self.is_sold else self.list_date

    @property
    def days_on_market(self) -> Optional[int]:
        if self.dom is not None:
            return self.dom
        if self.close_date and self.list_date:
            return (self.close_date - self.list_date).days
        return None

    @property
    def sp_to_lp(self) -> Optional[float]:
        """Sale-price-to-list-price ratio."""
        if self.sp_to_lp_ratio is not None:
            return self.sp_to_lp_ratio
        if self.sale_price and self.list_price and self.list_price > 0:
            return self.sale_price / self.list_price
        return None

    @property
    def price_per_sqft(self) -> Optional[float]:
        if self.sale_price and self.living_area and self.living_area > 0:
            return self.sale_price / self.living_area
        return None


@dataclass(frozen=True)
class CandidateComp:
    """
    A market record adapted for scoring against the subject.

    Distance and months-since-sale are never negative.
    """
    id: str
    type: CompType
    sale_price: float
    sale_date: date
    distance_miles: float
    months_since_sale: float
    quality: int
    condition: int
    gla: Optional[float] = None
    inside_polygon: bool = True  # No market polygon means everything is in-market

    def __post_init__(self):
        errors = []
        if not self.id:
            errors.append("candidate id is required")
        if not isinstance(self.type, CompType):
            errors.append(f"candidate {self.id}: invalid type {self.type!r}")
        if self.sale_price is None or self.sale_price <= 0:
            errors.append(f"candidate {self.id}: sale_price must be positive")
        if self.distance_miles is None or self.distance_miles < 0:
            errors.append(f"candidate {self.id}: distance_miles cannot be negative")
        if self.months_since_sale is None or self.months_since_sale < 0:
            errors.append(f"candidate {self.id}: months_since_sale cannot be negative")
        if errors:
            raise InvalidInputError(errors)
        if not isinstance(self.sale_date, date) or isinstance(self.sale_date, datetime):
            object.__setattr__(self, "sale_date", parse_date(self.sale_date))

    @property
    def has_gla(self) -> bool:
        return self.gla is not None and self.gla > 0


@dataclass(frozen=True)
class WeightSet:
    """
    Raw similarity weights, each in [0, 10].

    Location is optional: None leaves the factor out of scoring entirely.
    """
    distance: float = 0.25
    recency: float = 0.20
    gla: float = 0.20
    quality: float = 0.15
    condition: float = 0.10
    location: Optional[float] = None

    def as_dict(self) -> Dict[str, float]:
        """Active factors in breakdown order."""
        weights = {key: getattr(self, key) for key in FACTOR_KEYS}
        if self.location is not None:
            weights[LOCATION_KEY] = self.location
        return weights


@dataclass(frozen=True)
class ConstraintSet:
    """Bounds that turn raw differences into bounded similarity."""
    gla_tolerance_pct: float = 10.0  # 5-20
    distance_cap_miles: float = 1.0  # 0.25-5.0


DEFAULT_STATUSES: Tuple[RecordStatus, ...] = (
    RecordStatus.SOLD,
    RecordStatus.ACTIVE,
    RecordStatus.PENDING,
)


def default_hilo_weights() -> WeightSet:
    return WeightSet(
        distance=0.25,
        recency=0.20,
        gla=0.20,
        quality=0.15,
        condition=0.10,
        location=0.10,
    )


@dataclass(frozen=True)
class HiLoSettings:
    """
    Hi-Lo box configuration.

    box_pct is conventionally 5-20 but only the ingestion boundary
    enforces that.
    """
    center_basis: CenterBasis = CenterBasis.MEDIAN_TIME_ADJ
    box_pct: float = 10.0
    max_sales: int = 12
    max_listings: int = 6
    inside_polygon_only: bool = True
    statuses: Tuple[RecordStatus, ...] = DEFAULT_STATUSES
    weights: WeightSet = field(default_factory=default_hilo_weights)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class TimeAdjustment:
    """A single sale brought forward to the effective date."""
    months: int
    factor: float
    adjusted_price: float
    basis: Basis
    original_ppsf: Optional[float] = None
    adjusted_ppsf: Optional[float] = None
    gla: Optional[float] = None

    @property
    def adjustment_percent(self) -> float:
        return (self.factor - 1) * 100


@dataclass(frozen=True)
class TrendResult:
    """
    Log-linear market trend.

    pct_per_month is a decimal rate: 0.007 means +0.7% per month.
    """
    slope: float
    intercept: float
    pct_per_month: float
    method: TrendMethod
    points_used: int = 0

    @classmethod
    def flat(cls, points_used: int = 0) -> "TrendResult":
        """Zero trend used when data is insufficient."""
        return cls(
            slope=0.0,
            intercept=0.0,
            pct_per_month=0.0,
            method=TrendMethod.INSUFFICIENT_DATA,
            points_used=points_used,
        )

    @property
    def is_low_confidence(self) -> bool:
        """Anything other than Theil-Sen is a degraded estimate."""
        return self.method != TrendMethod.THEIL_SEN

    def to_dict(self) -> dict:
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "pct_per_month": self.pct_per_month,
            "method": self.method.value,
            "points_used": self.points_used,
            "low_confidence": self.is_low_confidence,
        }


@dataclass(frozen=True)
class MonthlyMedian:
    """Outlier-filtered medians for one calendar month."""
    month: str  # YYYY-MM
    index: int  # 0 = oldest month in the window
    median_sale_price: Optional[float] = None
    median_ppsf: Optional[float] = None
    n: int = 0
    outliers_removed: int = 0

    def value_for(self, metric: Basis) -> Optional[float]:
        if metric == Basis.PPSF:
            return self.median_ppsf
        return self.median_sale_price


@dataclass(frozen=True)
class MarketMetrics:
    """Market conditions summary for a lookback window."""
    sample_counts: Dict[str, int]
    medians_by_month: List[MonthlyMedian]
    absorption_per_month: float
    months_of_inventory: float
    trend: TrendResult
    dom_median: Optional[float] = None
    sp_to_lp_median: Optional[float] = None

    @property
    def trend_pct_per_month(self) -> float:
        return self.trend.pct_per_month

    def to_dict(self) -> dict:
        return {
            "sample_counts": dict(self.sample_counts),
            "medians_by_month": [
                {
                    "month": m.month,
                    "median_sale_price": m.median_sale_price,
                    "median_ppsf": m.median_ppsf,
                    "n": m.n,
                }
                for m in self.medians_by_month
            ],
            "absorption_per_month": self.absorption_per_month,
            "months_of_inventory": self.months_of_inventory,
            "dom_median": self.dom_median,
            "sp_to_lp_median": self.sp_to_lp_median,
            "trend": self.trend.to_dict(),
        }


@dataclass(frozen=True)
class HiLoRange:
    """Acceptable value box around a center."""
    center: float
    lo: float
    hi: float
    effective_date: date
    basis: Basis

    def contains(self, value: float) -> bool:
        return self.lo <= value <= self.hi


@dataclass(frozen=True)
class ScorePart:
    """One factor of a composite score."""
    similarity: float
    weight: float
    contribution: float


@dataclass(frozen=True)
class ScoreResult:
    """Composite similarity score with its audit breakdown."""
    score: float
    breakdown: Dict[str, ScorePart]

    @property
    def display_score(self) -> float:
        return round(self.score, 2)


@dataclass(frozen=True)
class RankedCandidate:
    """
    A scored candidate in Hi-Lo order.

    score is kept at full precision for ranking; display_score is what a
    report shows.
    """
    comp_id: str
    type: CompType
    inside_box: bool
    inside_polygon: bool
    time_adjusted_value: float
    score: float
    breakdown: Dict[str, ScorePart]

    @property
    def display_score(self) -> float:
        return round(self.score, 2)

    def to_dict(self) -> dict:
        return {
            "comp_id": self.comp_id,
            "type": self.type.value,
            "inside_box": self.inside_box,
            "inside_polygon": self.inside_polygon,
            "time_adjusted_value": self.time_adjusted_value,
            "score": self.display_score,
            "reasons": [
                {
                    "key": key,
                    "similarity": part.similarity,
                    "weight": part.weight,
                    "contribution": part.contribution,
                }
                for key, part in self.breakdown.items()
            ],
        }


@dataclass
class HiLoResult:
    """
    Complete Hi-Lo computation output.

    range is None when no center value could be computed.
    """
    status: HiLoStatus
    range: Optional[HiLoRange]
    ranked: List[RankedCandidate] = field(default_factory=list)
    selected_sales: List[str] = field(default_factory=list)
    selected_listings: List[str] = field(default_factory=list)
    primaries: List[str] = field(default_factory=list)
    listing_primaries: List[str] = field(default_factory=list)

    # Audit trail for data-insufficiency fallbacks
    excluded_missing_area: List[str] = field(default_factory=list)
    excluded_by_polygon: int = 0

    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_result(self) -> bool:
        return self.status != HiLoStatus.NO_CANDIDATES

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "status": self.status.value,
            "range": None if self.range is None else {
                "center": self.range.center,
                "lo": self.range.lo,
                "hi": self.range.hi,
                "effective_date": self.range.effective_date.isoformat(),
                "basis": self.range.basis.value,
            },
            "ranked": [r.to_dict() for r in self.ranked],
            "selected_sales": list(self.selected_sales),
            "selected_listings": list(self.selected_listings),
            "primaries": list(self.primaries),
            "listing_primaries": list(self.listing_primaries),
            "excluded_missing_area": list(self.excluded_missing_area),
            "excluded_by_polygon": self.excluded_by_polygon,
            "generated_at": self.generated_at.isoformat(),
        }
