"""
Ingestion Schema - Validate-then-Convert Parsers

Everything that enters the Comp Engine from an outside payload passes
through here first. Payloads use the platform's camelCase keys; snake_case
is accepted too. Each parser validates the full payload with pydantic and
only then converts it into the engine's value objects, so the engine
never sniffs loosely-typed dictionaries.

Legacy time-adjustment records (monthlyRate / monthlyAdjustment) are
migrated here and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Final, List, Literal, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from core.comp_engine.errors import InvalidInputError
from core.comp_engine.geo import (
    ensure_feature_properties,
    normalize_lng_lat,
    ring_is_valid,
)
from core.comp_engine.models import (
    Basis,
    CandidateComp,
    CenterBasis,
    CompType,
    ConstraintSet,
    HiLoSettings,
    MarketRecord,
    RecordStatus,
    WeightSet,
    parse_date,
)


StatusName = Literal["sold", "active", "pending", "expired"]

# Basis spellings seen across the platform's stored records
BASIS_ALIASES: Final[dict[str, Basis]] = {
    "salePrice": Basis.SALE_PRICE,
    "sale_price": Basis.SALE_PRICE,
    "ppsf": Basis.PPSF,
    "$/SF": Basis.PPSF,
    "psf": Basis.PPSF,
}


def normalize_market_basis(value: Optional[str]) -> Basis:
    """Map any known basis spelling to a Basis; unknown values fall back to sale price."""
    if not value:
        return Basis.SALE_PRICE
    return BASIS_ALIASES.get(value.strip(), Basis.SALE_PRICE)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _validate(model: Type[PayloadT], data: Any) -> PayloadT:
    """Run pydantic validation and re-raise failures as InvalidInputError."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in exc.errors()
        ]
        raise InvalidInputError(errors) from exc


def _coerce_date(value: Any) -> Any:
    if value is None:
        return None
    return parse_date(value)


# =============================================================================
# Weights, constraints, Hi-Lo settings
# =============================================================================

class WeightSetPayload(_Payload):
    distance: float = Field(0.25, ge=0, le=10)
    recency: float = Field(0.20, ge=0, le=10)
    gla: float = Field(0.20, ge=0, le=10)
    quality: float = Field(0.15, ge=0, le=10)
    condition: float = Field(0.10, ge=0, le=10)
    location: Optional[float] = Field(
        None, ge=0, le=10, validation_alias=AliasChoices("location", "loc")
    )

    def to_weight_set(self) -> WeightSet:
        return WeightSet(
            distance=self.distance,
            recency=self.recency,
            gla=self.gla,
            quality=self.quality,
            condition=self.condition,
            location=self.location,
        )


class ConstraintSetPayload(_Payload):
    gla_tolerance_pct: float = Field(10.0, ge=5, le=20, alias="glaTolerancePct")
    distance_cap_miles: float = Field(1.0, ge=0.25, le=5.0, alias="distanceCapMiles")

    def to_constraint_set(self) -> ConstraintSet:
        return ConstraintSet(
            gla_tolerance_pct=self.gla_tolerance_pct,
            distance_cap_miles=self.distance_cap_miles,
        )


class HiLoFiltersPayload(_Payload):
    inside_polygon_only: bool = Field(True, alias="insidePolygonOnly")
    statuses: List[StatusName] = Field(default_factory=lambda: ["sold", "active", "pending"])


def _default_hilo_weights() -> WeightSetPayload:
    return WeightSetPayload(location=0.10)


class HiLoSettingsPayload(_Payload):
    """Hi-Lo settings as stored per order; box_pct is enforced to 5-20 here."""

    center_basis: Literal["medianTimeAdj", "weightedPrimaries", "model"] = Field(
        "medianTimeAdj", alias="centerBasis"
    )
    box_pct: float = Field(10.0, ge=5, le=20, alias="boxPct")
    max_sales: int = Field(12, ge=0, alias="maxSales")
    max_listings: int = Field(6, ge=0, alias="maxListings")
    filters: HiLoFiltersPayload = Field(default_factory=HiLoFiltersPayload)
    weights: WeightSetPayload = Field(default_factory=_default_hilo_weights)

    def to_settings(self) -> HiLoSettings:
        return HiLoSettings(
            center_basis=CenterBasis(self.center_basis),
            box_pct=self.box_pct,
            max_sales=self.max_sales,
            max_listings=self.max_listings,
            inside_polygon_only=self.filters.inside_polygon_only,
            statuses=tuple(RecordStatus(s) for s in self.filters.statuses),
            weights=self.weights.to_weight_set(),
        )


def parse_weight_set(data: Mapping[str, Any]) -> WeightSet:
    return _validate(WeightSetPayload, data).to_weight_set()


def parse_constraint_set(data: Mapping[str, Any]) -> ConstraintSet:
    return _validate(ConstraintSetPayload, data).to_constraint_set()


def parse_hilo_settings(data: Mapping[str, Any]) -> HiLoSettings:
    return _validate(HiLoSettingsPayload, data).to_settings()


# =============================================================================
# Geometry
# =============================================================================

class PolygonGeometryPayload(_Payload):
    type: Literal["Polygon"]
    coordinates: List[List[Tuple[float, float]]] = Field(min_length=1)

    @model_validator(mode="after")
    def _exterior_ring_has_area(self) -> "PolygonGeometryPayload":
        if not ring_is_valid(self.coordinates[0]):
            raise ValueError("exterior ring needs at least 3 distinct points")
        return self


class MarketPolygonPayload(_Payload):
    type: Literal["Feature"]
    geometry: PolygonGeometryPayload
    properties: dict = Field(default_factory=dict)

    def to_geojson(self) -> dict:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[list(p) for p in ring] for ring in self.geometry.coordinates],
            },
            "properties": dict(self.properties),
        }


def parse_market_polygon(data: Mapping[str, Any]) -> dict:
    """Validate a GeoJSON polygon feature and return a clean copy."""
    if isinstance(data, Mapping):
        data = ensure_feature_properties(data)
    return _validate(MarketPolygonPayload, data).to_geojson()


# =============================================================================
# Market records and candidates
# =============================================================================

class MarketRecordPayload(_Payload):
    id: str = Field(min_length=1)
    status: StatusName
    sale_price: Optional[float] = Field(None, gt=0, alias="salePrice")
    list_price: Optional[float] = Field(None, gt=0, alias="listPrice")
    living_area: Optional[float] = Field(None, alias="livingArea")
    close_date: Optional[date] = Field(None, alias="closeDate")
    list_date: Optional[date] = Field(None, alias="listDate")
    dom: Optional[int] = None
    sp_to_lp: Optional[float] = Field(None, alias="spToLp")
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    quality: Optional[int] = Field(None, ge=1, le=5)
    condition: Optional[int] = Field(None, ge=1, le=5)

    @field_validator("close_date", "list_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_date(value)

    @model_validator(mode="after")
    def _sold_needs_price(self) -> "MarketRecordPayload":
        if self.status == "sold" and self.sale_price is None:
            raise ValueError("sold records require salePrice")
        return self

    def to_record(self) -> MarketRecord:
        return MarketRecord(
            id=self.id,
            status=RecordStatus(self.status),
            sale_price=self.sale_price,
            list_price=self.list_price,
            living_area=self.living_area,
            close_date=self.close_date,
            list_date=self.list_date,
            dom=self.dom,
            sp_to_lp_ratio=self.sp_to_lp,
            latitude=self.lat,
            longitude=self.lng,
            quality=self.quality,
            condition=self.condition,
        )


class CandidatePayload(_Payload):
    id: str = Field(min_length=1)
    type: Literal["sale", "listing"]
    sale_price: float = Field(gt=0, alias="salePrice")
    sale_date: date = Field(alias="saleDate")
    gla: Optional[float] = None
    distance_miles: float = Field(ge=0, alias="distanceMiles")
    months_since_sale: float = Field(ge=0, alias="monthsSinceSale")
    quality: int = Field(ge=1, le=5)
    condition: int = Field(ge=1, le=5)
    inside_polygon: bool = Field(
        True, validation_alias=AliasChoices("insidePolygon", "isInsidePolygon", "inside_polygon")
    )

    @field_validator("sale_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_date(value)

    def to_candidate(self) -> CandidateComp:
        return CandidateComp(
            id=self.id,
            type=CompType(self.type),
            sale_price=self.sale_price,
            sale_date=self.sale_date,
            gla=self.gla,
            distance_miles=self.distance_miles,
            months_since_sale=self.months_since_sale,
            quality=self.quality,
            condition=self.condition,
            inside_polygon=self.inside_polygon,
        )


def parse_market_record(data: Mapping[str, Any]) -> MarketRecord:
    """Validate one market record; `lon` is accepted for `lng`."""
    if isinstance(data, Mapping):
        data = normalize_lng_lat(data)
    return _validate(MarketRecordPayload, data).to_record()


def parse_candidate(data: Mapping[str, Any]) -> CandidateComp:
    return _validate(CandidatePayload, data).to_candidate()


# =============================================================================
# Time adjustments (V2 and legacy)
# =============================================================================

class LegacyTimeAdjustmentFields(_Payload):
    """Deprecated fields kept alongside migrated records for audit."""

    monthly_rate: Optional[float] = Field(None, alias="monthlyRate")
    monthly_adjustment: Optional[float] = Field(None, alias="monthlyAdjustment")
    method: Optional[str] = None
    confidence: Optional[float] = None
    data_points: Optional[int] = Field(None, alias="dataPoints")


class TimeAdjustments(_Payload):
    """Canonical time-adjustment settings for an order."""

    order_id: Optional[str] = Field(None, alias="orderId")
    basis: Basis
    pct_per_month: float = Field(alias="pctPerMonth")
    effective_date: date = Field(
        validation_alias=AliasChoices("effectiveDateISO", "effective_date", "effectiveDate")
    )
    computed_at: datetime = Field(alias="computedAt")
    legacy: Optional[LegacyTimeAdjustmentFields] = None

    @field_validator("effective_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_date(value)


class _V2TimeAdjustmentsPayload(_Payload):
    order_id: Optional[str] = Field(None, alias="orderId")
    basis: str
    pct_per_month: float = Field(alias="pctPerMonth")
    effective_date: Optional[date] = Field(
        None, validation_alias=AliasChoices("effectiveDateISO", "effective_date", "effectiveDate")
    )
    computed_at: Optional[datetime] = Field(None, alias="computedAt")
    legacy: Optional[LegacyTimeAdjustmentFields] = None

    @field_validator("effective_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_date(value)


class _LegacyTimeAdjustmentsPayload(LegacyTimeAdjustmentFields):
    order_id: Optional[str] = Field(None, alias="orderId")
    basis: Optional[str] = None
    pct_per_month: Optional[float] = Field(None, alias="pctPerMonth")
    effective_date: Optional[date] = Field(
        None, validation_alias=AliasChoices("effectiveDateISO", "effective_date", "effectiveDate")
    )
    computed_at: Optional[datetime] = Field(None, alias="computedAt")

    @field_validator("effective_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_date(value)


def time_adjustments_variant(raw: Mapping[str, Any]) -> str:
    """
    Tag a stored time-adjustment payload.

    "v2" when it carries both a basis and a pctPerMonth, "legacy" otherwise.
    """
    has_basis = raw.get("basis") is not None
    has_rate = raw.get("pctPerMonth", raw.get("pct_per_month")) is not None
    return "v2" if has_basis and has_rate else "legacy"


def migrate_legacy_time_adjustments(
    raw: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> TimeAdjustments:
    """
    Convert a stored time-adjustment payload of either generation.

    V2 payloads keep their values. Legacy payloads take the first of
    pctPerMonth, monthlyRate, monthlyAdjustment (default 0) and default
    to sale-price basis; the legacy fields are retained. Missing dates
    default to `now`.

    Raises:
        InvalidInputError: payload fails validation for its variant
    """
    now = now or datetime.now(timezone.utc)

    if time_adjustments_variant(raw) == "v2":
        v2 = _validate(_V2TimeAdjustmentsPayload, raw)
        return TimeAdjustments(
            order_id=v2.order_id,
            basis=normalize_market_basis(v2.basis),
            pct_per_month=v2.pct_per_month,
            effective_date=v2.effective_date or now.date(),
            computed_at=v2.computed_at or now,
            legacy=v2.legacy,
        )

    legacy = _validate(_LegacyTimeAdjustmentsPayload, raw)
    rate = next(
        (
            r for r in (legacy.pct_per_month, legacy.monthly_rate, legacy.monthly_adjustment)
            if r is not None
        ),
        0.0,
    )
    return TimeAdjustments(
        order_id=legacy.order_id,
        basis=normalize_market_basis(legacy.basis),
        pct_per_month=rate,
        effective_date=legacy.effective_date or now.date(),
        computed_at=legacy.computed_at or now,
        legacy=LegacyTimeAdjustmentFields(
            monthly_rate=legacy.monthly_rate,
            monthly_adjustment=legacy.monthly_adjustment,
            method=legacy.method,
            confidence=legacy.confidence,
            data_points=legacy.data_points,
        ),
    )


# =============================================================================
# Rejections
# =============================================================================

REJECTION_CODES: Final[dict[str, str]] = {
    "STATUS_EXCLUDED": "Record status is not in the configured status filter",
    "MISSING_PRICE": "No usable sale or list price",
    "MISSING_DATE": "No close date (sold) or list date (listing)",
    "MISSING_RATING": "Quality or condition rating missing",
    "MISSING_LOCATION": "Record or subject has no coordinates",
}


@dataclass(frozen=True)
class RejectionRecord:
    """
    Record of a market record that could not become a candidate.

    Used for audit trail so reviewers can see what was left out.
    """

    record_id: str
    rejection_code: str
    rejection_reason: str
    rejected_at: datetime

    @classmethod
    def create(cls, record_id: str, rejection_code: str) -> "RejectionRecord":
        """Create a rejection record with reason lookup and timestamp."""
        reason = REJECTION_CODES.get(rejection_code, f"Unknown code: {rejection_code}")
        return cls(
            record_id=record_id,
            rejection_code=rejection_code,
            rejection_reason=reason,
            rejected_at=datetime.now(timezone.utc),
        )
