"""
Candidate Adapter - Market Records to Comparable Candidates

Turns validated market records into the candidate pool the Hi-Lo engine
ranks: distance from the subject, months since sale, and polygon
containment are derived here. Records that cannot become a candidate are
rejected, logged, and kept for review.
"""

from __future__ import annotations

import logging
from typing import Final, Iterable, Optional, Sequence

from core.comp_engine.geo import haversine_miles, is_inside_polygon
from core.comp_engine.models import (
    DEFAULT_STATUSES,
    CandidateComp,
    CompType,
    DateLike,
    HiLoSettings,
    MarketRecord,
    RecordStatus,
    Subject,
    parse_date,
)
from core.comp_engine.time_adjust import months_between
from core.ingestion.schema import RejectionRecord


logger = logging.getLogger(__name__)


# =============================================================================
# Status Mapping
# =============================================================================

STATUS_TO_COMP_TYPE: Final[dict[RecordStatus, CompType]] = {
    RecordStatus.SOLD: CompType.SALE,
    RecordStatus.ACTIVE: CompType.LISTING,
    RecordStatus.PENDING: CompType.LISTING,
    RecordStatus.EXPIRED: CompType.LISTING,
}


class CandidateAdapter:
    """
    Builds CandidateComp values for one subject and effective date.

    Sold records use their sale price and close date; listings use their
    list price (sale price when no list price) and list date.
    """

    def __init__(
        self,
        subject: Subject,
        effective_date: DateLike,
        polygon: Optional[dict] = None,
        statuses: Sequence[RecordStatus] = DEFAULT_STATUSES,
    ) -> None:
        self.subject = subject
        self.effective_date = parse_date(effective_date)
        self.polygon = polygon
        self.statuses = frozenset(statuses)
        self._rejections: list[RejectionRecord] = []

    @classmethod
    def from_settings(
        cls,
        subject: Subject,
        effective_date: DateLike,
        settings: HiLoSettings,
        polygon: Optional[dict] = None,
    ) -> "CandidateAdapter":
        """Adapter that admits only the record statuses the Hi-Lo settings allow."""
        return cls(subject, effective_date, polygon=polygon, statuses=settings.statuses)

    # =========================================================================
    # Rejection Handling
    # =========================================================================

    @property
    def rejections(self) -> list[RejectionRecord]:
        """Get all rejection records from this adapter session."""
        return self._rejections.copy()

    def clear_rejections(self) -> None:
        self._rejections.clear()

    def _reject(self, record_id: str, rejection_code: str) -> None:
        self._rejections.append(RejectionRecord.create(record_id, rejection_code))
        logger.warning("Rejected market record %s: %s", record_id, rejection_code)

    # =========================================================================
    # Adaptation
    # =========================================================================

    def adapt(self, record: MarketRecord) -> Optional[CandidateComp]:
        """
        Convert one market record.

        Returns:
            CandidateComp, or None when the record is rejected (rejection recorded)
        """
        if record.status not in self.statuses:
            self._reject(record.id, "STATUS_EXCLUDED")
            return None

        comp_type = STATUS_TO_COMP_TYPE[record.status]
        if comp_type == CompType.SALE:
            price = record.sale_price
        else:
            price = record.list_price or record.sale_price
        if price is None or price <= 0:
            self._reject(record.id, "MISSING_PRICE")
            return None

        sale_date = record.relevant_date
        if sale_date is None:
            self._reject(record.id, "MISSING_DATE")
            return None

        if record.quality is None or record.condition is None:
            self._reject(record.id, "MISSING_RATING")
            return None

        if not self.subject.has_location or record.latitude is None or record.longitude is None:
            self._reject(record.id, "MISSING_LOCATION")
            return None

        distance = haversine_miles(
            self.subject.latitude, self.subject.longitude,
            record.latitude, record.longitude,
        )

        # No polygon drawn means nothing is outside it
        inside = True
        if self.polygon is not None:
            inside = is_inside_polygon(self.polygon, (record.longitude, record.latitude))

        return CandidateComp(
            id=record.id,
            type=comp_type,
            sale_price=price,
            sale_date=sale_date,
            gla=record.living_area,
            distance_miles=distance,
            months_since_sale=months_between(sale_date, self.effective_date),
            quality=record.quality,
            condition=record.condition,
            inside_polygon=inside,
        )

    def adapt_all(self, records: Iterable[MarketRecord]) -> list[CandidateComp]:
        """Convert every record, skipping rejections."""
        candidates = []
        for record in records:
            candidate = self.adapt(record)
            if candidate is not None:
                candidates.append(candidate)

        if self._rejections:
            logger.info(
                "Adapted %d candidate(s); %d record(s) rejected",
                len(candidates),
                len(self._rejections),
            )
        return candidates
