"""
Time adjustments for comparable sales.

Brings a historical sale price forward to the appraisal's effective date
using a compound monthly trend rate. The engine never extrapolates
backward: a sale dated after the effective date gets zero months.
"""

import calendar
from typing import Optional

from .errors import InvalidInputError, MissingAreaError
from .models import Basis, DateLike, TimeAdjustment, parse_date


def months_between(sale_date: DateLike, effective_date: DateLike) -> int:
    """
    Whole months from sale date to effective date, never negative.

    A month counts once the day-of-month is reached, so 2024-10-15 to
    2025-01-14 is 2 months and to 2025-01-15 is 3. An end date on the
    last day of its month reaches any start day: 2025-01-31 to
    2025-02-28 is 1 month.
    """
    start = parse_date(sale_date)
    end = parse_date(effective_date)

    months = (end.year - start.year) * 12 + (end.month - start.month)
    end_is_month_end = end.day == calendar.monthrange(end.year, end.month)[1]
    if end.day < start.day and not end_is_month_end:
        months -= 1
    return max(0, months)


def adjustment_factor(pct_per_month: float, months: float) -> float:
    """Compound factor (1 + rate) ^ months; rate is a decimal and may be negative."""
    return (1 + pct_per_month) ** months


def calculate_time_adjustment(
    sale_price: float,
    sale_date: DateLike,
    gla: Optional[float],
    effective_date: DateLike,
    pct_per_month: float,
    basis: Basis,
) -> TimeAdjustment:
    """
    Time-adjust one sale.

    Args:
        sale_price: Closed price, must be positive
        sale_date: Date of sale
        gla: Gross living area; required for PPSF basis
        effective_date: Valuation date all sales are brought to
        pct_per_month: Monthly trend rate as a decimal (0.005 = 0.5%)
        basis: SALE_PRICE or PPSF

    Returns:
        TimeAdjustment with the adjusted dollar value

    Raises:
        InvalidInputError: sale price is not positive
        MissingAreaError: PPSF basis without a positive GLA
    """
    if sale_price is None or sale_price <= 0:
        raise InvalidInputError([f"sale_price must be positive, got {sale_price!r}"])

    months = months_between(sale_date, effective_date)
    factor = adjustment_factor(pct_per_month, months)

    if basis == Basis.SALE_PRICE:
        return TimeAdjustment(
            months=months,
            factor=factor,
            adjusted_price=sale_price * factor,
            basis=basis,
        )

    if gla is None or gla <= 0:
        raise MissingAreaError(gla)

    ppsf = sale_price / gla
    adjusted_ppsf = ppsf * factor
    return TimeAdjustment(
        months=months,
        factor=factor,
        adjusted_price=adjusted_ppsf * gla,
        basis=basis,
        original_ppsf=ppsf,
        adjusted_ppsf=adjusted_ppsf,
        gla=gla,
    )


def time_adjusted_value(
    sale_price: float,
    sale_date: DateLike,
    gla: Optional[float],
    effective_date: DateLike,
    pct_per_month: float,
    basis: Basis,
) -> float:
    """
    Value in the units of the basis: dollars for SALE_PRICE, $/SF for PPSF.

    This is the figure the Hi-Lo box is built around.
    """
    adjustment = calculate_time_adjustment(
        sale_price, sale_date, gla, effective_date, pct_per_month, basis
    )
    if basis == Basis.PPSF:
        return adjustment.adjusted_ppsf
    return adjustment.adjusted_price
