"""
Market Trend Estimator for the Comp Engine.

Builds a monthly median series from closed sales, removes outliers with
an IQR filter, and fits a log-linear trend:

- Theil-Sen (median of pairwise slopes) when at least 6 months carry
  the minimum sample size
- Ordinary least squares otherwise, as the degraded mode
- A flat trend when fewer than 2 months have data

The rate is reported as a decimal percent-per-month, exp(slope) - 1.
"""

import calendar
import logging
import math
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError
from .models import (
    Basis,
    DEFAULT_STATUSES,
    MarketMetrics,
    MarketRecord,
    MonthlyMedian,
    RecordStatus,
    TrendMethod,
    TrendResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

DEFAULT_LOOKBACK_MONTHS = 12
DEFAULT_MIN_SALES_PER_MONTH = 3

# IQR on tiny samples is unstable
MIN_VALUES_FOR_IQR = 4
IQR_MULTIPLIER = 1.5

MIN_MONTHS_FOR_THEIL_SEN = 6

TrendPoint = Tuple[float, float]  # (month index, median value)


# =============================================================================
# Robust statistics
# =============================================================================

def iqr_filter(values: Sequence[float]) -> List[float]:
    """
    Drop values outside the Tukey fences [Q1 - 1.5*IQR, Q3 + 1.5*IQR].

    Quartiles use linear interpolation. Samples smaller than 4 are
    returned unchanged. Input order is preserved.
    """
    if len(values) < MIN_VALUES_FOR_IQR:
        return list(values)

    q1, q3 = np.percentile(np.asarray(values, dtype=float), [25, 75])
    iqr = q3 - q1
    lower = q1 - IQR_MULTIPLIER * iqr
    upper = q3 + IQR_MULTIPLIER * iqr
    return [v for v in values if lower <= v <= upper]


def median(values: Sequence[float]) -> Optional[float]:
    """Median, or None for an empty sample."""
    if len(values) == 0:
        return None
    return float(np.median(np.asarray(values, dtype=float)))


# =============================================================================
# Monthly series
# =============================================================================

def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_window(as_of: date, lookback_months: int) -> List[str]:
    """Month keys for the lookback window ending with the as-of month, oldest first."""
    keys = []
    for back in range(lookback_months - 1, -1, -1):
        year, month = _shift_month(as_of.year, as_of.month, -back)
        keys.append(f"{year:04d}-{month:02d}")
    return keys


def subtract_months(value: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the month's length."""
    year, month = _shift_month(value.year, value.month, -months)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _is_trend_eligible(record: MarketRecord) -> bool:
    return (
        record.is_sold
        and record.close_date is not None
        and record.sale_price is not None
        and record.sale_price > 0
        and record.living_area is not None
        and record.living_area > 0
    )


def _validate_window(lookback_months: int, min_sales_per_month: int = 0) -> None:
    errors = []
    if lookback_months is None or lookback_months < 1:
        errors.append("lookback_months must be at least 1")
    if min_sales_per_month is None or min_sales_per_month < 0:
        errors.append("min_sales_per_month cannot be negative")
    if errors:
        raise InvalidInputError(errors)


def compute_monthly_medians(
    records: Iterable[MarketRecord],
    metric: Basis = Basis.SALE_PRICE,
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    as_of: Optional[date] = None,
) -> List[MonthlyMedian]:
    """
    Outlier-filtered monthly medians for every month in the window.

    Empty months are included with n = 0 so that month indices stay
    evenly spaced. Both medians are reported; n and outliers_removed
    refer to the chosen metric.
    """
    _validate_window(lookback_months)
    as_of = as_of or date.today()

    keys = month_window(as_of, lookback_months)
    groups: Dict[str, List[MarketRecord]] = {key: [] for key in keys}

    for record in records:
        if not _is_trend_eligible(record):
            continue
        key = month_key(record.close_date)
        if key in groups:
            groups[key].append(record)

    result = []
    for index, key in enumerate(keys):
        month_records = groups[key]
        if not month_records:
            result.append(MonthlyMedian(month=key, index=index))
            continue

        prices = [r.sale_price for r in month_records]
        ppsf = [r.price_per_sqft for r in month_records]
        kept_prices = iqr_filter(prices)
        kept_ppsf = iqr_filter(ppsf)

        chosen_raw, chosen_kept = (
            (ppsf, kept_ppsf) if metric == Basis.PPSF else (prices, kept_prices)
        )
        result.append(
            MonthlyMedian(
                month=key,
                index=index,
                median_sale_price=median(kept_prices),
                median_ppsf=median(kept_ppsf),
                n=len(chosen_kept),
                outliers_removed=len(chosen_raw) - len(chosen_kept),
            )
        )

    return result


def trend_points(medians: Sequence[MonthlyMedian], metric: Basis) -> List[TrendPoint]:
    """(month index, median) for every month with a positive median."""
    points = []
    for m in medians:
        value = m.value_for(metric)
        if value is not None and value > 0:
            points.append((float(m.index), value))
    return points


# =============================================================================
# Estimators
# =============================================================================

def _log_points(points: Sequence[TrendPoint]) -> Tuple[np.ndarray, np.ndarray]:
    x = np.array([p[0] for p in points], dtype=float)
    y = np.log(np.array([p[1] for p in points], dtype=float))
    return x, y


def theil_sen_log(points: Sequence[TrendPoint]) -> TrendResult:
    """
    Theil-Sen fit on ln(median).

    Slope is the median of all pairwise slopes; intercept is the median
    of y_i - slope * x_i.
    """
    if len(points) < 2:
        return TrendResult.flat(len(points))

    x, y = _log_points(points)
    slopes = []
    for i in range(len(x)):
        for j in range(i + 1, len(x)):
            dx = x[j] - x[i]
            if dx != 0:
                slopes.append((y[j] - y[i]) / dx)

    if not slopes:
        return TrendResult.flat(len(points))

    slope = float(np.median(slopes))
    intercept = float(np.median(y - slope * x))
    return TrendResult(
        slope=slope,
        intercept=intercept,
        pct_per_month=math.exp(slope) - 1,
        method=TrendMethod.THEIL_SEN,
        points_used=len(points),
    )


def ols_log(points: Sequence[TrendPoint]) -> TrendResult:
    """Ordinary least squares on ln(median)."""
    if len(points) < 2:
        return TrendResult.flat(len(points))

    x, y = _log_points(points)
    if np.all(x == x[0]):
        return TrendResult.flat(len(points))

    slope, intercept = np.polyfit(x, y, 1)
    return TrendResult(
        slope=float(slope),
        intercept=float(intercept),
        pct_per_month=math.exp(float(slope)) - 1,
        method=TrendMethod.OLS,
        points_used=len(points),
    )


def fit_trend(
    medians: Sequence[MonthlyMedian],
    metric: Basis = Basis.SALE_PRICE,
    min_sales_per_month: int = DEFAULT_MIN_SALES_PER_MONTH,
) -> TrendResult:
    """
    Pick the estimator for a monthly series and fit it.

    Theil-Sen needs at least 6 months meeting min_sales_per_month;
    otherwise OLS. Fewer than 2 usable points gives a flat trend.
    """
    points = trend_points(medians, metric)
    if len(points) < 2:
        logger.warning(
            "Insufficient trend data: %d usable month(s); using flat trend",
            len(points),
        )
        return TrendResult.flat(len(points))

    qualifying_months = sum(1 for m in medians if m.n >= min_sales_per_month)
    if qualifying_months >= MIN_MONTHS_FOR_THEIL_SEN:
        result = theil_sen_log(points)
    else:
        logger.info(
            "Only %d month(s) with >= %d sales; falling back to OLS trend",
            qualifying_months,
            min_sales_per_month,
        )
        result = ols_log(points)

    logger.debug(
        "Trend fit: method=%s points=%d pct_per_month=%.6f",
        result.method.value,
        result.points_used,
        result.pct_per_month,
    )
    return result


def estimate_trend(
    records: Iterable[MarketRecord],
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    metric: Basis = Basis.SALE_PRICE,
    min_sales_per_month: int = DEFAULT_MIN_SALES_PER_MONTH,
    as_of: Optional[date] = None,
) -> TrendResult:
    """
    Monthly market trend from dated records.

    Args:
        records: Market records; only sold records with price and area are used
        lookback_months: Number of calendar months in the window
        metric: Trend sale price or price per square foot
        min_sales_per_month: Sample size a month needs to count toward Theil-Sen
        as_of: Last month of the window (default: today)

    Returns:
        TrendResult tagged with the estimator used
    """
    _validate_window(lookback_months, min_sales_per_month)
    medians = compute_monthly_medians(records, metric, lookback_months, as_of)
    return fit_trend(medians, metric, min_sales_per_month)


# =============================================================================
# Market conditions
# =============================================================================

def compute_market_metrics(
    records: Iterable[MarketRecord],
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    metric: Basis = Basis.SALE_PRICE,
    min_sales_per_month: int = DEFAULT_MIN_SALES_PER_MONTH,
    statuses: Sequence[RecordStatus] = DEFAULT_STATUSES,
    as_of: Optional[date] = None,
) -> MarketMetrics:
    """
    Market conditions summary: sample counts, monthly medians, absorption,
    months of inventory, DOM and SP/LP medians, and the trend.

    Records are kept when their status is in `statuses` and their relevant
    date (close date when sold, list date otherwise) falls on or after the
    start of the lookback window.
    """
    _validate_window(lookback_months, min_sales_per_month)
    as_of = as_of or date.today()
    start = subtract_months(as_of, lookback_months)
    allowed = set(statuses)

    filtered = [
        r for r in records
        if r.status in allowed
        and r.relevant_date is not None
        and r.relevant_date >= start
    ]

    sample_counts = {status.value: 0 for status in RecordStatus}
    for record in filtered:
        sample_counts[record.status.value] += 1

    medians = compute_monthly_medians(filtered, metric, lookback_months, as_of)
    trend = fit_trend(medians, metric, min_sales_per_month)

    sold = [r for r in filtered if r.is_sold]
    active = [r for r in filtered if r.status == RecordStatus.ACTIVE]

    absorption = len(sold) / lookback_months
    months_of_inventory = len(active) / absorption if absorption > 0 else 0.0

    dom_values = [r.days_on_market for r in sold if r.days_on_market and r.days_on_market > 0]
    sp_lp_values = [r.sp_to_lp for r in sold if r.sp_to_lp and r.sp_to_lp > 0]

    return MarketMetrics(
        sample_counts=sample_counts,
        medians_by_month=medians,
        absorption_per_month=absorption,
        months_of_inventory=months_of_inventory,
        trend=trend,
        dom_median=median(dom_values),
        sp_to_lp_median=median(sp_lp_values),
    )
