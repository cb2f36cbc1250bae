"""Period-over-period comparison.

The comparison window is derived from the current one and the aggregator is
re-run over the full dataset restricted to it; the result has the same shape
as the current analytics, so callers diff fields directly.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Optional, Sequence, Tuple, Union

import pandas as pd

from ..common.config_validator import SellerLensConfig
from ..currency import RateProvider
from ..standards.schemas import CanonicalTransaction
from .aggregator import DetailedAnalytics, calculate_analytics
from .filters import AnalyticsFilters


logger = logging.getLogger("sellerlens.analytics.comparison")

PREVIOUS_PERIOD = "previous-period"
PREVIOUS_YEAR = "previous-year"
COMPARISON_MODES = (PREVIOUS_PERIOD, PREVIOUS_YEAR)


def _to_date(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _shift_year(d: date) -> date:
    try:
        return d.replace(year=d.year - 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return d.replace(year=d.year - 1, day=28)


def comparison_range(mode: str, start: Union[str, date], end: Union[str, date]) -> Tuple[date, date]:
    """Shifted (start, end) for ``mode``.

    ``previous-period`` is the equal-length window ending the day before
    ``start`` (both ends inclusive); ``previous-year`` moves both ends back one
    calendar year.
    """
    s, e = _to_date(start), _to_date(end)
    if e < s:
        raise ValueError(f"End date {e} is before start date {s}")
    if mode == PREVIOUS_PERIOD:
        days = (e - s).days + 1
        prev_end = s - timedelta(days=1)
        return prev_end - timedelta(days=days - 1), prev_end
    if mode == PREVIOUS_YEAR:
        return _shift_year(s), _shift_year(e)
    raise ValueError(f"Unknown comparison mode: {mode!r}; expected one of {COMPARISON_MODES}")


def format_range_label(start: date, end: date) -> str:
    return f"{start.day}.{start.month}.{start.year} - {end.day}.{end.month}.{end.year}"


def run_comparison(
    all_records: Union[pd.DataFrame, Sequence[CanonicalTransaction]],
    mode: str,
    filters: AnalyticsFilters,
    config: Optional[SellerLensConfig] = None,
    rate_provider: Optional[RateProvider] = None,
) -> Tuple[Optional[DetailedAnalytics], str]:
    """Analytics for the comparison window of ``filters`` plus its label.

    Marketplace and fulfillment filters carry over; only the dates move.
    """
    if not filters.start or not filters.end:
        raise ValueError("Comparison needs both a start and an end date")
    prev_start, prev_end = comparison_range(mode, filters.start, filters.end)
    label = format_range_label(prev_start, prev_end)
    shifted = replace(filters, start=prev_start.isoformat(), end=prev_end.isoformat())
    logger.info("Comparison (%s): %s", mode, label)
    analytics = calculate_analytics(all_records, shifted, config, rate_provider)
    if analytics is not None:
        analytics.label = label
    return analytics, label


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; 0 when ``previous`` is 0."""
    if not previous:
        return 0.0
    return (current - previous) / abs(previous) * 100.0
