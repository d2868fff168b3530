"""
Named reporting periods and their comparison ranges.
"""

import datetime as dt
from typing import Optional

from shopmetrics.analytics.models import Period

PERIODS = (
    "today",
    "yesterday",
    "last7days",
    "last30days",
    "thisMonth",
    "lastMonth",
    "thisQuarter",
    "thisYear",
)

DEFAULT_PERIOD = "last30days"


def get_date_range(period: Optional[str], today: Optional[dt.date] = None) -> Period:
    """
    Resolve a named period ending today (inclusive).

    Unknown names fall back to ``last30days``. ``last7days`` and
    ``last30days`` start 7 and 30 days before today.
    """
    today = today or dt.date.today()

    if period == "today":
        return Period(today, today)
    if period == "yesterday":
        yesterday = today - dt.timedelta(days=1)
        return Period(yesterday, yesterday)
    if period == "last7days":
        return Period(today - dt.timedelta(days=7), today)
    if period == "thisMonth":
        return Period(today.replace(day=1), today)
    if period == "lastMonth":
        last_month_end = today.replace(day=1) - dt.timedelta(days=1)
        return Period(last_month_end.replace(day=1), last_month_end)
    if period == "thisQuarter":
        quarter_month = (today.month - 1) // 3 * 3 + 1
        return Period(today.replace(month=quarter_month, day=1), today)
    if period == "thisYear":
        return Period(today.replace(month=1, day=1), today)
    return Period(today - dt.timedelta(days=30), today)


def get_comparison_range(period: Period) -> Period:
    """The equal-length period immediately before ``period``."""
    end = period.start - dt.timedelta(days=1)
    return Period(end - dt.timedelta(days=period.days - 1), end)


def resolve_period(
    period: Optional[str] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    today: Optional[dt.date] = None,
) -> Period:
    """Explicit start and end win over a named period."""
    if start and end:
        if start > end:
            raise ValueError("start must not be after end")
        return Period(start, end)
    return get_date_range(period or DEFAULT_PERIOD, today)
