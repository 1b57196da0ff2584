"""
OOH Billing — Billing Period Calculator
========================================
Splits a campaign's date range into calendar-aligned billing periods with
pro-rata factors. Both the preview screens and invoice persistence call
this, so the output depends only on its arguments.

Pro-rata convention (shared by the aggregator, periods and overlap biller):
  - the reference month is a fixed 30 days
  - a slice covering a whole calendar month counts as exactly 1 month,
    whatever the month's real length (28/29/30/31)
  - any other slice counts as days / 30

Example:
    periods = calculate_billing_periods(date(2024, 1, 15), date(2024, 3, 10))
    # Jan 15–31 (17/30), Feb 1–29 (1), Mar 1–10 (10/30)
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from ..errors import ValidationError
from ..models import BillingCycle


# ─────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────

BILLING_CYCLE_DAYS = 30
REFERENCE_DAYS = Decimal(BILLING_CYCLE_DAYS)
MAX_PERIODS = 120  # 10 years of monthly invoices

MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


# ─────────────────────────────────────────────
# Data classes
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class BillingPeriod:
    """A calendar-aligned slice of a campaign. Derived, never stored."""
    month_key: str
    label: str
    period_start: date
    period_end: date
    days_in_period: int
    pro_rata_factor: Decimal
    is_first_month: bool
    is_last_month: bool
    is_current_month: bool


# ─────────────────────────────────────────────
# Calendar helpers
# ─────────────────────────────────────────────

def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(key: str) -> Tuple[int, int]:
    m = MONTH_KEY_PATTERN.match(key or "")
    if m is None:
        raise ValidationError(f"Invalid month key {key!r} (expected YYYY-MM)")
    return int(m.group(1)), int(m.group(2))


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_bounds_for_key(key: str) -> Tuple[date, date]:
    return month_bounds(*parse_month_key(key))


def days_in_month(d: date) -> int:
    return calendar.monthrange(d.year, d.month)[1]


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


def _next_month_start(d: date) -> date:
    if d.month == 12:
        return date(d.year + 1, 1, 1)
    return date(d.year, d.month + 1, 1)


def is_full_calendar_month(start: date, end: date) -> bool:
    return (
        start.day == 1
        and start.year == end.year
        and start.month == end.month
        and end.day == days_in_month(end)
    )


def billable_fraction(start: date, end: date) -> Decimal:
    """
    Fraction of a reference month billed for a slice lying inside one
    calendar month. Always in (0, 1].
    """
    if is_full_calendar_month(start, end):
        return Decimal(1)
    return Decimal(inclusive_days(start, end)) / REFERENCE_DAYS


def split_by_month(start: date, end: date) -> List[Tuple[date, date]]:
    """Split [start, end] into per-calendar-month slices. Empty if start > end."""
    slices = []
    cursor = start
    while cursor <= end:
        month_end = date(cursor.year, cursor.month, days_in_month(cursor))
        slices.append((cursor, min(month_end, end)))
        cursor = _next_month_start(cursor)
    return slices


def months_between(start: date, end: date) -> List[str]:
    """Month keys of every calendar month touched by [start, end]."""
    return [month_key(s) for s, _ in split_by_month(start, end)]


def clip_window(
    start: date, end: date, bound_start: date, bound_end: date,
) -> Optional[Tuple[date, date]]:
    """Intersect [start, end] with [bound_start, bound_end]; None if disjoint."""
    s = max(start, bound_start)
    e = min(end, bound_end)
    if s > e:
        return None
    return s, e


# ─────────────────────────────────────────────
# Core calculator
# ─────────────────────────────────────────────

def calculate_billing_periods(
    start: date,
    end: date,
    billing_cycle: BillingCycle | str = BillingCycle.MONTHLY,
    today: Optional[date] = None,
) -> Tuple[BillingPeriod, ...]:
    """
    Ordered billing periods covering every calendar month the campaign
    touches, each clipped to the campaign bounds.

    A `single` cycle yields exactly one period spanning the whole campaign;
    it is the sole billing unit, so its factor is 1.
    """
    if start > end:
        raise ValidationError(f"Campaign start {start} is after end {end}")

    cycle = BillingCycle(billing_cycle)
    today = today or date.today()
    current_key = month_key(today)

    if cycle == BillingCycle.SINGLE:
        return (
            BillingPeriod(
                month_key=month_key(start),
                label=f"{start:%d %b %Y} - {end:%d %b %Y}",
                period_start=start,
                period_end=end,
                days_in_period=inclusive_days(start, end),
                pro_rata_factor=Decimal(1),
                is_first_month=True,
                is_last_month=True,
                is_current_month=start <= today <= end,
            ),
        )

    slices = split_by_month(start, end)
    if len(slices) > MAX_PERIODS:
        raise ValidationError(
            f"Campaign spans {len(slices)} months (limit {MAX_PERIODS})"
        )

    periods = []
    last_index = len(slices) - 1
    for i, (p_start, p_end) in enumerate(slices):
        full_month = is_full_calendar_month(p_start, p_end)
        periods.append(BillingPeriod(
            month_key=month_key(p_start),
            label=f"{p_start:%B %Y}",
            period_start=p_start,
            period_end=p_end,
            days_in_period=inclusive_days(p_start, p_end),
            pro_rata_factor=billable_fraction(p_start, p_end),
            is_first_month=i == 0,
            is_last_month=i == last_index,
            is_current_month=month_key(p_start) == current_key,
        ))
    return tuple(periods)


def available_months(start: date, end: date) -> List[str]:
    """Month keys selectable for per-asset monthly invoicing."""
    if start > end:
        return []
    return months_between(start, end)


def due_date_for(issue_date: date, payment_terms_days: int) -> date:
    return issue_date + timedelta(days=payment_terms_days)
