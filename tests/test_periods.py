from datetime import date
from decimal import Decimal

import pytest

from ooh_billing.engine.periods import (
    available_months, billable_fraction, calculate_billing_periods, clip_window,
    due_date_for, month_bounds_for_key, months_between, parse_month_key, split_by_month,
)
from ooh_billing.errors import ValidationError
from ooh_billing.models import BillingCycle


def test_three_month_campaign_is_clipped_to_bounds():
    periods = calculate_billing_periods(date(2024, 1, 15), date(2024, 3, 10), today=date(2024, 2, 10))

    assert [p.month_key for p in periods] == ["2024-01", "2024-02", "2024-03"]
    assert periods[0].period_start == date(2024, 1, 15)
    assert periods[0].period_end == date(2024, 1, 31)
    assert periods[2].period_start == date(2024, 3, 1)
    assert periods[2].period_end == date(2024, 3, 10)

    assert periods[0].days_in_period == 17
    assert periods[0].pro_rata_factor == Decimal(17) / Decimal(30)
    assert periods[1].pro_rata_factor == Decimal(1)
    assert periods[2].pro_rata_factor == Decimal(10) / Decimal(30)

    assert periods[0].is_first_month and not periods[0].is_last_month
    assert periods[2].is_last_month
    assert [p.is_current_month for p in periods] == [False, True, False]
    assert periods[1].label == "February 2024"


def test_full_calendar_month_counts_as_one_whatever_its_length():
    for start, end, days in (
        (date(2024, 2, 1), date(2024, 2, 29), 29),
        (date(2023, 2, 1), date(2023, 2, 28), 28),
        (date(2024, 1, 1), date(2024, 1, 31), 31),
    ):
        (period,) = calculate_billing_periods(start, end, today=start)
        assert period.pro_rata_factor == 1
        assert period.days_in_period == days


def test_campaign_inside_one_month_yields_one_partial_period():
    periods = calculate_billing_periods(date(2024, 3, 5), date(2024, 3, 20), today=date(2024, 3, 5))
    assert len(periods) == 1
    assert periods[0].days_in_period == 16
    assert 0 < periods[0].pro_rata_factor < 1


def test_factors_always_in_unit_interval():
    periods = calculate_billing_periods(date(2023, 11, 30), date(2024, 8, 1), today=date(2024, 1, 1))
    assert all(0 < p.pro_rata_factor <= 1 for p in periods)
    assert len(periods) == 10


def test_single_cycle_is_one_period_with_factor_one():
    periods = calculate_billing_periods(
        date(2024, 1, 15), date(2024, 3, 10), BillingCycle.SINGLE, today=date(2024, 2, 1),
    )
    assert len(periods) == 1
    assert periods[0].pro_rata_factor == 1
    assert periods[0].days_in_period == 56
    assert periods[0].is_current_month


def test_same_inputs_give_identical_periods():
    args = (date(2024, 1, 15), date(2024, 6, 3), "monthly", date(2024, 4, 1))
    assert calculate_billing_periods(*args) == calculate_billing_periods(*args)


def test_start_after_end_rejected():
    with pytest.raises(ValidationError):
        calculate_billing_periods(date(2024, 3, 1), date(2024, 2, 1))


def test_overlong_campaign_rejected():
    with pytest.raises(ValidationError):
        calculate_billing_periods(date(2000, 1, 1), date(2015, 1, 1))


@pytest.mark.parametrize("key", ["2024-13", "2024-1", "24-01", "", "2024/01"])
def test_bad_month_keys(key):
    with pytest.raises(ValidationError):
        parse_month_key(key)


def test_month_helpers():
    assert month_bounds_for_key("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert months_between(date(2023, 12, 20), date(2024, 2, 2)) == ["2023-12", "2024-01", "2024-02"]
    assert split_by_month(date(2024, 1, 30), date(2024, 2, 1)) == [
        (date(2024, 1, 30), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 1)),
    ]
    assert billable_fraction(date(2024, 4, 1), date(2024, 4, 15)) == Decimal("0.5")
    assert clip_window(date(2024, 1, 1), date(2024, 1, 10), date(2024, 2, 1), date(2024, 2, 5)) is None
    assert available_months(date(2024, 5, 2), date(2024, 4, 1)) == []
    assert due_date_for(date(2024, 1, 31), 30) == date(2024, 3, 1)
