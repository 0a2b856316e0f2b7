from datetime import date

import pytest

from periods import month_bounds, month_key, resolve_period, shift_months


def test_shift_months_snaps_to_short_months():
    assert shift_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert shift_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
    assert shift_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
    assert shift_months(date(2024, 1, 15), -1) == date(2023, 12, 15)


def test_month_helpers():
    assert month_key(date(2024, 3, 9)) == "2024-03"
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_resolve_period_presets():
    today = date(2024, 6, 20)  # Thursday

    assert resolve_period("today", None, None, today=today).start == today
    week = resolve_period("this_week", None, None, today=today)
    assert week.start == date(2024, 6, 16)
    month = resolve_period("this_month", None, None, today=today)
    assert (month.start, month.end) == (date(2024, 6, 1), date(2024, 6, 30))
    last = resolve_period("last_month", None, None, today=today)
    assert (last.start, last.end) == (date(2024, 5, 1), date(2024, 5, 31))
    quarter = resolve_period("last_3_months", None, None, today=today)
    assert (quarter.start, quarter.end) == (date(2024, 3, 20), today)
    assert resolve_period(None, None, None, today=today).slug == "all"


def test_resolve_period_custom_range():
    period = resolve_period("custom", "2024-01-01", "2024-01-31")
    assert period.contains(date(2024, 1, 15))
    assert not period.contains(date(2024, 2, 1))

    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-01", "2024-01-01")
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-01", None)
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None)
