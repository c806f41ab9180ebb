from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from xrmsim.date_ranges import (
    current_fiscal_period,
    fiscal_period_range,
    offset_fiscal_period,
    resolve_date_range,
)
from xrmsim.errors import InvalidArgument
from xrmsim.model import EnvironmentContext, FiscalPeriodTemplate, FiscalSettings
from xrmsim.operators import ConditionOperator as Op

UTC = timezone.utc


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def test_today_runs_to_last_millisecond(ctx):
    r = resolve_date_range(Op.TODAY, (), ctx)
    assert r.start == utc(2024, 6, 15)
    assert r.end == utc(2024, 6, 15, 23, 59, 59, 999000)


def test_yesterday_and_tomorrow(ctx):
    assert resolve_date_range(Op.YESTERDAY, (), ctx).start == utc(2024, 6, 14)
    assert resolve_date_range(Op.TOMORROW, (), ctx).end == utc(2024, 6, 16, 23, 59, 59, 999000)


def test_this_week_starts_on_configured_day(ctx):
    r = resolve_date_range(Op.THIS_WEEK, (), ctx)
    assert r.start == utc(2024, 6, 9)
    assert r.end == utc(2024, 6, 15, 23, 59, 59, 999000)

    monday_ctx = EnvironmentContext(now=ctx.now, timezone=ctx.timezone, first_day_of_week=0)
    r = resolve_date_range(Op.LAST_WEEK, (), monday_ctx)
    assert r.start == utc(2024, 6, 3)
    assert r.end == utc(2024, 6, 9, 23, 59, 59, 999000)


def test_month_and_year_ranges(ctx):
    r = resolve_date_range(Op.THIS_MONTH, (), ctx)
    assert (r.start, r.end) == (utc(2024, 6, 1), utc(2024, 6, 30, 23, 59, 59, 999000))
    r = resolve_date_range(Op.NEXT_MONTH, (), ctx)
    assert (r.start, r.end) == (utc(2024, 7, 1), utc(2024, 7, 31, 23, 59, 59, 999000))
    r = resolve_date_range(Op.LAST_YEAR, (), ctx)
    assert (r.start, r.end) == (utc(2023, 1, 1), utc(2023, 12, 31, 23, 59, 59, 999000))


def test_relative_x_operators_are_not_day_aligned(ctx):
    r = resolve_date_range(Op.LAST_X_HOURS, (2,), ctx)
    assert (r.start, r.end) == (utc(2024, 6, 15, 10), ctx.now)
    r = resolve_date_range(Op.NEXT_X_MONTHS, (1,), ctx)
    assert (r.start, r.end) == (ctx.now, utc(2024, 7, 15, 12))
    r = resolve_date_range(Op.LAST_SEVEN_DAYS, (), ctx)
    assert r.start == ctx.now - timedelta(days=7)


def test_older_than_is_exclusive_and_needs_positive_count(ctx):
    r = resolve_date_range(Op.OLDER_THAN_X_DAYS, (3,), ctx)
    assert r.start is None
    assert r.end_exclusive
    assert not r.contains(utc(2024, 6, 12, 12), UTC)
    assert r.contains(utc(2024, 6, 12, 11, 59), UTC)
    with pytest.raises(InvalidArgument):
        resolve_date_range(Op.OLDER_THAN_X_DAYS, (0,), ctx)
    with pytest.raises(InvalidArgument):
        resolve_date_range(Op.OLDER_THAN_X_MONTHS, ("soon",), ctx)


def test_between_date_literals_cover_whole_last_day(ctx):
    r = resolve_date_range(Op.BETWEEN, ("2024-01-01", "2024-01-31"), ctx)
    assert r.contains(utc(2024, 1, 1), UTC)
    assert r.contains(utc(2024, 1, 31, 23, 59), UTC)
    assert not r.contains(utc(2024, 2, 1), UTC)


def test_between_with_time_keeps_exact_end(ctx):
    r = resolve_date_range(Op.BETWEEN, ("2024-01-01T00:00:00Z", "2024-01-31T12:00:00Z"), ctx)
    assert r.end == utc(2024, 1, 31, 12)


def test_between_with_naive_time_literal_keeps_exact_end(ctx):
    r = resolve_date_range(Op.BETWEEN, ("2024-01-01", "2024-01-31T10:00:00"), ctx)
    assert r.end == utc(2024, 1, 31, 10)
    assert r.contains(utc(2024, 1, 31, 10), UTC)
    assert not r.contains(utc(2024, 1, 31, 12), UTC)
    midnight = resolve_date_range(Op.BETWEEN, ("2024-01-01", "2024-01-31T00:00:00"), ctx)
    assert midnight.contains(utc(2024, 1, 31, 23, 59), UTC)


def test_on_uses_local_day():
    madrid = EnvironmentContext(now=utc(2024, 6, 15, 12), timezone=ZoneInfo("Europe/Madrid"))
    r = resolve_date_range(Op.ON, (date(2024, 6, 15),), madrid)
    assert r.start == utc(2024, 6, 14, 22)
    assert r.contains(datetime(2024, 6, 15, 0, 30), madrid.timezone)
    assert not r.contains(utc(2024, 6, 15, 22, 30), madrid.timezone)


def test_fiscal_year(ctx):
    r = resolve_date_range(Op.THIS_FISCAL_YEAR, (), ctx)
    assert (r.start, r.end) == (utc(2024, 4, 1), utc(2025, 3, 31, 23, 59, 59, 999000))
    r = resolve_date_range(Op.IN_FISCAL_YEAR, (2022,), ctx)
    assert r.start == utc(2022, 4, 1)


def test_fiscal_periods(ctx):
    assert current_fiscal_period(date(2024, 6, 15), ctx.fiscal) == (2024, 1)
    assert offset_fiscal_period(2024, 1, -1, ctx.fiscal) == (2023, 4)

    r = resolve_date_range(Op.LAST_FISCAL_PERIOD, (), ctx)
    assert (r.start, r.end) == (utc(2024, 1, 1), utc(2024, 3, 31, 23, 59, 59, 999000))
    assert resolve_date_range(Op.IN_FISCAL_PERIOD_AND_YEAR, (2023, 4), ctx) == r
    r = resolve_date_range(Op.IN_FISCAL_PERIOD, (2,), ctx)
    assert r.start == utc(2024, 7, 1)


def test_four_week_template_last_period_runs_to_year_end():
    fiscal = FiscalSettings(4, 1, FiscalPeriodTemplate.FOUR_WEEK)
    r = fiscal_period_range(2024, 13, fiscal, UTC)
    assert r.start == utc(2025, 3, 3)
    assert r.end == utc(2025, 3, 31, 23, 59, 59, 999000)


def test_monthly_template():
    fiscal = FiscalSettings(4, 1, FiscalPeriodTemplate.MONTHLY)
    r = fiscal_period_range(2024, 12, fiscal, UTC)
    assert (r.start, r.end) == (utc(2025, 3, 1), utc(2025, 3, 31, 23, 59, 59, 999000))


def test_period_out_of_range(ctx):
    with pytest.raises(InvalidArgument):
        resolve_date_range(Op.IN_FISCAL_PERIOD_AND_YEAR, (2024, 5), ctx)


def test_naive_values_compare_on_wall_clock():
    madrid = ZoneInfo("Europe/Madrid")
    ctx = EnvironmentContext(now=utc(2024, 6, 15, 12), timezone=madrid)
    r = resolve_date_range(Op.TODAY, (), ctx)
    assert r.contains(datetime(2024, 6, 15, 0, 0), madrid)
    assert not r.contains(datetime(2024, 6, 14, 23, 59), madrid)
