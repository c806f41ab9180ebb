"""
Relative date operators resolved to concrete instant ranges.

Every boundary is worked out on the wall clock of the configured timezone
(today, this week, the fiscal year...) and then converted to UTC. Closed
periods end on the last millisecond of their last day, 23:59:59.999, so a
record stamped late on the boundary day is still inside.
"""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Optional, Sequence, Tuple

from .errors import InvalidArgument
from .helpers import as_datetime, parse_int
from .model import EnvironmentContext, FiscalPeriodTemplate, FiscalSettings
from .operators import ConditionOperator

log = logging.getLogger(__name__)

_O = ConditionOperator

END_OF_DAY = time(23, 59, 59, 999000)
_ONE_MS = timedelta(milliseconds=1)
_FOUR_WEEK_DAYS = 28


@dataclass(frozen=True)
class DateRange:
    """Instant range in UTC. A missing bound is open; ``end`` is exclusive when flagged."""

    start: Optional[datetime]
    end: Optional[datetime]
    end_exclusive: bool = False

    def contains(self, value: datetime, tz: tzinfo) -> bool:
        """
        Test ``value`` against the range.

        Aware values are compared as instants. Naive values carry no zone,
        so they are compared with the bounds read as wall-clock time in ``tz``.
        """
        if value.tzinfo is None:
            start = _wall_clock(self.start, tz)
            end = _wall_clock(self.end, tz)
        else:
            value = value.astimezone(timezone.utc)
            start, end = self.start, self.end
        if start is not None and value < start:
            return False
        if end is not None:
            if self.end_exclusive:
                return value < end
            return value <= end
        return True


def _wall_clock(instant: Optional[datetime], tz: tzinfo) -> Optional[datetime]:
    if instant is None:
        return None
    return instant.astimezone(tz).replace(tzinfo=None)


def to_utc(local: datetime, tz: tzinfo) -> datetime:
    """Read a naive wall-clock value in ``tz`` and return the UTC instant."""
    if local.tzinfo is not None:
        return local.astimezone(timezone.utc)
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def add_months(value, months: int):
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _day_span(first: date, last: date, tz: tzinfo) -> DateRange:
    return DateRange(
        to_utc(datetime.combine(first, time()), tz),
        to_utc(datetime.combine(last, END_OF_DAY), tz),
    )


def _block_span(first_local: datetime, next_local: datetime, tz: tzinfo) -> DateRange:
    """``[first, next)`` written as an inclusive range ending one millisecond early."""
    return DateRange(to_utc(first_local, tz), to_utc(next_local - _ONE_MS, tz))


def _count_argument(op: ConditionOperator, values: Sequence[Any]) -> int:
    try:
        return parse_int(values[0])
    except (ValueError, IndexError):
        raise InvalidArgument(f"{op.value} requires an integer value") from None


def _literal_date(value: Any, tz: tzinfo) -> date:
    parsed = as_datetime(value)
    if parsed is None:
        raise InvalidArgument(f"date value expected, got {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date()


def _literal_instant(value: Any, tz: tzinfo) -> Tuple[datetime, bool]:
    """Instant for a literal, plus whether it named a whole day (date only or midnight)."""
    parsed = as_datetime(value)
    if parsed is None:
        raise InvalidArgument(f"date value expected, got {value!r}")
    whole_day = parsed.time() == time()
    if parsed.tzinfo is not None:
        local = parsed.astimezone(tz)
        whole_day = whole_day and local.time() == time()
        return parsed.astimezone(timezone.utc), whole_day
    return to_utc(parsed, tz), whole_day


# ---------------------------------------------------------------- fiscal


def fiscal_year_start(year: int, fiscal: FiscalSettings) -> date:
    return date(year, fiscal.start_month, fiscal.start_day)


def current_fiscal_year(today: date, fiscal: FiscalSettings) -> int:
    if today >= fiscal_year_start(today.year, fiscal):
        return today.year
    return today.year - 1


def fiscal_year_range(year: int, fiscal: FiscalSettings, tz: tzinfo) -> DateRange:
    first = datetime.combine(fiscal_year_start(year, fiscal), time())
    following = datetime.combine(fiscal_year_start(year + 1, fiscal), time())
    return _block_span(first, following, tz)


def fiscal_period_range(year: int, period: int, fiscal: FiscalSettings, tz: tzinfo) -> DateRange:
    template = fiscal.template
    periods = template.periods_per_year
    if period < 1 or period > periods:
        raise InvalidArgument(
            f"Period number {period} is out of range for template {template.value}. Valid range is 1-{periods}."
        )
    year_start = datetime.combine(fiscal_year_start(year, fiscal), time())
    if template is FiscalPeriodTemplate.FOUR_WEEK:
        first = year_start + timedelta(days=(period - 1) * _FOUR_WEEK_DAYS)
        if period == periods:
            following = add_months(year_start, 12)
        else:
            following = first + timedelta(days=_FOUR_WEEK_DAYS)
    else:
        months = 12 // periods
        first = add_months(year_start, (period - 1) * months)
        following = add_months(first, months)
    return _block_span(first, following, tz)


def current_fiscal_period(today: date, fiscal: FiscalSettings) -> Tuple[int, int]:
    """Return ``(fiscal_year, period)`` containing ``today``."""
    year = current_fiscal_year(today, fiscal)
    start = fiscal_year_start(year, fiscal)
    periods = fiscal.template.periods_per_year
    if fiscal.template is FiscalPeriodTemplate.FOUR_WEEK:
        period = (today - start).days // _FOUR_WEEK_DAYS + 1
    else:
        months_in = (today.year - start.year) * 12 + today.month - start.month
        if today.day < start.day and months_in > 0:
            months_in -= 1
        period = months_in // (12 // periods) + 1
    return year, min(period, periods)


def offset_fiscal_period(year: int, period: int, offset: int, fiscal: FiscalSettings) -> Tuple[int, int]:
    periods = fiscal.template.periods_per_year
    index = (year * periods) + (period - 1) + offset
    return index // periods, index % periods + 1


# ---------------------------------------------------------------- resolver


_LAST_X = {
    _O.LAST_X_HOURS: ("hours", 1),
    _O.LAST_X_DAYS: ("days", 1),
    _O.LAST_X_WEEKS: ("days", 7),
    _O.LAST_X_MONTHS: ("months", 1),
    _O.LAST_X_YEARS: ("months", 12),
}
_NEXT_X = {
    _O.NEXT_X_HOURS: ("hours", 1),
    _O.NEXT_X_DAYS: ("days", 1),
    _O.NEXT_X_WEEKS: ("days", 7),
    _O.NEXT_X_MONTHS: ("months", 1),
    _O.NEXT_X_YEARS: ("months", 12),
}
_OLDER_THAN = {
    _O.OLDER_THAN_X_MINUTES: ("minutes", 1),
    _O.OLDER_THAN_X_HOURS: ("hours", 1),
    _O.OLDER_THAN_X_DAYS: ("days", 1),
    _O.OLDER_THAN_X_WEEKS: ("days", 7),
    _O.OLDER_THAN_X_MONTHS: ("months", 1),
    _O.OLDER_THAN_X_YEARS: ("months", 12),
}

DATE_RANGE_OPERATORS = frozenset(
    {
        _O.YESTERDAY, _O.TODAY, _O.TOMORROW,
        _O.ON, _O.ON_OR_BEFORE, _O.ON_OR_AFTER,
        _O.LAST_SEVEN_DAYS, _O.NEXT_SEVEN_DAYS,
        _O.LAST_WEEK, _O.THIS_WEEK, _O.NEXT_WEEK,
        _O.LAST_MONTH, _O.THIS_MONTH, _O.NEXT_MONTH,
        _O.LAST_YEAR, _O.THIS_YEAR, _O.NEXT_YEAR,
        _O.IN_FISCAL_YEAR, _O.THIS_FISCAL_YEAR, _O.LAST_FISCAL_YEAR, _O.NEXT_FISCAL_YEAR,
        _O.IN_FISCAL_PERIOD, _O.IN_FISCAL_PERIOD_AND_YEAR,
        _O.THIS_FISCAL_PERIOD, _O.LAST_FISCAL_PERIOD, _O.NEXT_FISCAL_PERIOD,
        _O.BETWEEN,
    }
) | frozenset(_LAST_X) | frozenset(_NEXT_X) | frozenset(_OLDER_THAN)


def _shift(instant: datetime, unit: str, amount: int) -> datetime:
    if unit == "months":
        return add_months(instant, amount)
    return instant + timedelta(**{unit: amount})


def resolve_date_range(
    operator: ConditionOperator,
    values: Sequence[Any],
    ctx: EnvironmentContext,
) -> DateRange:
    """Resolve a date operator and its literals to a UTC ``DateRange``."""
    op = ConditionOperator(operator)
    tz = ctx.timezone
    now = ctx.now.astimezone(timezone.utc)
    today = ctx.local_now.date()

    if op is _O.TODAY:
        return _day_span(today, today, tz)
    if op is _O.YESTERDAY:
        day = today - timedelta(days=1)
        return _day_span(day, day, tz)
    if op is _O.TOMORROW:
        day = today + timedelta(days=1)
        return _day_span(day, day, tz)

    if op is _O.ON:
        day = _literal_date(values[0], tz)
        return _day_span(day, day, tz)
    if op is _O.ON_OR_BEFORE:
        day = _literal_date(values[0], tz)
        return DateRange(None, to_utc(datetime.combine(day, END_OF_DAY), tz))
    if op is _O.ON_OR_AFTER:
        day = _literal_date(values[0], tz)
        return DateRange(to_utc(datetime.combine(day, time()), tz), None)

    if op is _O.BETWEEN:
        if len(values) != 2:
            raise InvalidArgument(f"between expects two values, got {len(values)}")
        start, _ = _literal_instant(values[0], tz)
        end, whole_day = _literal_instant(values[1], tz)
        if whole_day:
            local_day = end.astimezone(tz).date()
            end = to_utc(datetime.combine(local_day, END_OF_DAY), tz)
        return DateRange(start, end)

    if op is _O.LAST_SEVEN_DAYS:
        return DateRange(now - timedelta(days=7), now)
    if op is _O.NEXT_SEVEN_DAYS:
        return DateRange(now, now + timedelta(days=7))
    if op in _LAST_X:
        unit, factor = _LAST_X[op]
        amount = _count_argument(op, values)
        return DateRange(_shift(now, unit, -amount * factor), now)
    if op in _NEXT_X:
        unit, factor = _NEXT_X[op]
        amount = _count_argument(op, values)
        return DateRange(now, _shift(now, unit, amount * factor))
    if op in _OLDER_THAN:
        unit, factor = _OLDER_THAN[op]
        amount = _count_argument(op, values)
        if amount <= 0:
            raise InvalidArgument(f"{op.value} requires a value greater than 0")
        return DateRange(None, _shift(now, unit, -amount * factor), end_exclusive=True)

    if op in (_O.LAST_WEEK, _O.THIS_WEEK, _O.NEXT_WEEK):
        delta = {_O.LAST_WEEK: -1, _O.THIS_WEEK: 0, _O.NEXT_WEEK: 1}[op]
        back = (today.weekday() - ctx.first_day_of_week) % 7
        first = today - timedelta(days=back) + timedelta(weeks=delta)
        return _day_span(first, first + timedelta(days=6), tz)
    if op in (_O.LAST_MONTH, _O.THIS_MONTH, _O.NEXT_MONTH):
        delta = {_O.LAST_MONTH: -1, _O.THIS_MONTH: 0, _O.NEXT_MONTH: 1}[op]
        first = add_months(today.replace(day=1), delta)
        last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
        return _day_span(first, last, tz)
    if op in (_O.LAST_YEAR, _O.THIS_YEAR, _O.NEXT_YEAR):
        year = today.year + {_O.LAST_YEAR: -1, _O.THIS_YEAR: 0, _O.NEXT_YEAR: 1}[op]
        return _day_span(date(year, 1, 1), date(year, 12, 31), tz)

    fiscal = ctx.fiscal
    if op is _O.IN_FISCAL_YEAR:
        return fiscal_year_range(_count_argument(op, values), fiscal, tz)
    if op in (_O.THIS_FISCAL_YEAR, _O.LAST_FISCAL_YEAR, _O.NEXT_FISCAL_YEAR):
        delta = {_O.LAST_FISCAL_YEAR: -1, _O.THIS_FISCAL_YEAR: 0, _O.NEXT_FISCAL_YEAR: 1}[op]
        return fiscal_year_range(current_fiscal_year(today, fiscal) + delta, fiscal, tz)
    if op in (_O.IN_FISCAL_PERIOD, _O.IN_FISCAL_PERIOD_AND_YEAR):
        if len(values) == 1:
            year = current_fiscal_year(today, fiscal)
            period = _count_argument(op, values)
        elif len(values) == 2:
            year = _count_argument(op, values[:1])
            period = _count_argument(op, values[1:])
        else:
            raise InvalidArgument(f"{op.value} expects one or two values, got {len(values)}")
        return fiscal_period_range(year, period, fiscal, tz)
    if op in (_O.THIS_FISCAL_PERIOD, _O.LAST_FISCAL_PERIOD, _O.NEXT_FISCAL_PERIOD):
        delta = {_O.LAST_FISCAL_PERIOD: -1, _O.THIS_FISCAL_PERIOD: 0, _O.NEXT_FISCAL_PERIOD: 1}[op]
        year, period = current_fiscal_period(today, fiscal)
        year, period = offset_fiscal_period(year, period, delta, fiscal)
        return fiscal_period_range(year, period, fiscal, tz)

    raise InvalidArgument(f"{op.value} is not a date range operator")


__all__ = [
    "DateRange",
    "DATE_RANGE_OPERATORS",
    "END_OF_DAY",
    "resolve_date_range",
    "to_utc",
    "add_months",
    "fiscal_year_range",
    "fiscal_period_range",
    "current_fiscal_year",
    "current_fiscal_period",
    "offset_fiscal_period",
]
