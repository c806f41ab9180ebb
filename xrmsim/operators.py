import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .errors import InvalidArgument, UnsupportedOperator

log = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    """Condition operators, valued by their FetchXML spelling."""

    EQUAL = "eq"
    NOT_EQUAL = "ne"
    GREATER_THAN = "gt"
    GREATER_EQUAL = "ge"
    LESS_THAN = "lt"
    LESS_EQUAL = "le"
    LIKE = "like"
    NOT_LIKE = "not-like"
    BEGINS_WITH = "begins-with"
    NOT_BEGIN_WITH = "not-begin-with"
    ENDS_WITH = "ends-with"
    NOT_END_WITH = "not-end-with"
    IN = "in"
    NOT_IN = "not-in"
    BETWEEN = "between"
    NOT_BETWEEN = "not-between"
    NULL = "null"
    NOT_NULL = "not-null"

    YESTERDAY = "yesterday"
    TODAY = "today"
    TOMORROW = "tomorrow"
    ON = "on"
    NOT_ON = "not-on"
    ON_OR_BEFORE = "on-or-before"
    ON_OR_AFTER = "on-or-after"
    LAST_SEVEN_DAYS = "last-seven-days"
    NEXT_SEVEN_DAYS = "next-seven-days"
    LAST_WEEK = "last-week"
    THIS_WEEK = "this-week"
    NEXT_WEEK = "next-week"
    LAST_MONTH = "last-month"
    THIS_MONTH = "this-month"
    NEXT_MONTH = "next-month"
    LAST_YEAR = "last-year"
    THIS_YEAR = "this-year"
    NEXT_YEAR = "next-year"
    LAST_X_HOURS = "last-x-hours"
    NEXT_X_HOURS = "next-x-hours"
    LAST_X_DAYS = "last-x-days"
    NEXT_X_DAYS = "next-x-days"
    LAST_X_WEEKS = "last-x-weeks"
    NEXT_X_WEEKS = "next-x-weeks"
    LAST_X_MONTHS = "last-x-months"
    NEXT_X_MONTHS = "next-x-months"
    LAST_X_YEARS = "last-x-years"
    NEXT_X_YEARS = "next-x-years"
    OLDER_THAN_X_MINUTES = "olderthan-x-minutes"
    OLDER_THAN_X_HOURS = "olderthan-x-hours"
    OLDER_THAN_X_DAYS = "olderthan-x-days"
    OLDER_THAN_X_WEEKS = "olderthan-x-weeks"
    OLDER_THAN_X_MONTHS = "olderthan-x-months"
    OLDER_THAN_X_YEARS = "olderthan-x-years"

    IN_FISCAL_YEAR = "in-fiscal-year"
    THIS_FISCAL_YEAR = "this-fiscal-year"
    LAST_FISCAL_YEAR = "last-fiscal-year"
    NEXT_FISCAL_YEAR = "next-fiscal-year"
    IN_FISCAL_PERIOD = "in-fiscal-period"
    IN_FISCAL_PERIOD_AND_YEAR = "in-fiscal-period-and-year"
    THIS_FISCAL_PERIOD = "this-fiscal-period"
    LAST_FISCAL_PERIOD = "last-fiscal-period"
    NEXT_FISCAL_PERIOD = "next-fiscal-period"
    LAST_X_FISCAL_YEARS = "last-x-fiscal-years"
    NEXT_X_FISCAL_YEARS = "next-x-fiscal-years"
    LAST_X_FISCAL_PERIODS = "last-x-fiscal-periods"
    NEXT_X_FISCAL_PERIODS = "next-x-fiscal-periods"
    IN_OR_BEFORE_FISCAL_PERIOD_AND_YEAR = "in-or-before-fiscal-period-and-year"
    IN_OR_AFTER_FISCAL_PERIOD_AND_YEAR = "in-or-after-fiscal-period-and-year"

    EQUAL_USER_ID = "eq-userid"
    NOT_EQUAL_USER_ID = "ne-userid"
    EQUAL_BUSINESS_ID = "eq-businessid"
    NOT_EQUAL_BUSINESS_ID = "ne-businessid"
    EQUAL_USER_TEAMS = "eq-userteams"
    EQUAL_USER_OR_USER_TEAMS = "eq-useroruserteams"
    EQUAL_USER_OR_USER_HIERARCHY = "eq-useroruserhierarchy"
    EQUAL_USER_OR_USER_HIERARCHY_AND_TEAMS = "eq-useroruserhierarchyandteams"
    EQUAL_USER_LANGUAGE = "eq-userlanguage"

    UNDER = "under"
    EQUAL_OR_UNDER = "eq-or-under"
    NOT_UNDER = "not-under"
    ABOVE = "above"
    EQUAL_OR_ABOVE = "eq-or-above"

    CONTAIN_VALUES = "contain-values"
    NOT_CONTAIN_VALUES = "not-contain-values"

    @property
    def fetch_name(self) -> str:
        return self.value

    @property
    def info(self) -> "OperatorInfo":
        return _OPERATOR_INFO[self]


class Arity(str, Enum):
    NONE = "none"
    ONE = "one"
    TWO = "two"
    ONE_OR_TWO = "one-or-two"
    MANY = "many"


class TypeClass(str, Enum):
    ANY = "any"
    ORDERED = "ordered"
    TEXT = "text"
    DATE = "date"
    IDENTIFIER = "identifier"
    MULTI_SELECT = "multi-select"


@dataclass(frozen=True)
class OperatorInfo:
    arity: Arity
    type_class: TypeClass
    negates: Optional[ConditionOperator] = None
    supported: bool = True


_O = ConditionOperator

_OPERATOR_INFO: Dict[ConditionOperator, OperatorInfo] = {
    _O.EQUAL: OperatorInfo(Arity.ONE, TypeClass.ANY),
    _O.NOT_EQUAL: OperatorInfo(Arity.ONE, TypeClass.ANY, negates=_O.EQUAL),
    _O.GREATER_THAN: OperatorInfo(Arity.ONE, TypeClass.ORDERED),
    _O.GREATER_EQUAL: OperatorInfo(Arity.ONE, TypeClass.ORDERED),
    _O.LESS_THAN: OperatorInfo(Arity.ONE, TypeClass.ORDERED),
    _O.LESS_EQUAL: OperatorInfo(Arity.ONE, TypeClass.ORDERED),
    _O.LIKE: OperatorInfo(Arity.ONE, TypeClass.TEXT),
    _O.NOT_LIKE: OperatorInfo(Arity.ONE, TypeClass.TEXT, negates=_O.LIKE),
    _O.BEGINS_WITH: OperatorInfo(Arity.ONE, TypeClass.TEXT),
    _O.NOT_BEGIN_WITH: OperatorInfo(Arity.ONE, TypeClass.TEXT, negates=_O.BEGINS_WITH),
    _O.ENDS_WITH: OperatorInfo(Arity.ONE, TypeClass.TEXT),
    _O.NOT_END_WITH: OperatorInfo(Arity.ONE, TypeClass.TEXT, negates=_O.ENDS_WITH),
    _O.IN: OperatorInfo(Arity.MANY, TypeClass.ANY),
    _O.NOT_IN: OperatorInfo(Arity.MANY, TypeClass.ANY, negates=_O.IN),
    _O.BETWEEN: OperatorInfo(Arity.TWO, TypeClass.ORDERED),
    _O.NOT_BETWEEN: OperatorInfo(Arity.TWO, TypeClass.ORDERED, negates=_O.BETWEEN),
    _O.NULL: OperatorInfo(Arity.NONE, TypeClass.ANY),
    _O.NOT_NULL: OperatorInfo(Arity.NONE, TypeClass.ANY),

    _O.YESTERDAY: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.TODAY: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.TOMORROW: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.ON: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NOT_ON: OperatorInfo(Arity.ONE, TypeClass.DATE, negates=_O.ON),
    _O.ON_OR_BEFORE: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.ON_OR_AFTER: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.LAST_SEVEN_DAYS: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_SEVEN_DAYS: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_WEEK: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.THIS_WEEK: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_WEEK: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_MONTH: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.THIS_MONTH: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_MONTH: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.THIS_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_X_HOURS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NEXT_X_HOURS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.LAST_X_DAYS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NEXT_X_DAYS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.LAST_X_WEEKS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NEXT_X_WEEKS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.LAST_X_MONTHS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NEXT_X_MONTHS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.LAST_X_YEARS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.NEXT_X_YEARS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_MINUTES: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_HOURS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_DAYS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_WEEKS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_MONTHS: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.OLDER_THAN_X_YEARS: OperatorInfo(Arity.ONE, TypeClass.DATE),

    _O.IN_FISCAL_YEAR: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.THIS_FISCAL_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_FISCAL_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_FISCAL_YEAR: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.IN_FISCAL_PERIOD: OperatorInfo(Arity.ONE, TypeClass.DATE),
    _O.IN_FISCAL_PERIOD_AND_YEAR: OperatorInfo(Arity.ONE_OR_TWO, TypeClass.DATE),
    _O.THIS_FISCAL_PERIOD: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_FISCAL_PERIOD: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.NEXT_FISCAL_PERIOD: OperatorInfo(Arity.NONE, TypeClass.DATE),
    _O.LAST_X_FISCAL_YEARS: OperatorInfo(Arity.ONE, TypeClass.DATE, supported=False),
    _O.NEXT_X_FISCAL_YEARS: OperatorInfo(Arity.ONE, TypeClass.DATE, supported=False),
    _O.LAST_X_FISCAL_PERIODS: OperatorInfo(Arity.ONE, TypeClass.DATE, supported=False),
    _O.NEXT_X_FISCAL_PERIODS: OperatorInfo(Arity.ONE, TypeClass.DATE, supported=False),
    _O.IN_OR_BEFORE_FISCAL_PERIOD_AND_YEAR: OperatorInfo(Arity.TWO, TypeClass.DATE, supported=False),
    _O.IN_OR_AFTER_FISCAL_PERIOD_AND_YEAR: OperatorInfo(Arity.TWO, TypeClass.DATE, supported=False),

    _O.EQUAL_USER_ID: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER),
    _O.NOT_EQUAL_USER_ID: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, negates=_O.EQUAL_USER_ID),
    _O.EQUAL_BUSINESS_ID: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER),
    _O.NOT_EQUAL_BUSINESS_ID: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, negates=_O.EQUAL_BUSINESS_ID),
    _O.EQUAL_USER_TEAMS: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_USER_OR_USER_TEAMS: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_USER_OR_USER_HIERARCHY: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_USER_OR_USER_HIERARCHY_AND_TEAMS: OperatorInfo(Arity.NONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_USER_LANGUAGE: OperatorInfo(Arity.NONE, TypeClass.ANY, supported=False),

    _O.UNDER: OperatorInfo(Arity.ONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_OR_UNDER: OperatorInfo(Arity.ONE, TypeClass.IDENTIFIER, supported=False),
    _O.NOT_UNDER: OperatorInfo(Arity.ONE, TypeClass.IDENTIFIER, supported=False),
    _O.ABOVE: OperatorInfo(Arity.ONE, TypeClass.IDENTIFIER, supported=False),
    _O.EQUAL_OR_ABOVE: OperatorInfo(Arity.ONE, TypeClass.IDENTIFIER, supported=False),

    _O.CONTAIN_VALUES: OperatorInfo(Arity.MANY, TypeClass.MULTI_SELECT),
    _O.NOT_CONTAIN_VALUES: OperatorInfo(Arity.MANY, TypeClass.MULTI_SELECT, negates=_O.CONTAIN_VALUES),
}

# spellings accepted on input but never produced
_ALIASES: Dict[str, ConditionOperator] = {
    "neq": _O.NOT_EQUAL,
    "neq-businessid": _O.NOT_EQUAL_BUSINESS_ID,
}

_NUMERIC_ARGUMENT_OPERATORS = frozenset(
    op
    for op in ConditionOperator
    if op.value.startswith(("last-x-", "next-x-", "olderthan-x-"))
) | {_O.IN_FISCAL_YEAR, _O.IN_FISCAL_PERIOD, _O.IN_FISCAL_PERIOD_AND_YEAR}


def lookup_operator(name: str) -> ConditionOperator:
    """Map a FetchXML operator name to its operator, rejecting names we cannot evaluate."""
    key = (name or "").strip()
    op = _ALIASES.get(key)
    if op is None:
        try:
            op = ConditionOperator(key)
        except ValueError:
            log.warning("Unknown condition operator %r", name)
            raise UnsupportedOperator(key, "not a recognized operator") from None
    ensure_supported(op)
    return op


def ensure_supported(op: ConditionOperator) -> None:
    if not op.info.supported:
        log.warning("Condition operator %s is recognized but not implemented", op.value)
        raise UnsupportedOperator(op.value)


def takes_integer_argument(op: ConditionOperator) -> bool:
    """True for the relative operators whose argument is a count (hours, days, fiscal year...)."""
    return op in _NUMERIC_ARGUMENT_OPERATORS


def check_arity(op: ConditionOperator, values) -> None:
    count = len(values)
    arity = op.info.arity
    if arity is Arity.NONE:
        ok = count == 0
    elif arity is Arity.ONE:
        ok = count == 1
    elif arity is Arity.TWO:
        ok = count == 2
    elif arity is Arity.ONE_OR_TWO:
        ok = count in (1, 2)
    else:
        ok = count >= 1
    if not ok:
        raise InvalidArgument(f"operator {op.value} expects {arity.value} value(s), got {count}")


def positive_counterpart(op: ConditionOperator) -> Optional[ConditionOperator]:
    return op.info.negates


__all__ = [
    "ConditionOperator",
    "Arity",
    "TypeClass",
    "OperatorInfo",
    "lookup_operator",
    "ensure_supported",
    "takes_integer_argument",
    "check_arity",
    "positive_counterpart",
]
