import pytest

from xrmsim import InvalidArgument, UnsupportedOperator
from xrmsim.operators import (
    Arity,
    ConditionOperator as Op,
    check_arity,
    lookup_operator,
    positive_counterpart,
    takes_integer_argument,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("eq", Op.EQUAL),
        ("neq", Op.NOT_EQUAL),
        ("neq-businessid", Op.NOT_EQUAL_BUSINESS_ID),
        ("olderthan-x-months", Op.OLDER_THAN_X_MONTHS),
        ("in-fiscal-period-and-year", Op.IN_FISCAL_PERIOD_AND_YEAR),
    ],
)
def test_lookup(name, expected):
    assert lookup_operator(name) is expected


@pytest.mark.parametrize("name", ["last-x-fiscal-years", "eq-userteams", "above", "bogus", ""])
def test_lookup_rejects(name):
    with pytest.raises(UnsupportedOperator):
        lookup_operator(name)


def test_arity():
    check_arity(Op.NULL, ())
    check_arity(Op.IN, (1, 2, 3))
    check_arity(Op.IN_FISCAL_PERIOD_AND_YEAR, (2,))
    check_arity(Op.IN_FISCAL_PERIOD_AND_YEAR, (2024, 2))
    assert Op.BETWEEN.info.arity is Arity.TWO
    for op, values in [(Op.EQUAL, ()), (Op.BETWEEN, (1, 2, 3)), (Op.IN, ()), (Op.TODAY, (1,))]:
        with pytest.raises(InvalidArgument):
            check_arity(op, values)


def test_integer_argument_operators():
    assert takes_integer_argument(Op.LAST_X_DAYS)
    assert takes_integer_argument(Op.OLDER_THAN_X_MINUTES)
    assert takes_integer_argument(Op.IN_FISCAL_YEAR)
    assert not takes_integer_argument(Op.ON)
    assert not takes_integer_argument(Op.EQUAL)


def test_negations():
    assert positive_counterpart(Op.NOT_LIKE) is Op.LIKE
    assert positive_counterpart(Op.NOT_ON) is Op.ON
    assert positive_counterpart(Op.EQUAL) is None
