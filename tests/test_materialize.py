import uuid

import pytest

from xrmsim import (
    ColumnSet,
    EntityReference,
    InvalidArgument,
    LinkEntity,
    OrderExpression,
    PagingInfo,
    QueryDefinition,
    Record,
    UnknownAttribute,
)
from xrmsim.materialize import format_paging_cookie


@pytest.fixture()
def accounts():
    return [
        Record("account", uuid.UUID(int=1), {"name": "b", "rank": 2}),
        Record("account", uuid.UUID(int=2), {"name": "a", "rank": None}),
        Record("account", uuid.UUID(int=3), {"name": "c", "rank": 1}),
        Record("account", uuid.UUID(int=4), {"name": "a", "rank": 3}),
        Record("account", uuid.UUID(int=5), {"name": "d"}),
    ]


def ranks(rows):
    return [r.get("rank") for r in rows]


def test_nulls_sort_first_ascending_and_last_descending(make_engine, accounts):
    engine = make_engine(accounts)
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name", "rank"), orders=[OrderExpression("rank")]))
    assert ranks(rows) == [None, None, 1, 2, 3]
    rows = engine.evaluate(
        QueryDefinition("account", ColumnSet.of("rank"), orders=[OrderExpression("rank", descending=True)])
    )
    assert ranks(rows) == [3, 2, 1, None, None]


def test_multiple_orders_are_stable(make_engine, accounts):
    engine = make_engine(accounts)
    q = QueryDefinition(
        "account",
        ColumnSet.of("name", "rank"),
        orders=[OrderExpression("name"), OrderExpression("rank", descending=True)],
    )
    rows = engine.evaluate(q)
    assert [(r["name"], r.get("rank")) for r in rows] == [("a", 3), ("a", None), ("b", 2), ("c", 1), ("d", None)]


def test_all_columns_drop_nulls(make_engine, accounts):
    engine = make_engine(accounts)
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.every()))
    assert "rank" not in rows[1]
    assert rows[0]["accountid"] == uuid.UUID(int=1)


def test_explicit_columns_only(make_engine, accounts):
    engine = make_engine(accounts)
    [first, *_] = engine.evaluate(QueryDefinition("account", ColumnSet.of("name")))
    assert first.attributes == {"name": "b"}


def test_unknown_column(make_engine, accounts):
    engine = make_engine(accounts)
    with pytest.raises(UnknownAttribute):
        engine.evaluate(QueryDefinition("account", ColumnSet.of("nosuchcolumn")))


def test_distinct_then_top(make_engine, accounts):
    engine = make_engine(accounts)
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), distinct=True))
    assert [r["name"] for r in rows] == ["b", "a", "c", "d"]
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), distinct=True, top_count=2))
    assert [r["name"] for r in rows] == ["b", "a"]


def test_link_order_uses_alias(make_engine):
    owner_a, owner_b = uuid.uuid4(), uuid.uuid4()
    records = [
        Record("systemuser", owner_a, {"fullname": "Zed"}),
        Record("systemuser", owner_b, {"fullname": "Amy"}),
        Record("account", attributes={"name": "x", "ownerid": EntityReference("systemuser", owner_a)}),
        Record("account", attributes={"name": "y", "ownerid": EntityReference("systemuser", owner_b)}),
    ]
    engine = make_engine(records)
    link = LinkEntity(
        "account", "ownerid", "systemuser", "systemuserid", alias="u", orders=[OrderExpression("fullname")]
    )
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), links=[link]))
    assert [r["name"] for r in rows] == ["y", "x"]


def test_paging(make_engine, accounts):
    engine = make_engine(accounts)
    q = QueryDefinition(
        "account",
        ColumnSet.of("name"),
        paging=PagingInfo(count=2, page=1, return_total_record_count=True),
    )
    page = engine.retrieve_multiple(q)
    assert len(page) == 2
    assert page.more_records
    assert page.total_record_count == 5
    assert page.paging_cookie == (
        '<cookie page="1"><accountid last="{00000000-0000-0000-0000-000000000002}" '
        'first="{00000000-0000-0000-0000-000000000001}" /></cookie>'
    )

    last = engine.retrieve_multiple(
        QueryDefinition("account", ColumnSet.of("name"), paging=PagingInfo(count=2, page=3))
    )
    assert [r["name"] for r in last] == ["d"]
    assert not last.more_records
    assert last.paging_cookie is None
    assert last.total_record_count == -1

    past_end = engine.retrieve_multiple(
        QueryDefinition("account", ColumnSet.of("name"), paging=PagingInfo(count=2, page=9))
    )
    assert list(past_end) == []


def test_default_page_size_is_max_retrieve_count(make_engine, accounts):
    engine = make_engine(accounts, max_retrieve_count=3)
    page = engine.retrieve_multiple(QueryDefinition("account", ColumnSet.of("name")))
    assert len(page) == 3
    assert page.more_records


def test_total_count_limit_flag(make_engine, accounts):
    engine = make_engine(accounts, max_retrieve_count=3)
    page = engine.retrieve_multiple(
        QueryDefinition("account", ColumnSet.of("name"), paging=PagingInfo(count=5, return_total_record_count=True))
    )
    assert page.total_record_count == 3
    assert page.total_record_count_limit_exceeded


def test_calendar_rules_always_returned(make_engine):
    rules = [Record("calendarrule", attributes={"duration": 60})]
    engine = make_engine([Record("calendar", attributes={"name": "Default", "calendarrules": rules})])
    [row] = engine.evaluate(QueryDefinition("calendar", ColumnSet.of("name")))
    assert row["calendarrules"] == rules

    empty = make_engine([Record("calendar", attributes={"name": "Bare"})])
    [row] = empty.evaluate(QueryDefinition("calendar", ColumnSet.of("name", "calendarrules")))
    assert "calendarrules" not in row


def test_negative_top_is_rejected(make_engine, accounts):
    engine = make_engine(accounts)
    with pytest.raises(InvalidArgument):
        engine.evaluate(QueryDefinition("account", top_count=-1))


def test_paging_cookie_format():
    first = Record("contact", uuid.UUID("8b3a1c2d-0000-0000-0000-00000000000a"))
    last = Record("contact", uuid.UUID("8b3a1c2d-0000-0000-0000-00000000000b"))
    assert format_paging_cookie(4, [first, last]) == (
        '<cookie page="4"><contactid last="{8B3A1C2D-0000-0000-0000-00000000000B}" '
        'first="{8B3A1C2D-0000-0000-0000-00000000000A}" /></cookie>'
    )
