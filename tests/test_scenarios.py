"""End-to-end checks through FetchXML, one per documented behaviour."""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from xrmsim import Record

MADRID = ZoneInfo("Europe/Madrid")


def names(rows):
    return sorted(r["name"] for r in rows)


def fetch_names(engine, entity, condition):
    xml = (
        f"<fetch><entity name='{entity}'><attribute name='name' />"
        f"<filter>{condition}</filter></entity></fetch>"
    )
    return names(engine.evaluate(xml))


@pytest.mark.parametrize("tz", [timezone.utc, MADRID])
def test_this_month_boundaries(make_engine, tz):
    records = [
        Record("task", attributes={"name": "start", "scheduledstart": datetime(2024, 6, 1, 9, 0, tzinfo=tz)}),
        Record("task", attributes={"name": "end", "scheduledstart": datetime(2024, 6, 30, 23, 59, tzinfo=tz)}),
        Record("task", attributes={"name": "next", "scheduledstart": datetime(2024, 7, 1, 0, 0, tzinfo=tz)}),
    ]
    engine = make_engine(records, timezone="UTC" if tz is timezone.utc else "Europe/Madrid")
    found = fetch_names(engine, "task", "<condition attribute='scheduledstart' operator='this-month' />")
    assert found == ["end", "start"]


def test_like_single_character_wildcard(make_engine):
    engine = make_engine([Record("account", attributes={"name": n}) for n in ("test", "TEXT", "tent", "testing")])
    found = fetch_names(engine, "account", "<condition attribute='name' operator='like' value='te_t' />")
    assert found == ["TEXT", "tent", "test"]


def test_like_character_class(make_engine):
    engine = make_engine([Record("account", attributes={"name": n}) for n in ("1abc", "9xyz", "abc")])
    found = fetch_names(engine, "account", "<condition attribute='name' operator='like' value='[0-9]%' />")
    assert found == ["1abc", "9xyz"]


def test_between_dates_covers_the_whole_last_day(make_engine):
    records = [
        Record("account", attributes={"name": "first", "createdon": datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)}),
        Record("account", attributes={"name": "last", "createdon": datetime(2024, 1, 31, 23, 59, tzinfo=timezone.utc)}),
        Record("account", attributes={"name": "after", "createdon": datetime(2024, 2, 1, 0, 0, tzinfo=timezone.utc)}),
    ]
    engine = make_engine(records)
    found = fetch_names(
        engine,
        "account",
        "<condition attribute='createdon' operator='between'>"
        "<value>2024-01-01</value><value>2024-01-31</value></condition>",
    )
    assert found == ["first", "last"]


def test_time_zone_independent_round_trip(make_engine):
    written = datetime(2000, 1, 1, 14, 30, tzinfo=timezone.utc)
    for tz in ("UTC", "Pacific/Auckland", "America/Los_Angeles"):
        engine = make_engine(
            [Record("new_booking", attributes={"name": "b", "new_checkin": written})],
            timezone=tz,
            date_behaviours={"new_booking": {"new_checkin": "TimeZoneIndependent"}},
        )
        [row] = engine.evaluate("<fetch><entity name='new_booking'><all-attributes /></entity></fetch>")
        assert row["new_checkin"] == datetime(2000, 1, 1, 14, 30)
        assert row["new_checkin"].tzinfo is None


def test_retrieve_multiple_from_markup(make_engine):
    engine = make_engine([Record("account", attributes={"name": f"acc{i:02d}"}) for i in range(7)])
    page = engine.retrieve_multiple(
        "<fetch count='3' page='2' returntotalrecordcount='true'>"
        "<entity name='account'><attribute name='name' /><order attribute='name' descending='true' /></entity></fetch>"
    )
    assert [r["name"] for r in page] == ["acc03", "acc02", "acc01"]
    assert page.more_records
    assert page.total_record_count == 7
    assert page.paging_cookie.startswith('<cookie page="2">')
