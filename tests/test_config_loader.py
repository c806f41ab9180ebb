import json
from zoneinfo import ZoneInfo

from xrmsim import config_loader
from xrmsim.model import DateTimeBehavior, FiscalPeriodTemplate, FiscalSettings


def test_missing_file_means_defaults():
    assert config_loader.load_app_config() == {}
    assert config_loader.get_fiscal_settings() == FiscalSettings()
    assert config_loader.get_max_retrieve_count() == 5000


def test_config_path_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "appconfig.json"
    path.write_text(json.dumps({"timezone": "Europe/Madrid", "max_retrieve_count": 250}), encoding="utf-8")
    monkeypatch.setenv("XRMSIM_CONFIG", str(path))
    assert config_loader.resolve_config_path() == path
    assert config_loader.get_timezone() == ZoneInfo("Europe/Madrid")
    assert config_loader.get_max_retrieve_count() == 250


def test_broken_json_is_ignored(monkeypatch, tmp_path):
    path = tmp_path / "appconfig.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("XRMSIM_CONFIG", str(path))
    assert config_loader.load_app_config() == {}


def test_unknown_timezone_falls_back_to_host():
    assert config_loader.get_timezone({"timezone": "Mars/Olympus"}) == config_loader.local_timezone()
    assert config_loader.get_timezone({}) == config_loader.local_timezone()


def test_fiscal_settings():
    settings = config_loader.get_fiscal_settings(
        {"fiscal_year_start_month": 7, "fiscal_year_start_day": 15, "fiscal_period_template": "Semi-Annually"}
    )
    assert settings == FiscalSettings(7, 15, FiscalPeriodTemplate.SEMI_ANNUALLY)

    fallback = config_loader.get_fiscal_settings(
        {"fiscal_year_start_month": 13, "fiscal_year_start_day": 31, "fiscal_period_template": "weekly"}
    )
    assert fallback == FiscalSettings()


def test_first_day_of_week():
    assert config_loader.get_first_day_of_week({}) == 6
    assert config_loader.get_first_day_of_week({"first_day_of_week": "Monday"}) == 0
    assert config_loader.get_first_day_of_week({"first_day_of_week": "someday"}) == 6


def test_max_retrieve_count_must_be_positive():
    assert config_loader.get_max_retrieve_count({"max_retrieve_count": "100"}) == 100
    assert config_loader.get_max_retrieve_count({"max_retrieve_count": 0}) == 5000
    assert config_loader.get_max_retrieve_count({"max_retrieve_count": "lots"}) == 5000


def test_date_behaviours():
    parsed = config_loader.get_date_behaviours(
        {
            "date_behaviours": {
                "Contact": {"BirthDate": "DateOnly", "bogus": "sometimes"},
                "new_booking": {"new_checkin": "TimeZoneIndependent"},
                "broken": "dateonly",
            }
        }
    )
    assert parsed == {
        "contact": {"birthdate": DateTimeBehavior.DATE_ONLY},
        "new_booking": {"new_checkin": DateTimeBehavior.TIME_ZONE_INDEPENDENT},
    }
