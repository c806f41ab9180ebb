import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from xrmsim import FixedClock, MetadataProvider, QueryEngine
from xrmsim.model import EnvironmentContext, FiscalSettings

# Saturday 15 June 2024, noon UTC
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

BASE_CONFIG = {
    "timezone": "UTC",
    "fiscal_year_start_month": 4,
    "fiscal_year_start_day": 1,
    "fiscal_period_template": "quarterly",
    "first_day_of_week": "sunday",
}


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    # never pick up a developer's config/appconfig.json or .env values
    monkeypatch.setenv("XRMSIM_CONFIG", str(tmp_path / "missing.json"))
    monkeypatch.delenv("LOG_LEVEL", raising=False)


@pytest.fixture()
def clock():
    return FixedClock(NOW)


@pytest.fixture()
def ctx():
    return EnvironmentContext(now=NOW, timezone=ZoneInfo("UTC"), fiscal=FiscalSettings())


@pytest.fixture()
def make_engine(clock):
    """Build an engine over ``records``; config keys override BASE_CONFIG."""

    def _make(records=(), metadata=None, **config):
        cfg = dict(BASE_CONFIG)
        cfg.update(config)
        engine = QueryEngine(metadata=metadata or MetadataProvider(), clock=clock, config=cfg)
        engine.initialize(list(records))
        return engine

    return _make


@pytest.fixture(autouse=True)
def _reset_package_logger():
    logger = logging.getLogger("xrmsim")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for h in list(logger.handlers):
        if h not in handlers:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)
    logger.propagate = propagate
