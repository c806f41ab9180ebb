# xrmsim/config_loader.py
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, tzinfo
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from zoneinfo import ZoneInfo

from .model import DateTimeBehavior, FiscalPeriodTemplate, FiscalSettings

log = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = REPO_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "appconfig.json"
DOTENV_PATH = REPO_ROOT / ".env"

CONFIG_ENV_VAR = "XRMSIM_CONFIG"

_MAX_RETRIEVE_COUNT_DEFAULT = 5000

_WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_env_loaded = False


def _load_env() -> None:
    global _env_loaded
    if _env_loaded:
        return
    # values already exported in the shell win over the .env file
    load_dotenv(DOTENV_PATH, override=False)
    _env_loaded = True


def _read_json_file(path: Path) -> dict:
    """Read JSON from disk, returning an empty mapping on failure."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Could not read %s; falling back to defaults", path, exc_info=True)
        return {}


def resolve_config_path() -> Path:
    _load_env()
    raw = os.getenv(CONFIG_ENV_VAR)
    if raw and raw.strip():
        candidate = Path(raw.strip()).expanduser()
        if not candidate.is_absolute():
            candidate = (REPO_ROOT / candidate).resolve()
        return candidate
    return CONFIG_PATH


def load_app_config() -> dict:
    """Return the raw JSON configuration for the simulator."""
    path = resolve_config_path()
    if not path.exists():
        log.debug("No configuration at %s; using defaults", path)
        return {}
    data = _read_json_file(path)
    if not isinstance(data, dict):
        log.warning("%s did not contain a JSON object; ignoring it", path)
        return {}
    return data


def _coerce_positive_number(value: Any, fallback: int) -> int:
    """Convert unknown input into a positive integer."""
    try:
        numeric = float(value)
    except Exception:
        return int(fallback)
    if numeric <= 0:
        return int(fallback)
    return int(numeric)


def get_timezone(cfg: Optional[Mapping[str, Any]] = None) -> tzinfo:
    """Return the configured timezone.

    An unset ``timezone`` key means "whatever the host uses"; an unknown name
    is logged and treated the same way.
    """
    if cfg is None:
        cfg = load_app_config()
    name = None
    if isinstance(cfg, Mapping):
        raw = cfg.get("timezone")
        if isinstance(raw, str) and raw.strip():
            name = raw.strip()
    if name is not None:
        try:
            return ZoneInfo(name)
        except Exception:
            log.warning("Unknown timezone %r; falling back to host local time", name, exc_info=True)
    return local_timezone()


def local_timezone() -> tzinfo:
    return datetime.now().astimezone().tzinfo


def get_fiscal_settings(cfg: Optional[Mapping[str, Any]] = None) -> FiscalSettings:
    if cfg is None:
        cfg = load_app_config()
    defaults = FiscalSettings()
    if not isinstance(cfg, Mapping):
        return defaults

    month = cfg.get("fiscal_year_start_month", defaults.start_month)
    day = cfg.get("fiscal_year_start_day", defaults.start_day)
    template_raw = cfg.get("fiscal_period_template", defaults.template.value)

    if not isinstance(month, int) or not 1 <= month <= 12:
        log.warning("fiscal_year_start_month %r is not a month number; using %d", month, defaults.start_month)
        month = defaults.start_month
    if not isinstance(day, int) or not 1 <= day <= 28:
        log.warning("fiscal_year_start_day %r is out of range; using %d", day, defaults.start_day)
        day = defaults.start_day
    try:
        key = str(template_raw).strip().lower().replace("-", "").replace("_", "")
        template = FiscalPeriodTemplate(key)
    except ValueError:
        log.warning("Unknown fiscal_period_template %r; using %s", template_raw, defaults.template.value)
        template = defaults.template
    return FiscalSettings(start_month=month, start_day=day, template=template)


def get_first_day_of_week(cfg: Optional[Mapping[str, Any]] = None) -> int:
    """Weekday number (Monday == 0) that starts a week. Defaults to Sunday."""
    if cfg is None:
        cfg = load_app_config()
    raw = cfg.get("first_day_of_week") if isinstance(cfg, Mapping) else None
    if raw is None:
        return _WEEKDAYS["sunday"]
    key = str(raw).strip().lower()
    if key not in _WEEKDAYS:
        log.warning("Unknown first_day_of_week %r; using sunday", raw)
        return _WEEKDAYS["sunday"]
    return _WEEKDAYS[key]


def get_max_retrieve_count(cfg: Optional[Mapping[str, Any]] = None) -> int:
    if cfg is None:
        cfg = load_app_config()
    candidate = cfg.get("max_retrieve_count") if isinstance(cfg, Mapping) else None
    return _coerce_positive_number(candidate, _MAX_RETRIEVE_COUNT_DEFAULT)


def get_date_behaviours(cfg: Optional[Mapping[str, Any]] = None) -> Dict[str, Dict[str, DateTimeBehavior]]:
    """Read the ``date_behaviours`` overrides: entity -> attribute -> behavior name."""
    if cfg is None:
        cfg = load_app_config()
    raw = cfg.get("date_behaviours") if isinstance(cfg, Mapping) else None
    result: Dict[str, Dict[str, DateTimeBehavior]] = {}
    if raw is None:
        return result
    if not isinstance(raw, Mapping):
        log.warning("date_behaviours must be an object; ignoring %r", raw)
        return result
    for entity, attrs in raw.items():
        if not isinstance(attrs, Mapping):
            log.warning("date_behaviours[%s] must be an object; ignoring it", entity)
            continue
        for attr, name in attrs.items():
            try:
                behavior = DateTimeBehavior.parse(name)
            except ValueError:
                log.warning("Unknown date behaviour %r for %s.%s; ignoring it", name, entity, attr)
                continue
            result.setdefault(str(entity).lower(), {})[str(attr).lower()] = behavior
    return result


__all__ = [
    "CONFIG_PATH",
    "load_app_config",
    "resolve_config_path",
    "get_timezone",
    "local_timezone",
    "get_fiscal_settings",
    "get_first_day_of_week",
    "get_max_retrieve_count",
    "get_date_behaviours",
]
