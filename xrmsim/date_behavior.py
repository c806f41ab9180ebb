import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .model import DateTimeBehavior, Record

log = logging.getLogger(__name__)

_B = DateTimeBehavior

# attributes the platform ships as date-only out of the box
DEFAULT_DATE_BEHAVIOURS: Dict[str, Dict[str, DateTimeBehavior]] = {
    "contact": {
        "anniversary": _B.DATE_ONLY,
        "birthdate": _B.DATE_ONLY,
    },
    "invoice": {
        "duedate": _B.DATE_ONLY,
    },
    "lead": {
        "estimatedclosedate": _B.DATE_ONLY,
    },
    "opportunity": {
        "actualclosedate": _B.DATE_ONLY,
        "estimatedclosedate": _B.DATE_ONLY,
        "finaldecisiondate": _B.DATE_ONLY,
    },
    "product": {
        "validfromdate": _B.DATE_ONLY,
        "validtodate": _B.DATE_ONLY,
    },
    "quote": {
        "closedon": _B.DATE_ONLY,
        "dueby": _B.DATE_ONLY,
    },
}


def apply_behavior(value: datetime, behavior: DateTimeBehavior) -> datetime:
    """
    Normalize one date-time value.

    ABSOLUTE keeps the instant: aware values go to UTC and naive values are
    taken to already be UTC. DATE_ONLY keeps the calendar date of the value
    as written and drops the time. TIME_ZONE_INDEPENDENT keeps every field as
    written. Both of the latter return naive values.
    """
    if behavior is _B.DATE_ONLY:
        return datetime(value.year, value.month, value.day)
    if behavior is _B.TIME_ZONE_INDEPENDENT:
        return value.replace(tzinfo=None)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DateBehaviorResolver:
    """Looks up and applies the date behaviour of each (entity, attribute) pair.

    Explicit overrides win, then whatever the metadata provider declares, then
    the built-in table. Anything else is ABSOLUTE.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Mapping[str, DateTimeBehavior]]] = None,
        metadata: Any = None,
        include_defaults: bool = True,
    ):
        self._table: Dict[str, Dict[str, DateTimeBehavior]] = {}
        if include_defaults:
            for entity, attrs in DEFAULT_DATE_BEHAVIOURS.items():
                self._table[entity] = dict(attrs)
        self._overrides: Dict[str, Dict[str, DateTimeBehavior]] = {}
        for entity, attrs in (overrides or {}).items():
            for attr, behavior in attrs.items():
                self.set_behavior(entity, attr, behavior)
        self.metadata = metadata

    def set_behavior(self, entity: str, attribute: str, behavior: Any) -> None:
        self._overrides.setdefault(entity.lower(), {})[attribute.lower()] = DateTimeBehavior.parse(behavior)

    def behavior_for(self, entity: str, attribute: str) -> DateTimeBehavior:
        entity_key = (entity or "").lower()
        attr_key = (attribute or "").lower()
        found = self._overrides.get(entity_key, {}).get(attr_key)
        if found is not None:
            return found
        if self.metadata is not None:
            declared = self.metadata.get_date_behavior(entity_key, attr_key)
            if declared is not None:
                return declared
        return self._table.get(entity_key, {}).get(attr_key, _B.ABSOLUTE)

    def normalize_value(self, entity: str, attribute: str, value: Any) -> Any:
        if not isinstance(value, datetime):
            return value
        return apply_behavior(value, self.behavior_for(entity, attribute))

    def normalize_record(self, record: Record) -> Record:
        """Apply behaviours in place to every date-time attribute of ``record``."""
        for name, value in list(record.attributes.items()):
            if isinstance(value, datetime):
                record.attributes[name] = self.normalize_value(record.logical_name, name, value)
        return record


__all__ = ["DEFAULT_DATE_BEHAVIOURS", "DateBehaviorResolver", "apply_behavior"]
