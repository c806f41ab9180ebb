from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from .model import AttributeType, EntityReference, Money, OptionSetValue, OptionSetValueCollection


def coerce_identifier(value: Any) -> uuid.UUID:
    """
    Normalize an input into a ``uuid.UUID``.

    Accepts UUID instances, entity references and strings in any common
    spelling: braces, hyphens or none, any case. Everything that is not
    alphanumeric is stripped before checking for 32 hex characters.

    Raises:
        ValueError: if the cleaned text is not exactly 32 hex characters.
    """
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, EntityReference):
        return value.id
    if not isinstance(value, str):
        raise ValueError(f"cannot read an identifier from {type(value).__name__}")

    cleaned = re.sub(r"[^0-9A-Za-z]+", "", value)
    if len(cleaned) != 32:
        raise ValueError(f"identifier must have exactly 32 hex characters; got {len(cleaned)}")
    if re.search(r"[G-Zg-z]", cleaned):
        raise ValueError("identifier contains non-hex characters")
    return uuid.UUID(hex=cleaned.lower())


def try_identifier(value: Any) -> Optional[uuid.UUID]:
    try:
        return coerce_identifier(value)
    except ValueError:
        return None


_UUID_TEXT = re.compile(r"(?i)^\{?[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}\}?$")

_DATE_FORMATS: Tuple[str, ...] = (
    "%Y/%m/%d",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
)


def parse_datetime_literal(text: str) -> Optional[datetime]:
    """Parse a date or date-time literal.

    ISO 8601 first (a trailing ``Z`` means UTC and gives an aware value),
    then a handful of common date spellings. Returns ``None`` when nothing fits.
    """
    candidate = (text or "").strip()
    if not candidate:
        return None
    iso = candidate[:-1] + "+00:00" if candidate.endswith(("Z", "z")) else candidate
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def as_datetime(value: Any) -> Optional[datetime]:
    """Datetimes pass through, dates become midnight, text is parsed."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return parse_datetime_literal(value)
    return None


def parse_bool(text: Any) -> bool:
    if isinstance(text, bool):
        return text
    low = str(text).strip().lower()
    if low in ("true", "1"):
        return True
    if low in ("false", "0"):
        return False
    raise ValueError(f"boolean value expected, got {text!r}")


def parse_int(text: Any) -> int:
    if isinstance(text, bool):
        raise ValueError("integer value expected, got a boolean")
    if isinstance(text, int):
        return text
    if isinstance(text, Decimal) and text == text.to_integral_value():
        return int(text)
    if isinstance(text, float) and text.is_integer():
        return int(text)
    if isinstance(text, str) and re.fullmatch(r"\s*[+-]?\d+\s*", text):
        return int(text)
    raise ValueError(f"integer value expected, got {text!r}")


def guess_literal(text: str) -> Any:
    """
    Best-effort typing of a literal with no metadata to go on.

    Tried in order: identifier, decimal (covers integers, money and option
    values), float, date-time; anything else stays a string.
    """
    if text is None:
        return None
    candidate = text.strip()
    if _UUID_TEXT.match(candidate):
        return coerce_identifier(candidate)
    if re.fullmatch(r"[+-]?(\d+\.?\d*|\.\d+)", candidate):
        try:
            return Decimal(candidate)
        except InvalidOperation:
            pass
    if re.fullmatch(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", candidate):
        try:
            return float(candidate)
        except ValueError:
            pass
    parsed = parse_datetime_literal(candidate)
    if parsed is not None:
        return parsed
    return text


def coerce_to_type(raw: Any, attribute_type: AttributeType) -> Any:
    """
    Convert a literal into the Python shape used for ``attribute_type``.

    Raises ValueError when the literal cannot be read as that type; callers
    turn that into a TypeMismatch naming the attribute.
    """
    if raw is None:
        return None
    t = attribute_type
    if t.is_text:
        return raw if isinstance(raw, str) else str(raw)
    if t in (AttributeType.INTEGER, AttributeType.BIGINT):
        return parse_int(raw)
    if t.is_option or t is AttributeType.MULTISELECT_PICKLIST:
        if isinstance(raw, OptionSetValue):
            return raw
        if isinstance(raw, OptionSetValueCollection):
            return raw
        return OptionSetValue(parse_int(raw))
    if t in (AttributeType.DECIMAL, AttributeType.MONEY):
        if isinstance(raw, Money):
            return raw if t is AttributeType.MONEY else raw.value
        if isinstance(raw, bool):
            raise ValueError("decimal value expected, got a boolean")
        try:
            dec = Decimal(str(raw).strip())
        except InvalidOperation:
            raise ValueError(f"decimal value expected, got {raw!r}") from None
        return Money(dec) if t is AttributeType.MONEY else dec
    if t is AttributeType.DOUBLE:
        if isinstance(raw, bool):
            raise ValueError("double value expected, got a boolean")
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"double value expected, got {raw!r}") from None
    if t is AttributeType.BOOLEAN:
        return parse_bool(raw)
    if t is AttributeType.DATETIME:
        parsed = as_datetime(raw)
        if parsed is None:
            raise ValueError(f"date-time value expected, got {raw!r}")
        return parsed
    if t.is_reference or t is AttributeType.UNIQUEIDENTIFIER:
        return coerce_identifier(raw)
    return raw


def primitive(value: Any) -> Any:
    """Strip value wrappers down to the thing comparisons work on."""
    if isinstance(value, EntityReference):
        return value.id
    if isinstance(value, OptionSetValue):
        return value.value
    if isinstance(value, Money):
        return value.value
    return value


__all__ = [
    "coerce_identifier",
    "try_identifier",
    "parse_datetime_literal",
    "as_datetime",
    "parse_bool",
    "parse_int",
    "guess_literal",
    "coerce_to_type",
    "primitive",
]
