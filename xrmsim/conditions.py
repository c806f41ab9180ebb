"""Evaluate one condition against one (possibly joined) row."""
import logging
import uuid
from datetime import date, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence, Tuple

from .date_ranges import DATE_RANGE_OPERATORS, resolve_date_range
from .errors import InvalidArgument, TypeMismatch
from .helpers import as_datetime, coerce_to_type, parse_bool, primitive, try_identifier
from .like_pattern import match_pattern
from .metadata import MetadataProvider, infer_type
from .model import (
    AliasedValue,
    AttributeType,
    Condition,
    EnvironmentContext,
    OptionSetValue,
    OptionSetValueCollection,
    Record,
)
from .operators import ConditionOperator, TypeClass, ensure_supported

log = logging.getLogger(__name__)

_O = ConditionOperator

# literals for these are converted to the attribute's type before comparing
_COERCED_OPERATORS = frozenset(
    {
        _O.EQUAL,
        _O.IN,
        _O.GREATER_THAN,
        _O.GREATER_EQUAL,
        _O.LESS_THAN,
        _O.LESS_EQUAL,
        _O.BETWEEN,
        _O.CONTAIN_VALUES,
    }
)

_ORDERED_TYPES = frozenset(
    {
        AttributeType.STRING,
        AttributeType.MEMO,
        AttributeType.INTEGER,
        AttributeType.BIGINT,
        AttributeType.DECIMAL,
        AttributeType.DOUBLE,
        AttributeType.MONEY,
        AttributeType.DATETIME,
        AttributeType.PICKLIST,
        AttributeType.STATE,
        AttributeType.STATUS,
    }
)

_TYPE_CLASS_MEMBERS = {
    TypeClass.ORDERED: _ORDERED_TYPES,
    TypeClass.TEXT: frozenset({AttributeType.STRING, AttributeType.MEMO}),
    TypeClass.DATE: frozenset({AttributeType.DATETIME}),
    TypeClass.IDENTIFIER: frozenset(
        {AttributeType.LOOKUP, AttributeType.OWNER, AttributeType.CUSTOMER, AttributeType.UNIQUEIDENTIFIER}
    ),
    TypeClass.MULTI_SELECT: frozenset({AttributeType.MULTISELECT_PICKLIST}),
}


def _unwrap(value: Any) -> Any:
    if isinstance(value, AliasedValue):
        return value.value
    return value


def _align_datetimes(a: datetime, b: datetime, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Bring a naive and an aware value onto the same footing (wall clock in ``tz``)."""
    if (a.tzinfo is None) == (b.tzinfo is None):
        return a, b
    if a.tzinfo is not None:
        a = a.astimezone(tz).replace(tzinfo=None)
    else:
        b = b.astimezone(tz).replace(tzinfo=None)
    return a, b


def _as_number(value: Any) -> Optional[Any]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def values_equal(actual: Any, literal: Any, tz: tzinfo) -> bool:
    a = primitive(_unwrap(actual))
    b = primitive(_unwrap(literal))
    if a is None or b is None:
        return False
    if isinstance(a, str) and isinstance(b, str):
        return a.casefold() == b.casefold()
    if isinstance(a, uuid.UUID) or isinstance(b, uuid.UUID):
        return try_identifier(a) == try_identifier(b)
    if isinstance(a, (datetime, date)) or isinstance(b, (datetime, date)):
        da, db = as_datetime(a), as_datetime(b)
        if da is None or db is None:
            return False
        da, db = _align_datetimes(da, db, tz)
        return da == db
    if isinstance(a, bool) or isinstance(b, bool):
        try:
            return parse_bool(a) == parse_bool(b)
        except ValueError:
            return False
    na, nb = _as_number(a), _as_number(b)
    if na is not None and nb is not None:
        return na == nb
    return a == b


def compare_values(actual: Any, literal: Any, tz: tzinfo, attribute: str = "") -> int:
    """Three-way comparison; raises TypeMismatch when the two cannot be ordered."""
    a = primitive(_unwrap(actual))
    b = primitive(_unwrap(literal))
    if isinstance(a, str) and isinstance(b, str):
        a, b = a.casefold(), b.casefold()
    elif isinstance(a, (datetime, date)) or isinstance(b, (datetime, date)):
        da, db = as_datetime(a), as_datetime(b)
        if da is None or db is None:
            raise TypeMismatch(attribute, type(a).__name__, type(b).__name__)
        a, b = _align_datetimes(da, db, tz)
    else:
        na, nb = _as_number(a), _as_number(b)
        if na is not None and nb is not None:
            a, b = na, nb
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        raise TypeMismatch(attribute, type(a).__name__, type(b).__name__) from None


class ConditionEvaluator:
    """
    Evaluates conditions for one query run.

    ``entity_name`` is the logical name that unqualified attributes belong to;
    ``prefix`` is set when those attributes live under an alias in the joined
    row (link criteria applied after the join); ``aliases`` maps every alias,
    and the entity name of each unaliased link, to ``(row alias, logical name)``.
    """

    def __init__(self, ctx: EnvironmentContext, metadata: Optional[MetadataProvider] = None):
        self.ctx = ctx
        self.metadata = metadata

    # ---- attribute resolution

    def _locate(
        self,
        attribute: str,
        entity_alias: Optional[str],
        entity_name: str,
        prefix: Optional[str],
        aliases: Mapping[str, Tuple[str, str]],
    ) -> Tuple[str, str, str]:
        """Return (row key, logical name, attribute name) for an attribute reference."""
        alias = None
        name = attribute
        if entity_alias:
            alias = entity_alias
        elif "." in attribute:
            alias, name = attribute.split(".", 1)
        elif prefix:
            alias = prefix

        if alias is None or (alias == entity_name and prefix is None and alias not in aliases):
            return name, entity_name, name
        if prefix is not None and alias == prefix and alias not in aliases:
            return f"{alias}.{name}", entity_name, name
        entry = aliases.get(alias)
        if entry is None:
            raise InvalidArgument(f"LinkEntity with name or alias {alias} is not found")
        row_alias, logical = entry
        return f"{row_alias}.{name}", logical, name

    def _read(self, row: Record, key: str) -> Any:
        if key in row.attributes:
            return _unwrap(row.attributes[key])
        lowered = key.lower()
        if lowered in row.attributes:
            return _unwrap(row.attributes[lowered])
        return None

    def _attribute_type(self, logical: str, attribute: str, value: Any) -> Optional[AttributeType]:
        declared = None
        if self.metadata is not None and self.metadata.has_entity(logical):
            # registered entities have a closed attribute list
            strict = self.metadata.is_declared(logical)
            declared = self.metadata.get_attribute_type(logical, attribute, strict=strict)
        if declared is not None:
            return declared
        return infer_type(value)

    # ---- evaluation

    def evaluate(
        self,
        condition: Condition,
        row: Record,
        entity_name: str,
        prefix: Optional[str] = None,
        aliases: Optional[Mapping[str, Tuple[str, str]]] = None,
    ) -> bool:
        aliases = aliases or {}
        op = condition.operator
        ensure_supported(op)

        key, logical, name = self._locate(condition.attribute, condition.entity_name, entity_name, prefix, aliases)
        value = self._read(row, key)
        attr_type = self._attribute_type(logical, name, value)

        positive = op.info.negates or op
        self._check_type(positive, attr_type, name)

        if condition.value_of is not None:
            other_key, other_logical, other_name = self._locate(
                condition.value_of, condition.entity_name, entity_name, prefix, aliases
            )
            other = self._read(row, other_key)
            result = self._compare_columns(positive, value, other, name)
        else:
            values = self._typed_literals(positive, condition.values, attr_type, name)
            result = self._apply(positive, value, values, attr_type, name)

        if op.info.negates is not None:
            return not result
        return result

    def _check_type(self, op: ConditionOperator, attr_type: Optional[AttributeType], name: str) -> None:
        if attr_type is None:
            return
        members = _TYPE_CLASS_MEMBERS.get(op.info.type_class)
        if members is None:
            return
        if attr_type not in members:
            log.warning("Operator %s cannot be applied to %s (%s)", op.value, name, attr_type.value)
            raise TypeMismatch(name, op.info.type_class.value, attr_type.value)

    def _typed_literals(
        self,
        op: ConditionOperator,
        values: Sequence[Any],
        attr_type: Optional[AttributeType],
        name: str,
    ) -> Tuple[Any, ...]:
        flat = []
        for v in values:
            if isinstance(v, (list, tuple, set, frozenset)):
                flat.extend(v)
            elif isinstance(v, OptionSetValueCollection) and op is _O.CONTAIN_VALUES:
                flat.extend(v.values)
            else:
                flat.append(v)
        if attr_type is None or op not in _COERCED_OPERATORS:
            return tuple(flat)
        if op is _O.BETWEEN and attr_type is AttributeType.DATETIME:
            return tuple(flat)
        target = AttributeType.PICKLIST if op is _O.CONTAIN_VALUES else attr_type
        converted = []
        for v in flat:
            try:
                converted.append(coerce_to_type(v, target))
            except ValueError as exc:
                raise TypeMismatch(name, attr_type.value, repr(v)) from exc
        return tuple(converted)

    def _apply(
        self,
        op: ConditionOperator,
        value: Any,
        values: Tuple[Any, ...],
        attr_type: Optional[AttributeType],
        name: str,
    ) -> bool:
        tz = self.ctx.timezone
        if op is _O.NULL:
            return value is None
        if op is _O.NOT_NULL:
            return value is not None
        if value is None:
            return False

        if op is _O.EQUAL:
            return values_equal(value, values[0], tz)
        if op is _O.IN:
            return any(values_equal(value, v, tz) for v in values)

        if op in (_O.GREATER_THAN, _O.GREATER_EQUAL, _O.LESS_THAN, _O.LESS_EQUAL):
            cmp = compare_values(value, values[0], tz, name)
            return {
                _O.GREATER_THAN: cmp > 0,
                _O.GREATER_EQUAL: cmp >= 0,
                _O.LESS_THAN: cmp < 0,
                _O.LESS_EQUAL: cmp <= 0,
            }[op]

        if op is _O.BETWEEN and not isinstance(value, (datetime, date)):
            return compare_values(value, values[0], tz, name) >= 0 and compare_values(value, values[1], tz, name) <= 0

        if op in (_O.LIKE, _O.BEGINS_WITH, _O.ENDS_WITH):
            text = primitive(value)
            if not isinstance(text, str):
                text = str(text)
            pattern = "" if values[0] is None else str(values[0])
            if op is _O.BEGINS_WITH:
                pattern = pattern + "%"
            elif op is _O.ENDS_WITH:
                pattern = "%" + pattern
            return match_pattern(text, pattern)

        if op in DATE_RANGE_OPERATORS:
            instant = as_datetime(value)
            if instant is None:
                raise TypeMismatch(name, "datetime", type(value).__name__)
            return resolve_date_range(op, values, self.ctx).contains(instant, tz)

        if op is _O.EQUAL_USER_ID:
            return self.ctx.caller_id is not None and try_identifier(primitive(value)) == self.ctx.caller_id
        if op is _O.EQUAL_BUSINESS_ID:
            return (
                self.ctx.business_unit_id is not None
                and try_identifier(primitive(value)) == self.ctx.business_unit_id
            )

        if op is _O.CONTAIN_VALUES:
            if not isinstance(value, OptionSetValueCollection):
                raise TypeMismatch(name, "multiselectpicklist", type(value).__name__)
            wanted = {v.value if isinstance(v, OptionSetValue) else int(v) for v in values}
            return any(v in wanted for v in value.values)

        raise InvalidArgument(f"operator {op.value} cannot be evaluated here")

    def _compare_columns(self, op: ConditionOperator, value: Any, other: Any, name: str) -> bool:
        if value is None or other is None:
            return False
        tz = self.ctx.timezone
        if op is _O.EQUAL:
            return values_equal(value, other, tz)
        cmp = compare_values(value, other, tz, name)
        return {
            _O.GREATER_THAN: cmp > 0,
            _O.GREATER_EQUAL: cmp >= 0,
            _O.LESS_THAN: cmp < 0,
            _O.LESS_EQUAL: cmp <= 0,
        }[op]


__all__ = ["ConditionEvaluator", "values_equal", "compare_values"]
