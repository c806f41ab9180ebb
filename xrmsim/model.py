# xrmsim/model.py
"""Records, typed attribute values and the structured query tree.

Query objects are frozen dataclasses holding tuples so a translated query
can be shared between evaluations without copying. Records are the one
mutable piece: the store owns them and hands out copies.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .operators import ConditionOperator, check_arity
from .errors import InvalidArgument

# ---------------------------------------------------------------- values


@dataclass(frozen=True)
class EntityReference:
    logical_name: str
    id: uuid.UUID
    name: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class OptionSetValue:
    value: int


@dataclass(frozen=True)
class OptionSetValueCollection:
    values: Tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(int(v) for v in self.values))

    def __iter__(self) -> Iterator[int]:
        return iter(self.values)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, OptionSetValue):
            item = item.value
        return item in self.values

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class Money:
    value: Decimal

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", Decimal(str(self.value)))


@dataclass(frozen=True)
class AliasedValue:
    """An attribute that arrived through a link-entity, stored under ``alias.attribute``."""

    entity_logical_name: str
    attribute: str
    value: Any


# ---------------------------------------------------------------- records


@dataclass
class Record:
    logical_name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.attributes

    def __getitem__(self, name: str) -> Any:
        return self.attributes[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.attributes[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def copy(self) -> "Record":
        return Record(self.logical_name, self.id, dict(self.attributes))

    def __repr__(self) -> str:
        return f"Record({self.logical_name!r}, {self.id}, {len(self.attributes)} attrs)"


# ---------------------------------------------------------------- metadata


class AttributeType(str, Enum):
    STRING = "string"
    MEMO = "memo"
    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    DOUBLE = "double"
    MONEY = "money"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    LOOKUP = "lookup"
    OWNER = "owner"
    CUSTOMER = "customer"
    PICKLIST = "picklist"
    STATE = "state"
    STATUS = "status"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    MULTISELECT_PICKLIST = "multiselectpicklist"
    ENTITY_COLLECTION = "entitycollection"

    @property
    def is_text(self) -> bool:
        return self in (AttributeType.STRING, AttributeType.MEMO)

    @property
    def is_numeric(self) -> bool:
        return self in (
            AttributeType.INTEGER,
            AttributeType.BIGINT,
            AttributeType.DECIMAL,
            AttributeType.DOUBLE,
            AttributeType.MONEY,
        )

    @property
    def is_option(self) -> bool:
        return self in (AttributeType.PICKLIST, AttributeType.STATE, AttributeType.STATUS)

    @property
    def is_reference(self) -> bool:
        return self in (AttributeType.LOOKUP, AttributeType.OWNER, AttributeType.CUSTOMER)


class DateTimeBehavior(str, Enum):
    ABSOLUTE = "absolute"
    DATE_ONLY = "date-only"
    TIME_ZONE_INDEPENDENT = "time-zone-independent"

    @classmethod
    def parse(cls, raw: Any) -> "DateTimeBehavior":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower()
        for ch in ("-", "_", " "):
            key = key.replace(ch, "")
        mapping = {
            "absolute": cls.ABSOLUTE,
            "userlocal": cls.ABSOLUTE,
            "dateonly": cls.DATE_ONLY,
            "timezoneindependent": cls.TIME_ZONE_INDEPENDENT,
        }
        if key not in mapping:
            raise ValueError(f"unknown date behaviour {raw!r}")
        return mapping[key]


@dataclass(frozen=True)
class AttributeMetadata:
    logical_name: str
    attribute_type: AttributeType
    date_behavior: Optional[DateTimeBehavior] = None


@dataclass(frozen=True)
class Relationship:
    """One-to-many relationship: ``referenced_entity`` is the "one" side."""

    name: str
    referenced_entity: str
    referenced_attribute: str
    referencing_entity: str
    referencing_attribute: str


# ---------------------------------------------------------------- query tree


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"


class JoinType(str, Enum):
    INNER = "inner"
    LEFT_OUTER = "outer"


class AggregateFunction(str, Enum):
    COUNT = "count"
    COUNT_COLUMN = "countcolumn"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class DateGrouping(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    FISCAL_PERIOD = "fiscal-period"
    FISCAL_YEAR = "fiscal-year"


@dataclass(frozen=True)
class Condition:
    attribute: str
    operator: ConditionOperator
    values: Tuple[Any, ...] = ()
    entity_name: Optional[str] = None
    value_of: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "operator", ConditionOperator(self.operator))
        values = self.values
        if isinstance(values, (list, set, frozenset)):
            values = tuple(values)
        elif not isinstance(values, tuple):
            values = (values,)
        object.__setattr__(self, "values", values)
        if self.value_of is not None:
            if values:
                raise InvalidArgument("a column comparison cannot also carry literal values")
            if self.operator not in _COLUMN_COMPARISON_OPERATORS:
                raise InvalidArgument(f"operator {self.operator.value} cannot compare two columns")
            return
        check_arity(self.operator, values)


_COLUMN_COMPARISON_OPERATORS = frozenset(
    {
        ConditionOperator.EQUAL,
        ConditionOperator.NOT_EQUAL,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.GREATER_EQUAL,
        ConditionOperator.LESS_THAN,
        ConditionOperator.LESS_EQUAL,
    }
)


@dataclass(frozen=True)
class FilterNode:
    logical: LogicalOperator = LogicalOperator.AND
    conditions: Tuple[Condition, ...] = ()
    filters: Tuple["FilterNode", ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "logical", LogicalOperator(self.logical))
        object.__setattr__(self, "conditions", tuple(self.conditions))
        object.__setattr__(self, "filters", tuple(self.filters))

    @property
    def is_empty(self) -> bool:
        return not self.conditions and not self.filters


@dataclass(frozen=True)
class ColumnSet:
    columns: Tuple[str, ...] = ()
    all_columns: bool = False

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))

    @classmethod
    def of(cls, *columns: str) -> "ColumnSet":
        return cls(columns=columns)

    @classmethod
    def every(cls) -> "ColumnSet":
        return cls(all_columns=True)


@dataclass(frozen=True)
class OrderExpression:
    """Sort key. Aggregate queries sort by an output ``alias`` and leave ``attribute`` empty."""

    attribute: Optional[str]
    descending: bool = False
    entity_alias: Optional[str] = None
    alias: Optional[str] = None


@dataclass(frozen=True)
class AggregateColumn:
    """One output column of an aggregate query: either a group key or an aggregate."""

    attribute: str
    alias: Optional[str]
    function: Optional[AggregateFunction] = None
    group_by: bool = False
    date_grouping: Optional[DateGrouping] = None
    distinct: bool = False

    def __post_init__(self):
        if self.function is not None:
            object.__setattr__(self, "function", AggregateFunction(self.function))
        if self.date_grouping is not None:
            object.__setattr__(self, "date_grouping", DateGrouping(self.date_grouping))


@dataclass(frozen=True)
class LinkEntity:
    """A join from the parent entity to ``link_to_entity``.

    FetchXML spells the join the other way round: ``from`` names the linked
    entity's attribute (``link_to_attribute``) and ``to`` the parent's
    (``link_from_attribute``).
    """

    link_from_entity: str
    link_from_attribute: str
    link_to_entity: str
    link_to_attribute: str
    join: JoinType = JoinType.INNER
    alias: Optional[str] = None
    columns: ColumnSet = field(default_factory=ColumnSet)
    criteria: FilterNode = field(default_factory=FilterNode)
    links: Tuple["LinkEntity", ...] = ()
    orders: Tuple[OrderExpression, ...] = ()
    aggregates: Tuple[AggregateColumn, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "join", JoinType(self.join))
        object.__setattr__(self, "links", tuple(self.links))
        object.__setattr__(self, "orders", tuple(self.orders))
        object.__setattr__(self, "aggregates", tuple(self.aggregates))


@dataclass(frozen=True)
class PagingInfo:
    count: Optional[int] = None
    page: int = 1
    paging_cookie: Optional[str] = None
    return_total_record_count: bool = False


@dataclass(frozen=True)
class QueryDefinition:
    entity_name: str
    columns: ColumnSet = field(default_factory=ColumnSet)
    criteria: FilterNode = field(default_factory=FilterNode)
    links: Tuple[LinkEntity, ...] = ()
    orders: Tuple[OrderExpression, ...] = ()
    distinct: bool = False
    top_count: Optional[int] = None
    paging: PagingInfo = field(default_factory=PagingInfo)
    aggregate: bool = False
    aggregates: Tuple[AggregateColumn, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "links", tuple(self.links))
        object.__setattr__(self, "orders", tuple(self.orders))
        object.__setattr__(self, "aggregates", tuple(self.aggregates))
        if self.top_count is not None and self.paging.count is not None:
            raise InvalidArgument("top and count cannot be combined in one query")


@dataclass
class RetrieveResult:
    """One page of results from ``QueryEngine.retrieve_multiple``."""

    entity_name: str
    records: List[Record]
    more_records: bool = False
    paging_cookie: Optional[str] = None
    total_record_count: int = -1
    total_record_count_limit_exceeded: bool = False

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


# ---------------------------------------------------------------- environment


class FiscalPeriodTemplate(str, Enum):
    ANNUALLY = "annually"
    SEMI_ANNUALLY = "semiannually"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"
    FOUR_WEEK = "fourweek"

    @property
    def periods_per_year(self) -> int:
        return _PERIODS_PER_YEAR[self]


_PERIODS_PER_YEAR = {
    FiscalPeriodTemplate.ANNUALLY: 1,
    FiscalPeriodTemplate.SEMI_ANNUALLY: 2,
    FiscalPeriodTemplate.QUARTERLY: 4,
    FiscalPeriodTemplate.MONTHLY: 12,
    FiscalPeriodTemplate.FOUR_WEEK: 13,
}


@dataclass(frozen=True)
class FiscalSettings:
    start_month: int = 4
    start_day: int = 1
    template: FiscalPeriodTemplate = FiscalPeriodTemplate.QUARTERLY


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """A clock test code can set and advance."""

    def __init__(self, instant: datetime):
        self.set(instant)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant.astimezone(timezone.utc)

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta

    def now(self) -> datetime:
        return self._instant


@dataclass(frozen=True)
class EnvironmentContext:
    now: datetime
    timezone: tzinfo
    fiscal: FiscalSettings = field(default_factory=FiscalSettings)
    first_day_of_week: int = 6
    caller_id: Optional[uuid.UUID] = None
    business_unit_id: Optional[uuid.UUID] = None

    def __post_init__(self):
        if self.now.tzinfo is None:
            raise InvalidArgument("EnvironmentContext.now must be timezone aware")

    @property
    def local_now(self) -> datetime:
        return self.now.astimezone(self.timezone)


__all__ = [
    "EntityReference",
    "OptionSetValue",
    "OptionSetValueCollection",
    "Money",
    "AliasedValue",
    "Record",
    "AttributeType",
    "DateTimeBehavior",
    "AttributeMetadata",
    "Relationship",
    "LogicalOperator",
    "JoinType",
    "AggregateFunction",
    "DateGrouping",
    "Condition",
    "FilterNode",
    "ColumnSet",
    "OrderExpression",
    "AggregateColumn",
    "LinkEntity",
    "PagingInfo",
    "QueryDefinition",
    "RetrieveResult",
    "FiscalPeriodTemplate",
    "FiscalSettings",
    "Clock",
    "SystemClock",
    "FixedClock",
    "EnvironmentContext",
]
