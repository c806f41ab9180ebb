"""
In-memory query engine for CRM-style records.

Avoid side effects here: no logging setup and no config reads at import time.
"""

from .engine import QueryEngine, convert_pattern, to_fetchxml
from .errors import (
    InvalidArgument,
    MissingFeatureError,
    MissingKind,
    ParseError,
    QueryError,
    RecordNotFound,
    TypeMismatch,
    UnknownAttribute,
    UnknownEntity,
    UnsupportedOperator,
)
from .fetchxml import translate_markup
from .metadata import MetadataProvider
from .model import (
    AggregateColumn,
    AggregateFunction,
    AliasedValue,
    AttributeType,
    ColumnSet,
    Condition,
    DateGrouping,
    DateTimeBehavior,
    EntityReference,
    FilterNode,
    FiscalPeriodTemplate,
    FiscalSettings,
    FixedClock,
    JoinType,
    LinkEntity,
    LogicalOperator,
    Money,
    OptionSetValue,
    OptionSetValueCollection,
    OrderExpression,
    PagingInfo,
    QueryDefinition,
    Record,
    Relationship,
    RetrieveResult,
    SystemClock,
)
from .operators import ConditionOperator
from .store import RecordStore

__all__ = [
    "QueryEngine",
    "convert_pattern",
    "to_fetchxml",
    "translate_markup",
    "MetadataProvider",
    "RecordStore",
    "ConditionOperator",
    "AggregateColumn",
    "AggregateFunction",
    "AliasedValue",
    "AttributeType",
    "ColumnSet",
    "Condition",
    "DateGrouping",
    "DateTimeBehavior",
    "EntityReference",
    "FilterNode",
    "FiscalPeriodTemplate",
    "FiscalSettings",
    "FixedClock",
    "JoinType",
    "LinkEntity",
    "LogicalOperator",
    "Money",
    "OptionSetValue",
    "OptionSetValueCollection",
    "OrderExpression",
    "PagingInfo",
    "QueryDefinition",
    "Record",
    "Relationship",
    "RetrieveResult",
    "SystemClock",
    "QueryError",
    "ParseError",
    "MissingKind",
    "MissingFeatureError",
    "UnsupportedOperator",
    "TypeMismatch",
    "UnknownEntity",
    "UnknownAttribute",
    "InvalidArgument",
    "RecordNotFound",
]
