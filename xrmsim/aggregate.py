"""
Aggregate queries: group the filtered rows and reduce each group.

Takes the place of ``ResultMaterializer.materialize`` when a query sets
``aggregate``. Every output column comes back as an ``AliasedValue`` under
its alias; columns of a link-entity come back as ``<link alias>.<alias>``.
An aggregate with no values to work on is still returned, holding None.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .criteria import ALIAS_PATTERN, QueryPlan
from .date_ranges import current_fiscal_period
from .errors import InvalidArgument, TypeMismatch, UnknownAttribute
from .materialize import hashable, is_null, sort_value
from .metadata import MetadataProvider
from .model import (
    AggregateColumn,
    AggregateFunction,
    AliasedValue,
    DateGrouping,
    EnvironmentContext,
    Money,
    OrderExpression,
    QueryDefinition,
    Record,
)

log = logging.getLogger(__name__)

# aggregate rows are not backed by a stored record
AGGREGATE_RECORD_ID = uuid.UUID(int=0)


@dataclass
class _Output:
    column: AggregateColumn
    entity: str
    source: str
    key: str

    def read(self, row: Record) -> Any:
        value = row.attributes.get(self.source)
        if isinstance(value, AliasedValue):
            return value.value
        return value


def week_of_year(day: date, first_day_of_week: int) -> int:
    """Week number where week 1 is the one holding 1 January and weeks start on ``first_day_of_week``."""
    jan1 = date(day.year, 1, 1)
    offset = (jan1.weekday() - first_day_of_week) % 7
    return (day.timetuple().tm_yday - 1 + offset) // 7 + 1


def _number(value: Any, function: AggregateFunction) -> Any:
    if isinstance(value, Money):
        return value.value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value
    if isinstance(value, datetime) and function in (AggregateFunction.MIN, AggregateFunction.MAX):
        return value
    raise InvalidArgument(f"Cannot apply {function.value} to {type(value).__name__} values")


def reduce_values(function: AggregateFunction, values: List[Any], distinct: bool = False) -> Any:
    """Apply one aggregate function to a column's values. ``count`` counts rows, nulls included."""
    if function is AggregateFunction.COUNT:
        return len(values)
    present = [v for v in values if v is not None]
    if function is AggregateFunction.COUNT_COLUMN:
        if distinct:
            return len({hashable(v) for v in present})
        return len(present)
    if not present:
        return None

    numbers = [_number(v, function) for v in present]
    try:
        if function is AggregateFunction.MIN:
            result = min(numbers)
        elif function is AggregateFunction.MAX:
            result = max(numbers)
        elif function is AggregateFunction.SUM:
            result = sum(numbers)
        else:
            result = sum(numbers) / len(numbers)
    except TypeError as exc:
        raise InvalidArgument(f"Cannot apply {function.value}: values of mixed types") from exc
    if isinstance(present[0], Money):
        return Money(result)
    return result


class AggregateStage:
    def __init__(self, metadata: Optional[MetadataProvider] = None):
        self.metadata = metadata

    # ---- validation

    def _check_attribute(self, entity: str, attribute: str, function: Optional[AggregateFunction]) -> None:
        if self.metadata is None or not self.metadata.has_entity(entity):
            return
        if not self.metadata.has_attribute(entity, attribute):
            raise UnknownAttribute(entity, attribute)
        if function in (AggregateFunction.SUM, AggregateFunction.AVG):
            attr_type = self.metadata.get_attribute_type(entity, attribute)
            if attr_type is not None and not attr_type.is_numeric:
                raise TypeMismatch(attribute, "numeric", attr_type.value)

    def outputs(self, query: QueryDefinition, plan: QueryPlan) -> List[_Output]:
        """Check the aggregate columns of every level and say where each one reads from."""
        levels = [(query.entity_name, None, query.columns, query.aggregates)]
        levels += [(p.entity, p.alias, p.link.columns, p.link.aggregates) for p in plan.walk()]

        outputs: List[_Output] = []
        seen = set()
        for entity, prefix, columns, aggregates in levels:
            if columns.all_columns:
                raise InvalidArgument("all-attributes cannot be used in an aggregate query")
            if columns.columns:
                raise InvalidArgument(
                    f"Attribute {columns.columns[0]} must be grouped by or aggregated in an aggregate query"
                )
            for column in aggregates:
                name = column.attribute.lower()
                if not column.alias:
                    raise InvalidArgument(f"An alias is required for attribute {name} in an aggregate query")
                if not ALIAS_PATTERN.match(column.alias):
                    raise InvalidArgument(f"Invalid character specified for alias: {column.alias}")
                if column.function is None and not column.group_by:
                    raise InvalidArgument(f"Attribute {name} must be grouped by or aggregated in an aggregate query")
                if column.function is not None and column.group_by:
                    raise InvalidArgument(f"Attribute {name} cannot be both grouped by and aggregated")
                if column.date_grouping is not None and not column.group_by:
                    raise InvalidArgument(f"dategrouping on {name} needs groupby")
                self._check_attribute(entity, name, column.function)

                key = f"{prefix}.{column.alias}" if prefix else column.alias
                if key in seen:
                    raise InvalidArgument(f"Alias {column.alias} is used more than once")
                seen.add(key)
                source = f"{prefix}.{name}" if prefix else name
                outputs.append(_Output(column, entity, source, key))
        if not outputs:
            raise InvalidArgument("An aggregate query needs at least one grouped or aggregated attribute")
        return outputs

    def _order_keys(self, query: QueryDefinition, plan: QueryPlan, keys: set) -> List[Tuple[str, bool]]:
        levels: List[Tuple[Optional[str], Tuple[OrderExpression, ...]]] = [(None, query.orders)]
        levels += [(p.alias, p.link.orders) for p in plan.walk()]
        out: List[Tuple[str, bool]] = []
        for prefix, orders in levels:
            for order in orders:
                if order.attribute:
                    raise InvalidArgument(
                        "An attribute cannot be specified for an order clause for an aggregate Query. Use an alias"
                    )
                if not order.alias:
                    raise InvalidArgument("An alias is required for an order clause for an aggregate Query.")
                key = f"{prefix}.{order.alias}" if prefix else order.alias
                if key not in keys:
                    raise InvalidArgument(f"Order alias {order.alias} does not name an output column")
                out.append((key, order.descending))
        return out

    # ---- grouping

    @staticmethod
    def group_value(column: AggregateColumn, value: Any, ctx: Optional[EnvironmentContext]) -> Any:
        grouping = column.date_grouping
        if grouping is None or value is None:
            return value
        if isinstance(value, date) and not isinstance(value, datetime):
            value = datetime.combine(value, time())
        if not isinstance(value, datetime):
            raise InvalidArgument(f"Can only do date grouping of datetime values, {column.attribute} is not one")
        if value.tzinfo is not None and ctx is not None:
            value = value.astimezone(ctx.timezone)
        day = value.date()

        if grouping is DateGrouping.DAY:
            return day.day
        if grouping is DateGrouping.WEEK:
            return week_of_year(day, ctx.first_day_of_week if ctx is not None else 6)
        if grouping is DateGrouping.MONTH:
            return day.month
        if grouping is DateGrouping.QUARTER:
            return (day.month + 2) // 3
        if grouping is DateGrouping.YEAR:
            return day.year
        if ctx is None:
            raise InvalidArgument(f"{grouping.value} grouping needs fiscal settings")
        fiscal_year, period = current_fiscal_period(day, ctx.fiscal)
        return period if grouping is DateGrouping.FISCAL_PERIOD else fiscal_year

    def _result(self, entity_name: str, rows: List[Record], outputs: List[_Output], group: Dict[str, Any]) -> Record:
        record = Record(entity_name, AGGREGATE_RECORD_ID)
        for out in outputs:
            column = out.column
            if column.group_by:
                value = group.get(out.key)
                if value is None:
                    continue
            else:
                value = reduce_values(column.function, [out.read(r) for r in rows], column.distinct)
            record.attributes[out.key] = AliasedValue(out.entity, column.attribute.lower(), value)
        return record

    def aggregate(
        self,
        rows: List[Record],
        query: QueryDefinition,
        plan: QueryPlan,
        ctx: Optional[EnvironmentContext] = None,
    ) -> List[Record]:
        """Group ``rows``, reduce each group to one record, then order and cut at ``top``."""
        outputs = self.outputs(query, plan)
        order_keys = self._order_keys(query, plan, {o.key for o in outputs})
        groupers = [o for o in outputs if o.column.group_by]

        if not groupers:
            results = [self._result(query.entity_name, rows, outputs, {})]
        else:
            # group key -> (group values by output key, rows); first appearance fixes the order
            groups: Dict[Tuple[Any, ...], Tuple[Dict[str, Any], List[Record]]] = {}
            for row in rows:
                values = {g.key: self.group_value(g.column, g.read(row), ctx) for g in groupers}
                key = tuple(hashable(values[g.key]) for g in groupers)
                if key not in groups:
                    groups[key] = (values, [])
                groups[key][1].append(row)
            results = [self._result(query.entity_name, members, outputs, values) for values, members in groups.values()]

        for key_name, descending in reversed(order_keys):
            def sort_key(record: Record, key_name=key_name):
                value = record.attributes.get(key_name)
                if is_null(value):
                    return (0, 0)
                return (1, sort_value(value))

            try:
                results.sort(key=sort_key, reverse=descending)
            except TypeError as exc:
                raise InvalidArgument(f"cannot order by {key_name}: values of mixed types") from exc

        if query.top_count is not None:
            if query.top_count < 0:
                raise InvalidArgument("top must not be negative")
            results = results[: query.top_count]
        log.debug("Aggregated %d rows of %s into %d records", len(rows), query.entity_name, len(results))
        return results


__all__ = ["AGGREGATE_RECORD_ID", "AggregateStage", "reduce_values", "week_of_year"]
