"""
Turn filtered rows into what a caller gets back.

Order of work: sort on the joined rows, project the requested columns,
apply read-path date behaviours, drop duplicates for ``distinct``, cut at
``top``, then page.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .criteria import PlannedLink, QueryPlan
from .date_behavior import DateBehaviorResolver
from .errors import InvalidArgument, UnknownAttribute
from .helpers import primitive
from .metadata import MetadataProvider
from .model import AliasedValue, OrderExpression, PagingInfo, QueryDefinition, Record, RetrieveResult

log = logging.getLogger(__name__)

MAX_RETRIEVE_COUNT = 5000

# calendar rules come back with every calendar whether asked for or not
_ALWAYS_RETURNED = {"calendar": ("calendarrules",)}


def is_null(value: Any) -> bool:
    if isinstance(value, AliasedValue):
        return value.value is None
    return value is None


def sort_value(value: Any) -> Any:
    value = primitive(value.value if isinstance(value, AliasedValue) else value)
    if isinstance(value, str):
        return value.casefold()
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, bool):
        return int(value)
    return value


def hashable(value: Any) -> Any:
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def format_paging_cookie(page: int, records: List[Record]) -> str:
    first, last = records[0], records[-1]
    return (
        f'<cookie page="{page}"><{first.logical_name}id '
        f'last="{{{str(last.id).upper()}}}" first="{{{str(first.id).upper()}}}" /></cookie>'
    )


class ResultMaterializer:
    def __init__(
        self,
        metadata: Optional[MetadataProvider] = None,
        date_behaviors: Optional[DateBehaviorResolver] = None,
        max_retrieve_count: int = MAX_RETRIEVE_COUNT,
    ):
        self.metadata = metadata
        self.date_behaviors = date_behaviors if date_behaviors is not None else DateBehaviorResolver(metadata=metadata)
        self.max_retrieve_count = max_retrieve_count

    # ---- ordering

    def _order_key(self, order: OrderExpression, owner: Optional[str]) -> str:
        alias = order.entity_alias or owner
        return f"{alias}.{order.attribute}" if alias else order.attribute

    def sort(self, rows: List[Record], query: QueryDefinition, plan: QueryPlan) -> List[Record]:
        """Stable multi-key sort; nulls sort first ascending and last descending."""
        keys: List[Tuple[str, bool]] = [(self._order_key(o, None), o.descending) for o in query.orders]
        for planned in plan.walk():
            keys.extend((self._order_key(o, planned.alias), o.descending) for o in planned.link.orders)
        if not keys:
            return rows

        ordered = list(rows)
        for attribute, descending in reversed(keys):
            def key(row: Record, attribute=attribute):
                value = row.attributes.get(attribute)
                if is_null(value):
                    return (0, 0)
                return (1, sort_value(value))

            try:
                ordered.sort(key=key, reverse=descending)
            except TypeError as exc:
                raise InvalidArgument(f"cannot order by {attribute}: values of mixed types") from exc
        return ordered

    # ---- projection

    def _check_column(self, entity: str, column: str) -> None:
        if column in _ALWAYS_RETURNED.get(entity, ()):
            return
        if self.metadata is None or not self.metadata.has_entity(entity):
            return
        if not self.metadata.has_attribute(entity, column):
            log.warning("Column %s requested on %s does not exist", column, entity)
            raise UnknownAttribute(entity, column)

    def validate_columns(self, query: QueryDefinition, plan: QueryPlan) -> None:
        """Check every explicitly requested column before any row is produced."""
        if not query.columns.all_columns:
            for column in query.columns.columns:
                self._check_column(query.entity_name, column.lower())
        for planned in plan.walk():
            link = planned.link
            if not link.columns.all_columns:
                for column in link.columns.columns:
                    self._check_column(link.link_to_entity, column.lower())

    def _link_columns(self, row: Record, projected: Dict[str, Any], planned: PlannedLink) -> None:
        link = planned.link
        prefix = f"{planned.alias}."
        if link.columns.all_columns:
            for name, value in row.attributes.items():
                if name.startswith(prefix):
                    projected[name] = value
        else:
            for column in link.columns.columns:
                name = prefix + column.lower()
                if name in row.attributes:
                    projected[name] = row.attributes[name]
        for child in planned.children:
            self._link_columns(row, projected, child)

    def project(self, row: Record, query: QueryDefinition, plan: QueryPlan) -> Record:
        if query.columns.all_columns:
            projected = dict(row.attributes)
        else:
            projected = {}
            for column in query.columns.columns:
                name = column.lower()
                if name in row.attributes:
                    projected[name] = row.attributes[name]
            for planned in plan.links:
                self._link_columns(row, projected, planned)

        for name in _ALWAYS_RETURNED.get(row.logical_name, ()):
            if row.attributes.get(name) is not None:
                projected[name] = row.attributes[name]

        out = Record(row.logical_name, row.id, {k: v for k, v in projected.items() if not is_null(v)})
        return self._apply_date_behaviors(out)

    def _apply_date_behaviors(self, record: Record) -> Record:
        for name, value in list(record.attributes.items()):
            if isinstance(value, AliasedValue):
                if isinstance(value.value, datetime):
                    fixed = self.date_behaviors.normalize_value(value.entity_logical_name, value.attribute, value.value)
                    record.attributes[name] = AliasedValue(value.entity_logical_name, value.attribute, fixed)
            elif isinstance(value, datetime):
                record.attributes[name] = self.date_behaviors.normalize_value(record.logical_name, name, value)
        return record

    # ---- set operations

    @staticmethod
    def distinct(records: Iterable[Record]) -> List[Record]:
        seen = set()
        out: List[Record] = []
        for record in records:
            key = (record.logical_name, tuple((k, hashable(v)) for k, v in record.attributes.items()))
            if key in seen:
                continue
            seen.add(key)
            out.append(record)
        return out

    def materialize(self, rows: List[Record], query: QueryDefinition, plan: QueryPlan) -> List[Record]:
        """Every result of the query, before paging."""
        self.validate_columns(query, plan)
        ordered = self.sort(rows, query, plan)
        records = [self.project(r, query, plan) for r in ordered]
        if query.distinct:
            records = self.distinct(records)
        if query.top_count is not None:
            if query.top_count < 0:
                raise InvalidArgument("top must not be negative")
            records = records[: query.top_count]
        return records

    def page(self, records: List[Record], query: QueryDefinition) -> RetrieveResult:
        paging: PagingInfo = query.paging
        page_number = paging.page if paging.page and paging.page > 0 else 1
        page_size = paging.count if paging.count else self.max_retrieve_count
        if page_size < 0:
            raise InvalidArgument("count must not be negative")

        total = len(records)
        start = (page_number - 1) * page_size
        chunk = records[start: start + page_size]
        more = total - page_size * page_number > 0

        result = RetrieveResult(entity_name=query.entity_name, records=chunk, more_records=more)
        if paging.return_total_record_count:
            result.total_record_count = min(total, self.max_retrieve_count)
            result.total_record_count_limit_exceeded = total > self.max_retrieve_count
        if more and chunk:
            result.paging_cookie = format_paging_cookie(page_number, chunk)
        log.debug(
            "Page %d of %s: %d of %d records, more=%s", page_number, query.entity_name, len(chunk), total, more
        )
        return result


__all__ = ["MAX_RETRIEVE_COUNT", "ResultMaterializer", "format_paging_cookie", "hashable", "is_null", "sort_value"]
