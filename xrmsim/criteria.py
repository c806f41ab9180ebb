"""
Filter trees and link-entity joins.

Joins are hash joins: the joined side is indexed once on its join key, then
every parent row looks up the index, so the cost stays linear in the number of
candidate rows plus the rows the joins produce.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from itertools import chain
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .conditions import ConditionEvaluator
from .errors import InvalidArgument, UnknownAttribute
from .helpers import try_identifier
from .metadata import MetadataProvider
from .model import (
    AliasedValue,
    EntityReference,
    FilterNode,
    JoinType,
    LinkEntity,
    LogicalOperator,
    Money,
    OptionSetValue,
    QueryDefinition,
    Record,
)
from .store import RecordStore, primary_id_attribute

log = logging.getLogger(__name__)

ALIAS_PATTERN = re.compile(r"^[A-Za-z_](\w|\.)*$", re.ASCII)


def join_key(value: Any) -> Any:
    """Reduce a value to something hashable that compares the way joins compare."""
    if isinstance(value, AliasedValue):
        value = value.value
    if value is None:
        return None
    if isinstance(value, EntityReference):
        return value.id
    if isinstance(value, (OptionSetValue, Money)):
        return value.value
    if isinstance(value, str):
        ident = try_identifier(value)
        return ident if ident is not None else value.casefold()
    return value


def record_key(record: Record, attribute: str) -> Any:
    if attribute in record.attributes:
        return join_key(record.attributes[attribute])
    if attribute == primary_id_attribute(record.logical_name):
        return record.id
    return None


# ---------------------------------------------------------------- planning


@dataclass
class PlannedLink:
    link: LinkEntity
    alias: str
    parent_alias: Optional[str]
    parent_entity: str
    children: List["PlannedLink"] = field(default_factory=list)

    @property
    def entity(self) -> str:
        return self.link.link_to_entity


@dataclass
class QueryPlan:
    entity_name: str
    links: List[PlannedLink]
    # alias or unaliased entity name -> (row alias, logical name)
    aliases: Dict[str, Tuple[str, str]]

    def walk(self) -> List[PlannedLink]:
        out: List[PlannedLink] = []

        def _visit(items: List[PlannedLink]) -> None:
            for item in items:
                out.append(item)
                _visit(item.children)

        _visit(self.links)
        return out


def plan_query(query: QueryDefinition, metadata: Optional[MetadataProvider] = None) -> QueryPlan:
    """Assign aliases to every link and check the join attributes exist."""
    counters: Dict[str, int] = {}
    aliases: Dict[str, Tuple[str, str]] = {}
    unaliased: Dict[str, List[str]] = defaultdict(list)

    if metadata is not None:
        metadata.require_entity(query.entity_name)

    def _default_alias(entity: str) -> str:
        counters[entity] = counters.get(entity, 0) + 1
        return f"{entity}{counters[entity]}"

    def _plan(link: LinkEntity, parent_alias: Optional[str], parent_entity: str) -> PlannedLink:
        if link.alias:
            if not ALIAS_PATTERN.match(link.alias):
                raise InvalidArgument(
                    f"Invalid character specified for alias: {link.alias}. Only characters within the ranges "
                    "[A-Z], [a-z] or [0-9] or _ are allowed.  The first character may only be in the ranges "
                    "[A-Z], [a-z] or _."
                )
            alias = link.alias
        else:
            alias = _default_alias(link.link_to_entity)
            unaliased[link.link_to_entity].append(alias)
        if alias in aliases:
            raise InvalidArgument(f"Table {alias} is not unique amongst all top-level table and join aliases")
        aliases[alias] = (alias, link.link_to_entity)

        if metadata is not None:
            metadata.require_entity(link.link_to_entity)
            if not metadata.has_attribute(link.link_to_entity, link.link_to_attribute):
                raise UnknownAttribute(link.link_to_entity, link.link_to_attribute)

        planned = PlannedLink(link, alias, parent_alias, parent_entity)
        for child in link.links:
            planned.children.append(_plan(child, alias, link.link_to_entity))
        return planned

    links = [_plan(link, None, query.entity_name) for link in query.links]

    # an unaliased link can also be addressed by its entity name when that is unambiguous
    for entity, assigned in unaliased.items():
        if entity in aliases:
            continue
        if len(assigned) == 1:
            aliases[entity] = (assigned[0], entity)
    return QueryPlan(query.entity_name, links, aliases)


# ---------------------------------------------------------------- evaluation


class CriteriaEvaluator:
    def __init__(self, store: RecordStore, conditions: ConditionEvaluator):
        self.store = store
        self.conditions = conditions

    def matches(
        self,
        node: Optional[FilterNode],
        row: Record,
        entity_name: str,
        prefix: Optional[str] = None,
        aliases: Optional[Mapping[str, Tuple[str, str]]] = None,
    ) -> bool:
        """True when ``row`` satisfies ``node``. An empty node accepts every row."""
        if node is None or node.is_empty:
            return True
        results = chain(
            (self.conditions.evaluate(c, row, entity_name, prefix, aliases) for c in node.conditions),
            (self.matches(f, row, entity_name, prefix, aliases) for f in node.filters),
        )
        if node.logical is LogicalOperator.OR:
            return any(results)
        return all(results)

    def filter_rows(
        self,
        rows: List[Record],
        node: Optional[FilterNode],
        entity_name: str,
        prefix: Optional[str] = None,
        aliases: Optional[Mapping[str, Tuple[str, str]]] = None,
    ) -> List[Record]:
        if node is None or node.is_empty:
            return rows
        return [r for r in rows if self.matches(node, r, entity_name, prefix, aliases)]

    def run(self, query: QueryDefinition, plan: QueryPlan) -> List[Record]:
        """Join, then filter. Returns the matching rows in store order."""
        rows = self.store.get_all(query.entity_name)
        for planned in plan.links:
            rows = self._join(rows, planned)

        rows = self.filter_rows(rows, query.criteria, query.entity_name, None, plan.aliases)

        # inner link criteria run against the joined row; outer ones were applied before joining
        for planned in plan.walk():
            link = planned.link
            if link.join is JoinType.INNER:
                rows = self.filter_rows(rows, link.criteria, link.link_to_entity, planned.alias, plan.aliases)
        log.debug("Criteria on %s kept %d rows", query.entity_name, len(rows))
        return rows

    def _join(self, rows: List[Record], planned: PlannedLink) -> List[Record]:
        link = planned.link
        candidates = self.store.get_all(link.link_to_entity)
        if link.join is JoinType.LEFT_OUTER:
            candidates = self.filter_rows(candidates, link.criteria, link.link_to_entity)

        index: Dict[Any, List[Record]] = defaultdict(list)
        for candidate in candidates:
            key = record_key(candidate, link.link_to_attribute)
            if key is not None:
                index[key].append(candidate)

        if planned.parent_alias:
            parent_attr = f"{planned.parent_alias}.{link.link_from_attribute}"
        else:
            parent_attr = link.link_from_attribute

        joined: List[Record] = []
        for row in rows:
            if planned.parent_alias:
                key = join_key(row.attributes.get(parent_attr))
            else:
                key = record_key(row, parent_attr)
            found = index.get(key, ()) if key is not None else ()
            if found:
                for match in found:
                    joined.append(_merge(row, match, planned.alias))
            elif link.join is JoinType.LEFT_OUTER:
                joined.append(row)

        for child in planned.children:
            joined = self._join(joined, child)
        return joined


def _merge(row: Record, joined: Record, alias: str) -> Record:
    merged = Record(row.logical_name, row.id, dict(row.attributes))
    for name, value in joined.attributes.items():
        merged.attributes[f"{alias}.{name}"] = AliasedValue(joined.logical_name, name, value)
    return merged


__all__ = [
    "ALIAS_PATTERN",
    "CriteriaEvaluator",
    "PlannedLink",
    "QueryPlan",
    "join_key",
    "plan_query",
    "record_key",
]
