"""
FetchXML <-> QueryDefinition.

``translate_markup`` turns FetchXML text into the query tree the engine
evaluates; ``to_fetchxml`` writes a tree back out. Element and operator
names are matched exactly, casing included.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import lxml.etree

from .errors import InvalidArgument, MissingFeatureError, MissingKind, ParseError, TypeMismatch, UnknownEntity
from .helpers import coerce_to_type, guess_literal, parse_bool, parse_int
from .metadata import MetadataProvider
from .model import (
    AggregateColumn,
    AggregateFunction,
    ColumnSet,
    Condition,
    DateGrouping,
    EntityReference,
    FilterNode,
    JoinType,
    LinkEntity,
    LogicalOperator,
    Money,
    OptionSetValue,
    OrderExpression,
    PagingInfo,
    QueryDefinition,
)
from .operators import Arity, ConditionOperator, TypeClass, lookup_operator, takes_integer_argument

log = logging.getLogger(__name__)

# element name -> attributes it cannot do without
_REQUIRED_ATTRIBUTES: Dict[str, Tuple[str, ...]] = {
    "fetch": (),
    "entity": ("name",),
    "all-attributes": (),
    "attribute": ("name",),
    "link-entity": ("name", "from", "to"),
    "order": (),
    "filter": (),
    "condition": ("attribute", "operator"),
    "value": (),
}


def _elements(el) -> List[Any]:
    """Child elements only; comments and processing instructions are skipped."""
    return [c for c in el if isinstance(c, lxml.etree._Element) and isinstance(c.tag, str)]


def _validate_nodes(root) -> None:
    for el in root.iter():
        if not isinstance(el.tag, str):
            continue
        name = lxml.etree.QName(el).localname
        required = _REQUIRED_ATTRIBUTES.get(name)
        if required is None:
            raise ParseError(f"Node {name} is not a valid FetchXml node or it doesn't have the required attributes")
        missing = [a for a in required if el.get(a) is None]
        if missing:
            raise ParseError(
                f"Node {name} is not a valid FetchXml node or it doesn't have the required attributes "
                f"(missing {', '.join(missing)})"
            )


def _int_attribute(el, name: str) -> Optional[int]:
    raw = el.get(name)
    if raw is None:
        return None
    try:
        return parse_int(raw)
    except ValueError:
        raise ParseError(f"{name.capitalize()} attribute in fetch node must be an integer") from None


def _bool_attribute(el, name: str, default: bool = False) -> bool:
    raw = el.get(name)
    if raw is None:
        return default
    try:
        return parse_bool(raw)
    except ValueError:
        raise ParseError(f"{name} attribute in {el.tag} node must be true or false") from None


# link types the platform accepts that have no in-memory counterpart here
_UNIMPLEMENTED_LINK_TYPES = frozenset(
    {"natural", "any", "not any", "all", "not all", "exists", "in", "matchfirstrowusingcrossapply"}
)


def _join_type(raw: Optional[str]) -> JoinType:
    if raw is None or raw == "inner":
        return JoinType.INNER
    if raw == "outer":
        return JoinType.LEFT_OUTER
    if raw in _UNIMPLEMENTED_LINK_TYPES:
        raise MissingFeatureError(MissingKind.UNSUPPORTED, f"link-type {raw}")
    raise ParseError(f"Invalid link-type {raw!r}")


class _Translator:
    """One translation; holds the alias map used to type condition literals."""

    def __init__(self, metadata: Optional[MetadataProvider], aggregate: bool = False):
        self.metadata = metadata
        self.aggregate = aggregate
        self.entity_by_alias: Dict[str, str] = {}

    # ---- literal typing

    def _attribute_type(self, entity: Optional[str], attribute: str):
        if self.metadata is None or not entity:
            return None
        try:
            return self.metadata.get_attribute_type(entity, attribute)
        except UnknownEntity:
            return None

    def _type_literal(self, op: ConditionOperator, raw: str, entity: Optional[str], attribute: str) -> Any:
        if takes_integer_argument(op):
            try:
                return parse_int(raw)
            except ValueError:
                # let the date resolver report the bad count
                return raw
        if op.info.type_class is TypeClass.TEXT:
            return raw
        attr_type = self._attribute_type(entity, attribute)
        if attr_type is None:
            return guess_literal(raw)
        try:
            return coerce_to_type(raw, attr_type)
        except ValueError as exc:
            raise TypeMismatch(attribute, attr_type.value, f"literal {raw!r}") from exc

    def _condition_entity(self, el, owner: str) -> Tuple[Optional[str], str]:
        attribute = el.get("attribute")
        alias = el.get("entityname")
        if not alias and "." in attribute:
            alias, attribute = attribute.split(".", 1)
        if alias:
            return self.entity_by_alias.get(alias), attribute
        return owner, attribute

    # ---- nodes

    def condition(self, el, owner: str) -> Condition:
        op = lookup_operator(el.get("operator"))
        entity, attribute = self._condition_entity(el, owner)

        raw_values: List[str] = []
        if el.get("value") is not None:
            raw_values.append(el.get("value"))
        for child in _elements(el):
            if child.tag != "value":
                raise ParseError(f"Node {child.tag} is not allowed inside a condition")
            raw_values.append(child.text or "")
        if op.info.arity is Arity.NONE:
            # some tools write value="" on operators that take nothing
            raw_values = [v for v in raw_values if v.strip()]

        values = tuple(self._type_literal(op, v, entity, attribute) for v in raw_values)
        return Condition(
            attribute=el.get("attribute"),
            operator=op,
            values=values,
            entity_name=el.get("entityname"),
            value_of=el.get("valueof"),
        )

    def filter(self, el, owner: str) -> FilterNode:
        kind = el.get("type") or "and"
        if kind not in ("and", "or"):
            raise ParseError(f"Filter type must be 'and' or 'or', got {el.get('type')!r}")
        conditions: List[Condition] = []
        filters: List[FilterNode] = []
        for child in _elements(el):
            if child.tag == "condition":
                conditions.append(self.condition(child, owner))
            elif child.tag == "filter":
                filters.append(self.filter(child, owner))
            elif child.tag == "link-entity":
                raise MissingFeatureError(MissingKind.UNSUPPORTED, "link-entity inside filter")
            else:
                raise ParseError(f"Node {child.tag} is not allowed inside a filter")
        return FilterNode(LogicalOperator(kind), conditions, filters)

    def _criteria(self, filters: List[Any], owner: str) -> FilterNode:
        if not filters:
            return FilterNode()
        nodes = [self.filter(f, owner) for f in filters]
        if len(nodes) == 1:
            return nodes[0]
        return FilterNode(LogicalOperator.AND, filters=nodes)

    def order(self, el) -> OrderExpression:
        # aggregate queries order by output alias; the aggregate stage checks the pairing
        if not self.aggregate and el.get("attribute") is None:
            raise ParseError(
                "Node order is not a valid FetchXml node or it doesn't have the required attributes "
                "(missing attribute)"
            )
        return OrderExpression(
            attribute=el.get("attribute"),
            descending=_bool_attribute(el, "descending"),
            entity_alias=el.get("entityname"),
            alias=el.get("alias"),
        )

    def columns(self, el) -> ColumnSet:
        kids = _elements(el)
        if any(c.tag == "all-attributes" for c in kids):
            return ColumnSet.every()
        if self.aggregate:
            return ColumnSet()
        return ColumnSet.of(*[c.get("name") for c in kids if c.tag == "attribute"])

    def aggregates(self, el) -> List[AggregateColumn]:
        if not self.aggregate:
            return []
        out: List[AggregateColumn] = []
        for c in _elements(el):
            if c.tag != "attribute":
                continue
            function = grouping = None
            raw = c.get("aggregate")
            if raw is not None:
                try:
                    function = AggregateFunction(raw.lower())
                except ValueError:
                    raise ParseError(f"Unknown aggregate function {raw!r}") from None
            raw = c.get("dategrouping")
            if raw is not None:
                try:
                    grouping = DateGrouping(raw.lower())
                except ValueError:
                    raise ParseError(f"Unknown dategrouping value {raw!r}") from None
            out.append(
                AggregateColumn(
                    attribute=c.get("name"),
                    alias=c.get("alias"),
                    function=function,
                    group_by=_bool_attribute(c, "groupby"),
                    date_grouping=grouping,
                    distinct=_bool_attribute(c, "distinct"),
                )
            )
        return out

    def link(self, el, parent_entity: str) -> LinkEntity:
        name = el.get("name")
        filters, links, orders = [], [], []
        for child in _elements(el):
            if child.tag == "filter":
                filters.append(child)
            elif child.tag == "link-entity":
                links.append(self.link(child, name))
            elif child.tag == "order":
                orders.append(self.order(child))
            elif child.tag not in ("attribute", "all-attributes"):
                raise ParseError(f"Node {child.tag} is not allowed inside a link-entity")
        join = _join_type(el.get("link-type"))
        return LinkEntity(
            link_from_entity=parent_entity,
            link_from_attribute=el.get("to"),
            link_to_entity=name,
            link_to_attribute=el.get("from"),
            join=join,
            alias=el.get("alias"),
            columns=self.columns(el),
            criteria=self._criteria(filters, name),
            links=links,
            orders=orders,
            aggregates=self.aggregates(el),
        )

    def fetch(self, root) -> QueryDefinition:
        entities = [c for c in _elements(root) if c.tag == "entity"]
        others = [c for c in _elements(root) if c.tag != "entity"]
        if len(entities) != 1 or others:
            raise ParseError("fetch must contain exactly one entity node")
        entity = entities[0]
        entity_name = entity.get("name")

        for link_el in entity.iter("link-entity"):
            self.entity_by_alias.setdefault(link_el.get("name"), link_el.get("name"))
            if link_el.get("alias"):
                self.entity_by_alias[link_el.get("alias")] = link_el.get("name")
        self.entity_by_alias.setdefault(entity_name, entity_name)

        filters, links, orders = [], [], []
        for child in _elements(entity):
            if child.tag == "filter":
                filters.append(child)
            elif child.tag == "link-entity":
                links.append(self.link(child, entity_name))
            elif child.tag == "order":
                orders.append(self.order(child))
            elif child.tag not in ("attribute", "all-attributes"):
                raise ParseError(f"Node {child.tag} is not allowed inside an entity")

        paging = PagingInfo(
            count=_int_attribute(root, "count"),
            page=_int_attribute(root, "page") or 1,
            paging_cookie=root.get("paging-cookie"),
            return_total_record_count=_bool_attribute(root, "returntotalrecordcount"),
        )
        return QueryDefinition(
            entity_name=entity_name,
            columns=self.columns(entity),
            criteria=self._criteria(filters, entity_name),
            links=links,
            orders=orders,
            distinct=_bool_attribute(root, "distinct"),
            top_count=_int_attribute(root, "top"),
            paging=paging,
            aggregate=self.aggregate,
            aggregates=self.aggregates(entity),
        )


def translate_markup(xml: str, metadata: Optional[MetadataProvider] = None) -> QueryDefinition:
    """
    Parse FetchXML into a ``QueryDefinition``.

    Literals are typed from ``metadata`` when it knows the attribute and
    guessed otherwise. Raises ParseError for malformed or unknown markup and
    UnsupportedOperator for operators that cannot be evaluated. With
    ``aggregate="true"`` the attribute nodes become ``AggregateColumn``s.
    """
    if xml is None or not str(xml).strip():
        raise ParseError("empty FetchXML")
    text = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = lxml.etree.fromstring(text)
    except lxml.etree.XMLSyntaxError as exc:
        log.warning("Rejected malformed FetchXML: %s", exc)
        raise ParseError(f"malformed FetchXML: {exc}") from exc

    if root.tag != "fetch":
        raise ParseError(f"FetchXML root must be fetch, got {root.tag}")
    _validate_nodes(root)
    query = _Translator(metadata, _bool_attribute(root, "aggregate")).fetch(root)
    log.debug("Translated FetchXML for %s", query.entity_name)
    return query


# ---------------------------------------------------------------- serialization


def _literal_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, EntityReference):
        return str(value.id)
    if isinstance(value, (OptionSetValue, Money)):
        return str(value.value)
    if isinstance(value, (uuid.UUID, Decimal, int)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _write_condition(parent, condition: Condition) -> None:
    el = lxml.etree.SubElement(parent, "condition")
    el.set("attribute", condition.attribute)
    el.set("operator", condition.operator.fetch_name)
    if condition.entity_name:
        el.set("entityname", condition.entity_name)
    if condition.value_of:
        el.set("valueof", condition.value_of)
    if condition.operator.info.arity is Arity.ONE and len(condition.values) == 1:
        el.set("value", _literal_text(condition.values[0]))
        return
    for value in condition.values:
        lxml.etree.SubElement(el, "value").text = _literal_text(value)


def _write_filter(parent, node: FilterNode) -> None:
    el = lxml.etree.SubElement(parent, "filter")
    el.set("type", node.logical.value)
    for condition in node.conditions:
        _write_condition(el, condition)
    for child in node.filters:
        _write_filter(el, child)


def _write_aggregate(parent, column: AggregateColumn) -> None:
    el = lxml.etree.SubElement(parent, "attribute")
    el.set("name", column.attribute)
    if column.alias:
        el.set("alias", column.alias)
    if column.function is not None:
        el.set("aggregate", column.function.value)
    if column.group_by:
        el.set("groupby", "true")
    if column.date_grouping is not None:
        el.set("dategrouping", column.date_grouping.value)
    if column.distinct:
        el.set("distinct", "true")


def _write_body(el, columns: ColumnSet, orders, criteria: FilterNode, links, aggregates=()) -> None:
    if columns.all_columns:
        lxml.etree.SubElement(el, "all-attributes")
    else:
        for name in columns.columns:
            lxml.etree.SubElement(el, "attribute").set("name", name)
    for column in aggregates:
        _write_aggregate(el, column)
    for order in orders:
        o = lxml.etree.SubElement(el, "order")
        if order.attribute:
            o.set("attribute", order.attribute)
        if order.alias:
            o.set("alias", order.alias)
        o.set("descending", "true" if order.descending else "false")
        if order.entity_alias:
            o.set("entityname", order.entity_alias)
    if not criteria.is_empty:
        _write_filter(el, criteria)
    for link in links:
        _write_link(el, link)


def _write_link(parent, link: LinkEntity) -> None:
    el = lxml.etree.SubElement(parent, "link-entity")
    el.set("name", link.link_to_entity)
    el.set("from", link.link_to_attribute)
    el.set("to", link.link_from_attribute)
    el.set("link-type", link.join.value)
    if link.alias:
        el.set("alias", link.alias)
    _write_body(el, link.columns, link.orders, link.criteria, link.links, link.aggregates)


def to_fetchxml(query: QueryDefinition) -> str:
    """Serialize ``query`` as FetchXML; ``translate_markup`` reads it back to an equal tree."""
    if query.top_count is not None and query.paging.count is not None:
        raise InvalidArgument("top and count cannot be combined in one query")
    root = lxml.etree.Element("fetch")
    root.set("version", "1.0")
    root.set("mapping", "logical")
    if query.aggregate:
        root.set("aggregate", "true")
    if query.distinct:
        root.set("distinct", "true")
    if query.top_count is not None:
        root.set("top", str(query.top_count))
    paging = query.paging
    if paging.count is not None:
        root.set("count", str(paging.count))
    if paging.page != 1:
        root.set("page", str(paging.page))
    if paging.paging_cookie:
        root.set("paging-cookie", paging.paging_cookie)
    if paging.return_total_record_count:
        root.set("returntotalrecordcount", "true")

    entity = lxml.etree.SubElement(root, "entity")
    entity.set("name", query.entity_name)
    _write_body(entity, query.columns, query.orders, query.criteria, query.links, query.aggregates)
    return lxml.etree.tostring(root, encoding="unicode", pretty_print=True)


__all__ = ["translate_markup", "to_fetchxml"]
