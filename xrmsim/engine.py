"""
QueryEngine: the entry point that ties the store, metadata, clock and
configuration together.

Configuration is read once when the engine is built; the timezone in
particular is never re-resolved afterwards, so a host timezone change
mid-run does not shift date ranges between two queries.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, List, Mapping, Optional, Union

from . import config_loader
from .aggregate import AggregateStage
from .conditions import ConditionEvaluator
from .criteria import CriteriaEvaluator, plan_query
from .date_behavior import DateBehaviorResolver
from .fetchxml import to_fetchxml, translate_markup as _translate_markup
from .like_pattern import convert_pattern
from .materialize import ResultMaterializer
from .metadata import MetadataProvider
from .model import Clock, EnvironmentContext, QueryDefinition, Record, RetrieveResult, SystemClock
from .store import RecordStore

log = logging.getLogger(__name__)

QueryInput = Union[QueryDefinition, str]


class QueryEngine:
    """
    Evaluates queries against an in-memory record store.

    Evaluation is all-or-nothing: any error propagates to the caller and no
    partial result is returned.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        metadata: Optional[MetadataProvider] = None,
        clock: Optional[Clock] = None,
        config: Optional[Mapping[str, Any]] = None,
        caller_id: Optional[uuid.UUID] = None,
        business_unit_id: Optional[uuid.UUID] = None,
    ):
        cfg = config if config is not None else config_loader.load_app_config()

        if metadata is None:
            metadata = store.metadata if store is not None else MetadataProvider()
        self.metadata = metadata

        overrides = config_loader.get_date_behaviours(cfg)
        if store is None:
            store = RecordStore(metadata, DateBehaviorResolver(overrides=overrides, metadata=metadata))
        else:
            for entity, attrs in overrides.items():
                for attribute, behavior in attrs.items():
                    store.date_behaviors.set_behavior(entity, attribute, behavior)
        self.store = store

        self.clock = clock if clock is not None else SystemClock()
        self.timezone = config_loader.get_timezone(cfg)
        self.fiscal = config_loader.get_fiscal_settings(cfg)
        self.first_day_of_week = config_loader.get_first_day_of_week(cfg)
        self.max_retrieve_count = config_loader.get_max_retrieve_count(cfg)
        self.caller_id = caller_id
        self.business_unit_id = business_unit_id

        self.materializer = ResultMaterializer(self.metadata, self.store.date_behaviors, self.max_retrieve_count)
        self.aggregator = AggregateStage(self.metadata)
        log.debug(
            "QueryEngine ready: timezone=%s fiscal=%s/%s %s",
            self.timezone,
            self.fiscal.start_month,
            self.fiscal.start_day,
            self.fiscal.template.value,
        )

    # ---- context

    def context(self) -> EnvironmentContext:
        """Snapshot of 'now' and the settings that date operators depend on."""
        return EnvironmentContext(
            now=self.clock.now(),
            timezone=self.timezone,
            fiscal=self.fiscal,
            first_day_of_week=self.first_day_of_week,
            caller_id=self.caller_id,
            business_unit_id=self.business_unit_id,
        )

    # ---- queries

    def translate_markup(self, xml: str) -> QueryDefinition:
        """Parse FetchXML, typing literals from this engine's metadata."""
        return _translate_markup(xml, self.metadata)

    def _as_query(self, query: QueryInput) -> QueryDefinition:
        if isinstance(query, str):
            return self.translate_markup(query)
        return query

    def _run(self, query: QueryDefinition) -> List[Record]:
        plan = plan_query(query, self.metadata)
        ctx = self.context()
        rows = CriteriaEvaluator(self.store, ConditionEvaluator(ctx, self.metadata)).run(query, plan)
        if query.aggregate:
            return self.aggregator.aggregate(rows, query, plan, ctx)
        return self.materializer.materialize(rows, query, plan)

    def evaluate(self, query: QueryInput) -> List[Record]:
        """All matching records, ordered and projected; one record per group for aggregates. Paging is ignored."""
        q = self._as_query(query)
        records = self._run(q)
        log.debug("evaluate(%s) -> %d records", q.entity_name, len(records))
        return records

    def retrieve_multiple(self, query: QueryInput) -> RetrieveResult:
        """One page of results, with the more-records flag, cookie and total count."""
        q = self._as_query(query)
        return self.materializer.page(self._run(q), q)

    # ---- data

    def initialize(self, records) -> None:
        self.store.initialize(records)


__all__ = ["QueryEngine", "convert_pattern", "to_fetchxml"]
