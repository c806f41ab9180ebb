# xrmsim/tools/run_fetch.py
# Run a FetchXML query against records loaded from a JSON fixture and print the rows as JSON.
#   python -m xrmsim.tools.run_fetch fixture.json query.xml [--page-info] [--log-level DEBUG]

from __future__ import annotations
import argparse, json, sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Tuple
import uuid

from dotenv import load_dotenv

from xrmsim.config_loader import DOTENV_PATH, load_app_config
from xrmsim.engine import QueryEngine
from xrmsim.errors import QueryError
from xrmsim.helpers import coerce_identifier, parse_datetime_literal
from xrmsim.logging_setup import start_log
from xrmsim.metadata import MetadataProvider
from xrmsim.model import (
    AliasedValue,
    AttributeMetadata,
    AttributeType,
    DateTimeBehavior,
    EntityReference,
    Money,
    OptionSetValue,
    OptionSetValueCollection,
    Record,
    RetrieveResult,
)


def decode_value(raw: Any) -> Any:
    """Fixture values are plain JSON, or ``{"$type": ...}`` objects for CRM value types."""
    if isinstance(raw, list):
        return [decode_value(v) for v in raw]
    if not isinstance(raw, dict):
        return raw
    kind = raw.get("$type")
    if kind == "reference":
        return EntityReference(raw["entity"], coerce_identifier(raw["id"]), raw.get("name"))
    if kind == "optionset":
        return OptionSetValue(int(raw["value"]))
    if kind == "optionsets":
        return OptionSetValueCollection(tuple(int(v) for v in raw["values"]))
    if kind == "money":
        return Money(Decimal(str(raw["value"])))
    if kind == "decimal":
        return Decimal(str(raw["value"]))
    if kind == "datetime":
        parsed = parse_datetime_literal(raw["value"])
        if parsed is None:
            raise ValueError(f"unreadable datetime {raw['value']!r}")
        return parsed
    if kind == "uuid":
        return coerce_identifier(raw["value"])
    raise ValueError(f"unknown fixture value type {kind!r}")


def _attribute_spec(raw: Any) -> AttributeMetadata:
    # "datetime" or {"type": "datetime", "behavior": "dateonly"}
    if isinstance(raw, str):
        return AttributeMetadata("", AttributeType(raw))
    behavior = raw.get("behavior")
    return AttributeMetadata(
        "",
        AttributeType(raw["type"]),
        DateTimeBehavior.parse(behavior) if behavior else None,
    )


def load_fixture(data: Dict[str, Any]) -> Tuple[MetadataProvider, List[Record]]:
    metadata = MetadataProvider()
    for entity, spec in (data.get("entities") or {}).items():
        attributes = {}
        for name, raw in (spec.get("attributes") or {}).items():
            meta = _attribute_spec(raw)
            attributes[name] = AttributeMetadata(name.lower(), meta.attribute_type, meta.date_behavior)
        metadata.register_entity(entity, attributes, spec.get("primaryid"))

    records: List[Record] = []
    for item in data.get("records") or []:
        attrs = {k.lower(): decode_value(v) for k, v in (item.get("attributes") or {}).items()}
        rid = coerce_identifier(item["id"]) if item.get("id") else uuid.uuid4()
        records.append(Record(item["logicalname"], rid, attrs))
    return metadata, records


def encode_value(value: Any) -> Any:
    if isinstance(value, AliasedValue):
        return encode_value(value.value)
    if isinstance(value, EntityReference):
        return {"$type": "reference", "entity": value.logical_name, "id": str(value.id), "name": value.name}
    if isinstance(value, OptionSetValue):
        return {"$type": "optionset", "value": value.value}
    if isinstance(value, OptionSetValueCollection):
        return {"$type": "optionsets", "values": list(value.values)}
    if isinstance(value, Money):
        return {"$type": "money", "value": str(value.value)}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def record_to_json(record: Record) -> Dict[str, Any]:
    return {
        "logicalname": record.logical_name,
        "id": str(record.id),
        "attributes": {k: encode_value(v) for k, v in record.attributes.items()},
    }


def page_to_json(page: RetrieveResult) -> Dict[str, Any]:
    return {
        "entity": page.entity_name,
        "records": [record_to_json(r) for r in page.records],
        "more_records": page.more_records,
        "paging_cookie": page.paging_cookie,
        "total_record_count": page.total_record_count,
    }


def main(argv=None):
    load_dotenv(DOTENV_PATH, override=False)
    ap = argparse.ArgumentParser(description="Run a FetchXML query against a JSON record fixture")
    ap.add_argument("fixture", type=Path, help="JSON file with 'entities' and 'records'")
    ap.add_argument("query", type=Path, help="FetchXML file, or - to read standard input")
    ap.add_argument("--page-info", action="store_true", help="Print one page with paging details")
    ap.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    ap.add_argument("--no-log-file", action="store_true", help="Log to the console only")
    args = ap.parse_args(argv)

    start_log(app_name="run_fetch", level=args.log_level, to_console=args.no_log_file, to_file=not args.no_log_file)

    data = json.loads(args.fixture.read_text(encoding="utf-8"))
    xml = sys.stdin.read() if str(args.query) == "-" else args.query.read_text(encoding="utf-8")

    metadata, records = load_fixture(data)
    engine = QueryEngine(metadata=metadata, config=load_app_config())
    engine.initialize(records)
    try:
        if args.page_info:
            out: Any = page_to_json(engine.retrieve_multiple(xml))
        else:
            out = [record_to_json(r) for r in engine.evaluate(xml)]
    except QueryError as exc:
        raise SystemExit(f"{type(exc).__name__}: {exc}")
    print(json.dumps(out, indent=2))


if __name__ == "__main__":
    main()
