from __future__ import annotations

import logging
import threading
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from .errors import InvalidArgument, UnknownAttribute, UnknownEntity
from .model import (
    AttributeMetadata,
    AttributeType,
    DateTimeBehavior,
    EntityReference,
    LinkEntity,
    Money,
    OptionSetValue,
    OptionSetValueCollection,
    Record,
    Relationship,
)

log = logging.getLogger(__name__)

AttributeSpec = Union[AttributeType, AttributeMetadata, str]


def infer_type(value: Any) -> Optional[AttributeType]:
    """Guess the attribute type from a stored Python value. ``None`` tells nothing."""
    if value is None:
        return None
    if isinstance(value, bool):
        return AttributeType.BOOLEAN
    if isinstance(value, int):
        return AttributeType.INTEGER
    if isinstance(value, Decimal):
        return AttributeType.DECIMAL
    if isinstance(value, float):
        return AttributeType.DOUBLE
    if isinstance(value, Money):
        return AttributeType.MONEY
    if isinstance(value, str):
        return AttributeType.STRING
    if isinstance(value, (datetime, date)):
        return AttributeType.DATETIME
    if isinstance(value, EntityReference):
        return AttributeType.LOOKUP
    if isinstance(value, OptionSetValue):
        return AttributeType.PICKLIST
    if isinstance(value, OptionSetValueCollection):
        return AttributeType.MULTISELECT_PICKLIST
    if isinstance(value, uuid.UUID):
        return AttributeType.UNIQUEIDENTIFIER
    if isinstance(value, (list, tuple)):
        return AttributeType.ENTITY_COLLECTION
    return None


def _as_metadata(name: str, spec: AttributeSpec) -> AttributeMetadata:
    if isinstance(spec, AttributeMetadata):
        return spec
    return AttributeMetadata(name, AttributeType(spec))


class _EntityInfo:
    def __init__(self, logical_name: str, declared: bool):
        self.logical_name = logical_name
        self.declared = declared
        self.attributes: Dict[str, AttributeMetadata] = {}
        # attribute names seen on records whose type is still unknown (only nulls so far)
        self.untyped: set = set()

    def knows(self, attribute: str) -> bool:
        return attribute in self.attributes or attribute in self.untyped


class MetadataProvider:
    """
    Entity and attribute metadata for the simulator.

    Entities can be declared up front with typed attributes, or learned from
    the records the store is initialized with; a learned entity knows the
    attributes it has seen and their inferred types.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entities: Dict[str, _EntityInfo] = {}
        self._relationships: Dict[str, Relationship] = {}

    # ---- registration

    def register_entity(
        self,
        logical_name: str,
        attributes: Optional[Mapping[str, AttributeSpec]] = None,
        primary_id_attribute: Optional[str] = None,
    ) -> None:
        key = logical_name.lower()
        with self._lock:
            info = self._entities.get(key)
            if info is None or not info.declared:
                info = _EntityInfo(key, declared=True)
                self._entities[key] = info
            pk = (primary_id_attribute or f"{key}id").lower()
            info.attributes.setdefault(pk, AttributeMetadata(pk, AttributeType.UNIQUEIDENTIFIER))
            for name, spec in (attributes or {}).items():
                info.attributes[name.lower()] = _as_metadata(name.lower(), spec)
        log.debug("Registered entity %s with %d attributes", key, len(info.attributes))

    def register_relationship(self, relationship: Relationship) -> None:
        with self._lock:
            self._relationships[relationship.name] = relationship

    def observe(self, record: Record) -> None:
        """Learn an entity and its attribute types from a stored record."""
        key = record.logical_name.lower()
        with self._lock:
            info = self._entities.get(key)
            if info is None:
                info = _EntityInfo(key, declared=False)
                pk = f"{key}id"
                info.attributes[pk] = AttributeMetadata(pk, AttributeType.UNIQUEIDENTIFIER)
                self._entities[key] = info
            if info.declared:
                return
            for name, value in record.attributes.items():
                name = name.lower()
                if name in info.attributes:
                    continue
                inferred = infer_type(value)
                if inferred is None:
                    info.untyped.add(name)
                else:
                    info.untyped.discard(name)
                    info.attributes[name] = AttributeMetadata(name, inferred)

    # ---- lookups

    def has_entity(self, logical_name: str) -> bool:
        return (logical_name or "").lower() in self._entities

    def require_entity(self, logical_name: str) -> None:
        if not self.has_entity(logical_name):
            raise UnknownEntity(logical_name)

    def is_declared(self, logical_name: str) -> bool:
        """True when the entity was registered explicitly rather than learned from records."""
        info = self._entities.get((logical_name or "").lower())
        return info is not None and info.declared

    def has_attribute(self, logical_name: str, attribute: str) -> bool:
        info = self._entities.get((logical_name or "").lower())
        if info is None:
            raise UnknownEntity(logical_name)
        return info.knows((attribute or "").lower())

    def get_attribute_metadata(self, logical_name: str, attribute: str) -> Optional[AttributeMetadata]:
        info = self._entities.get((logical_name or "").lower())
        if info is None:
            raise UnknownEntity(logical_name)
        return info.attributes.get((attribute or "").lower())

    def get_attribute_type(self, logical_name: str, attribute: str, strict: bool = False) -> Optional[AttributeType]:
        """Declared or inferred type, ``None`` when unknown. ``strict`` turns unknown into UnknownAttribute."""
        meta = self.get_attribute_metadata(logical_name, attribute)
        if meta is None:
            if strict and not self.has_attribute(logical_name, attribute):
                raise UnknownAttribute(logical_name, attribute)
            return None
        return meta.attribute_type

    def get_date_behavior(self, logical_name: str, attribute: str) -> Optional[DateTimeBehavior]:
        info = self._entities.get((logical_name or "").lower())
        if info is None:
            return None
        meta = info.attributes.get((attribute or "").lower())
        return meta.date_behavior if meta is not None else None

    def get_relationship(self, name: str) -> Relationship:
        found = self._relationships.get(name)
        if found is None:
            raise InvalidArgument(f"relationship {name!r} is not registered")
        return found

    def relationship_link(self, name: str, from_entity: str, **options: Any) -> LinkEntity:
        """
        Build the join for a registered relationship, starting at ``from_entity``.

        Either side of a one-to-many relationship may be the parent. ``options``
        are passed to LinkEntity unchanged.
        """
        rel = self.get_relationship(name)
        parent = from_entity.lower()
        if parent == rel.referenced_entity.lower():
            return LinkEntity(
                parent, rel.referenced_attribute, rel.referencing_entity.lower(), rel.referencing_attribute, **options
            )
        if parent == rel.referencing_entity.lower():
            return LinkEntity(
                parent, rel.referencing_attribute, rel.referenced_entity.lower(), rel.referenced_attribute, **options
            )
        raise InvalidArgument(f"relationship {name!r} does not involve {from_entity}")


__all__ = ["MetadataProvider", "infer_type"]
