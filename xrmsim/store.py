from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from .date_behavior import DateBehaviorResolver
from .errors import InvalidArgument, RecordNotFound, UnknownEntity
from .helpers import coerce_identifier
from .metadata import MetadataProvider
from .model import ColumnSet, Record

log = logging.getLogger(__name__)


def primary_id_attribute(logical_name: str) -> str:
    return f"{logical_name}id"


class ReadWriteLock:
    """Many readers or one writer. Waiting writers hold off new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Partition:
    def __init__(self, logical_name: str):
        self.logical_name = logical_name
        self.lock = ReadWriteLock()
        self.records: "OrderedDict[uuid.UUID, Record]" = OrderedDict()


class RecordStore:
    """
    In-memory record store, one partition per logical name.

    Reads hand out copies taken under the partition's read lock, writes hold
    the partition exclusively, so a query never sees half of a write. Date
    attributes are normalized on the way in according to their behaviour.
    """

    def __init__(
        self,
        metadata: Optional[MetadataProvider] = None,
        date_behaviors: Optional[DateBehaviorResolver] = None,
    ):
        self.metadata = metadata if metadata is not None else MetadataProvider()
        if date_behaviors is None:
            date_behaviors = DateBehaviorResolver(metadata=self.metadata)
        self.date_behaviors = date_behaviors
        self._partitions: Dict[str, _Partition] = {}
        self._partitions_lock = threading.Lock()

    def _partition(self, logical_name: str, create: bool = False) -> Optional[_Partition]:
        key = logical_name.lower()
        with self._partitions_lock:
            part = self._partitions.get(key)
            if part is None and create:
                part = _Partition(key)
                self._partitions[key] = part
            return part

    def _prepare(self, record: Record) -> Record:
        stored = record.copy()
        stored.logical_name = stored.logical_name.lower()
        stored.attributes = {k.lower(): v for k, v in stored.attributes.items()}
        if stored.id is None:
            stored.id = uuid.uuid4()
        stored.id = coerce_identifier(stored.id)
        stored.attributes[primary_id_attribute(stored.logical_name)] = stored.id
        self.date_behaviors.normalize_record(stored)
        return stored

    # ---- writes

    def initialize(self, records: Iterable[Record]) -> None:
        """Replace the whole store content with ``records``.

        The new partitions are built on the side and swapped in at once; a
        failure leaves the previous content untouched.
        """
        prepared = [self._prepare(r) for r in records]
        partitions: Dict[str, _Partition] = {}
        for record in prepared:
            part = partitions.get(record.logical_name)
            if part is None:
                part = partitions[record.logical_name] = _Partition(record.logical_name)
            if record.id in part.records:
                raise InvalidArgument(f"{record.logical_name} with id {record.id} appears twice")
            part.records[record.id] = record
        for record in prepared:
            self.metadata.observe(record)
        with self._partitions_lock:
            self._partitions = partitions
        log.info("Store initialized with %d records", len(prepared))

    def create(self, record: Record) -> uuid.UUID:
        stored = self._prepare(record)
        part = self._partition(stored.logical_name, create=True)
        with part.lock.write():
            if stored.id in part.records:
                raise InvalidArgument(f"{stored.logical_name} with id {stored.id} already exists")
            part.records[stored.id] = stored
        self.metadata.observe(stored)
        log.debug("Created %s %s", stored.logical_name, stored.id)
        return stored.id

    def update(self, record: Record) -> None:
        """Merge the attributes of ``record`` into the stored one."""
        changes = self._prepare(record)
        part = self._partition(changes.logical_name)
        if part is None:
            raise RecordNotFound(changes.logical_name, changes.id)
        with part.lock.write():
            current = part.records.get(changes.id)
            if current is None:
                raise RecordNotFound(changes.logical_name, changes.id)
            merged = current.copy()
            merged.attributes.update(changes.attributes)
            part.records[changes.id] = merged
        self.metadata.observe(changes)
        log.debug("Updated %s %s", changes.logical_name, changes.id)

    def delete(self, logical_name: str, record_id) -> None:
        rid = coerce_identifier(record_id)
        part = self._partition(logical_name)
        if part is None:
            raise RecordNotFound(logical_name, rid)
        with part.lock.write():
            if part.records.pop(rid, None) is None:
                raise RecordNotFound(logical_name, rid)
        log.debug("Deleted %s %s", logical_name, rid)

    # ---- reads

    def retrieve(self, logical_name: str, record_id, columns: Optional[ColumnSet] = None) -> Record:
        rid = coerce_identifier(record_id)
        part = self._partition(logical_name)
        if part is None:
            if not self.metadata.has_entity(logical_name):
                raise UnknownEntity(logical_name)
            raise RecordNotFound(logical_name, rid)
        with part.lock.read():
            found = part.records.get(rid)
            if found is None:
                raise RecordNotFound(logical_name, rid)
            copy = found.copy()
        if columns is None or columns.all_columns:
            return copy
        keep = {c.lower() for c in columns.columns}
        copy.attributes = {k: v for k, v in copy.attributes.items() if k in keep}
        return copy

    def get_all(self, logical_name: str) -> List[Record]:
        """Snapshot of every record of one entity, in insertion order."""
        part = self._partition(logical_name)
        if part is None:
            if not self.metadata.has_entity(logical_name):
                raise UnknownEntity(logical_name)
            return []
        with part.lock.read():
            return [r.copy() for r in part.records.values()]

    def count(self, logical_name: str) -> int:
        part = self._partition(logical_name)
        if part is None:
            return 0
        with part.lock.read():
            return len(part.records)


__all__ = ["RecordStore", "ReadWriteLock", "primary_id_attribute"]
