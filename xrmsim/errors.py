# xrmsim/errors.py
from __future__ import annotations

from enum import Enum
from typing import Optional


class QueryError(Exception):
    """Base class for every failure raised while translating or evaluating a query."""


class ParseError(QueryError):
    """The query markup is not well formed or does not follow the fetch grammar."""


class MissingKind(str, Enum):
    UNSUPPORTED = "unsupported"
    PARTIAL = "partial"


class MissingFeatureError(QueryError):
    """A recognized construct that the simulator does not implement (or only partly implements).

    Only the kind and the subject are carried so callers can decide how to
    present the gap.
    """

    def __init__(self, kind: MissingKind, subject: str, detail: Optional[str] = None):
        self.kind = MissingKind(kind)
        self.subject = subject
        self.detail = detail
        message = f"{self.kind.value}: {subject}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UnsupportedOperator(MissingFeatureError):
    def __init__(self, operator_name: str, detail: Optional[str] = None):
        super().__init__(MissingKind.UNSUPPORTED, operator_name, detail)
        self.operator_name = operator_name


class TypeMismatch(QueryError):
    def __init__(self, attribute: str, expected: str, actual: str):
        self.attribute = attribute
        self.expected = expected
        self.actual = actual
        super().__init__(f"attribute {attribute!r} is {actual}, operator expects {expected}")


class UnknownEntity(QueryError):
    def __init__(self, logical_name: str):
        self.logical_name = logical_name
        super().__init__(f"The entity with a name = '{logical_name}' was not found in the MetadataCache.")


class UnknownAttribute(QueryError):
    def __init__(self, logical_name: str, attribute: str):
        self.logical_name = logical_name
        self.attribute = attribute
        super().__init__(f"The attribute {attribute} does not exist on this entity ({logical_name}).")


class InvalidArgument(QueryError):
    """Wrong number of values, bad alias or an out of range literal."""


class RecordNotFound(QueryError):
    def __init__(self, logical_name: str, record_id):
        self.logical_name = logical_name
        self.record_id = record_id
        super().__init__(f"{logical_name} With Id = {record_id} Does Not Exist")


__all__ = [
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
