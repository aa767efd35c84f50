"""
Vertices: the runtime values a query walks over.

- RecordVertex: one ValidatedRecord, typed `p_<kind>`
- PathVertex: a filesystem path, typed File, Directory or Path (neither)
- DocumentVertex: a document fetched from the document-management service

Property values are query values: str, int, Decimal, bool or None.
Datetimes render as ISO 8601 strings, durations in the compact grammar,
links as the target id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..paperless import PaperlessDocument
from ..records.validate import ValidatedRecord
from ..schema.types import Duration, RecordRef
from .schema import DIRECTORY_TYPE, DOCUMENT_TYPE, FILE_TYPE, PATH_INTERFACE


def query_value(value: Any) -> Any:
    """Convert a typed record value to its query representation."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, RecordRef):
        return value.id
    if isinstance(value, Duration):
        return str(value)
    return value


class Vertex:
    """Base class; subclasses expose `typename` and `property()`."""

    typename: str = ""

    def property(self, name: str, field_name: Optional[str] = None) -> Any:
        raise NotImplementedError


@dataclass(frozen=True, eq=False)
class RecordVertex(Vertex):
    record: ValidatedRecord
    typename: str

    def property(self, name: str, field_name: Optional[str] = None) -> Any:
        if name == "_kind":
            return self.record.kind
        if name == "_at":
            return self.record.date.isoformat()
        if name == "_id":
            return self.record.id
        return query_value(self.record.get(field_name or name))

    def __repr__(self) -> str:
        return f"RecordVertex({self.typename}, {self.record.kind}:{self.record.id})"


@dataclass(frozen=True, eq=False)
class PathVertex(Vertex):
    """A path; its type is decided by what exists on disk."""

    path: Path

    @property
    def typename(self) -> str:
        if self.path.is_dir():
            return DIRECTORY_TYPE
        if self.path.is_file():
            return FILE_TYPE
        return PATH_INTERFACE

    def property(self, name: str, field_name: Optional[str] = None) -> Any:
        if name == "path":
            return str(self.path)
        if name == "exists":
            return self.path.exists()
        if name == "basename":
            return self.path.name or None
        if name == "extension":
            return self.path.suffix[1:] or None
        return None


@dataclass(frozen=True, eq=False)
class DocumentVertex(Vertex):
    document: PaperlessDocument
    typename: str = DOCUMENT_TYPE

    def property(self, name: str, field_name: Optional[str] = None) -> Any:
        return getattr(self.document, name, None)
