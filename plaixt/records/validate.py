"""
Record validation against a resolved definition version.

This module turns untyped RawRecords into ValidatedRecords:
- Field presence (required vs optional)
- Literal coercion per field type
- Unknown-field rejection with helpful suggestions

Invariants:
    - Validation is deterministic and never mutates the RawRecord
    - Absent optional fields stay absent; nothing is defaulted
    - A field not declared by the resolved version is always an error,
      even when another version of the kind declares it
    - LinkTo values become RecordRefs; they are never dereferenced here
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from difflib import get_close_matches
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ..errors import MissingRequiredField, TypeMismatch, UnknownField, ValidationError
from ..lexical import quote_literal
from ..schema.types import (
    DefinitionVersion,
    Duration,
    FieldKind,
    FieldType,
    RecordRef,
    format_date,
    parse_date,
)
from .parser import RawField, RawRecord

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_DECIMAL_RE = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)")
_ID_RE = re.compile(r'[^\s@":]+')


class _Mismatch(ValueError):
    """Coercion failure; the reason becomes part of the TypeMismatch."""


def _to_decimal(text: str) -> Decimal:
    if not _DECIMAL_RE.fullmatch(text):
        raise _Mismatch("use a dot as the decimal separator, no grouping")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise _Mismatch("not a decimal number") from None


def coerce_value(field_type: FieldType, literal: str) -> Any:
    """Coerce one literal to the Python value of `field_type`.

    Args:
        field_type: Declared type of the field
        literal: Literal text from the record file

    Returns:
        str, int, Decimal, Duration, datetime or RecordRef

    Raises:
        ValueError: If the literal is not a valid value of the type
    """
    kind = field_type.kind

    if kind == FieldKind.STRING:
        return literal

    if kind == FieldKind.INTEGER:
        if not _INTEGER_RE.fullmatch(literal):
            raise _Mismatch("not an integer")
        return int(literal)

    if kind == FieldKind.DECIMAL:
        return _to_decimal(literal)

    if kind == FieldKind.CURRENCY:
        value = _to_decimal(literal)
        exponent = value.as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            raise _Mismatch("currency allows at most two decimal places")
        return value

    if kind == FieldKind.DURATION:
        try:
            return Duration.parse(literal)
        except ValueError as e:
            raise _Mismatch(str(e)) from None

    if kind == FieldKind.DATETIME:
        try:
            return parse_date(literal)
        except ValueError as e:
            raise _Mismatch(str(e)) from None

    if kind == FieldKind.ONE_OF:
        if literal not in field_type.options:
            raise _Mismatch("expected one of: " + ", ".join(field_type.options))
        return literal

    if kind == FieldKind.PATH:
        if not literal.strip():
            raise _Mismatch("path must not be empty")
        return literal

    if kind == FieldKind.PAPERLESS:
        if not _INTEGER_RE.fullmatch(literal) or int(literal) <= 0:
            raise _Mismatch("document id must be a positive integer")
        return int(literal)

    if kind == FieldKind.LINK:
        record_id = literal
        if ":" in literal:
            prefix, _, record_id = literal.partition(":")
            if prefix != field_type.link_kind:
                raise _Mismatch(f"link points to kind '{prefix}', not '{field_type.link_kind}'")
        if not _ID_RE.fullmatch(record_id):
            raise _Mismatch("not a record id")
        return RecordRef(kind=field_type.link_kind, id=record_id)

    raise _Mismatch(f"unsupported field type {kind.value}")


def render_value(field_type: FieldType, value: Any) -> str:
    """Render a typed value back to literal text (inverse of coerce_value)."""
    kind = field_type.kind
    if kind == FieldKind.DATETIME:
        return format_date(value)
    if kind == FieldKind.LINK:
        return value.id
    return str(value)


@dataclass(frozen=True)
class ValidatedRecord:
    """A RawRecord bound to the DefinitionVersion that governs it.

    Attributes:
        raw: The record as parsed
        version: The resolved definition version
        values: Typed values of the present fields, in definition order
    """

    raw: RawRecord
    version: DefinitionVersion
    values: Mapping[str, Any]

    @property
    def kind(self) -> str:
        return self.raw.kind

    @property
    def id(self) -> Optional[str]:
        return self.raw.id

    @property
    def date(self) -> datetime:
        return self.raw.date

    @property
    def effective_date(self) -> datetime:
        return self.raw.effective_date

    @property
    def source(self) -> Optional[str]:
        return self.raw.source

    @property
    def line(self) -> Optional[int]:
        return self.raw.line

    @property
    def ref(self) -> Optional[RecordRef]:
        """Reference to this record, if it has an id."""
        if self.raw.id is None:
            return None
        return RecordRef(kind=self.raw.kind, id=self.raw.id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.values

    def links(self) -> Iterator[tuple[str, RecordRef]]:
        """Yield (field name, RecordRef) for every present LinkTo field."""
        for f in self.version.fields:
            if f.type.kind == FieldKind.LINK and f.name in self.values:
                yield f.name, self.values[f.name]

    def to_raw(self) -> RawRecord:
        """Re-serialize typed values into a RawRecord.

        Fields come out in definition order and literals in canonical form
        (`2w` becomes `14d`, `Store:S` becomes `S`), so the raw text may
        differ. Validating the result against the same version gives back
        equal typed values.
        """
        fields = tuple(
            RawField(name=f.name, value=render_value(f.type, self.values[f.name]))
            for f in self.version.fields
            if f.name in self.values
        )
        return RawRecord(
            kind=self.raw.kind,
            date=self.raw.date,
            override=self.raw.override,
            id=self.raw.id,
            fields=fields,
            source=self.raw.source,
            line=self.raw.line,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (values rendered as literals)."""
        result: Dict[str, Any] = {
            "_kind": self.kind,
            "_at": self.date.isoformat(),
            "_id": self.id,
        }
        for f in self.version.fields:
            if f.name in self.values:
                value = self.values[f.name]
                if f.type.kind == FieldKind.INTEGER or f.type.kind == FieldKind.PAPERLESS:
                    result[f.name] = value
                elif f.type.kind == FieldKind.DATETIME:
                    result[f.name] = value.isoformat()
                else:
                    result[f.name] = render_value(f.type, value)
        return result

    def __str__(self) -> str:
        head = self.kind if self.id is None else f"{self.kind}:{self.id}"
        body = ", ".join(
            f"{f.name}={quote_literal(render_value(f.type, self.values[f.name]))}"
            for f in self.version.fields
            if f.name in self.values
        )
        return f"{head} {format_date(self.date)} {{{body}}}"


def _validate(raw: RawRecord, version: DefinitionVersion, stop_early: bool):
    errors: List[ValidationError] = []
    values: Dict[str, Any] = {}

    for field_def in version.fields:
        raw_field = raw.get(field_def.name)
        if raw_field is None:
            if field_def.type.required:
                errors.append(
                    MissingRequiredField(
                        raw.kind, field_def.name, source=raw.source, line=raw.line
                    )
                )
                if stop_early:
                    return values, errors
            continue

        try:
            values[field_def.name] = coerce_value(field_def.type, raw_field.value)
        except ValueError as e:
            errors.append(
                TypeMismatch(
                    raw.kind,
                    field_def.name,
                    expected=field_def.type.base_token(),
                    literal=raw_field.value,
                    reason=str(e),
                    source=raw.source,
                    line=raw_field.line or raw.line,
                )
            )
            if stop_early:
                return values, errors

    known = version.get_field_names()
    for raw_field in raw.fields:
        if version.get_field(raw_field.name) is None:
            suggestions = get_close_matches(raw_field.name, known, n=3)
            errors.append(
                UnknownField(
                    raw.kind,
                    raw_field.name,
                    suggestions=suggestions,
                    source=raw.source,
                    line=raw_field.line or raw.line,
                )
            )
            if stop_early:
                return values, errors

    return values, errors


def collect_validation_errors(raw: RawRecord, version: DefinitionVersion) -> List[ValidationError]:
    """Validate `raw` against `version` and return every problem found.

    Returns:
        List of validation errors (empty if the record is valid)
    """
    _, errors = _validate(raw, version, stop_early=False)
    return errors


def validate_record(raw: RawRecord, version: DefinitionVersion) -> ValidatedRecord:
    """Validate a parsed record against its resolved definition version.

    Declared fields are checked in definition order, then undeclared
    fields in record order; the first problem is raised.

    Args:
        raw: The parsed record
        version: Version returned by the resolver for the record

    Returns:
        ValidatedRecord holding typed values

    Raises:
        MissingRequiredField: If a non-optional field is absent
        TypeMismatch: If a literal cannot be coerced
        UnknownField: If the record assigns an undeclared field
    """
    values, errors = _validate(raw, version, stop_early=True)
    if errors:
        raise errors[0]
    return ValidatedRecord(raw=raw, version=version, values=MappingProxyType(values))
