"""
Record files: parsing into untyped RawRecords and formatting them back.

A record file holds any mix of kinds:

    purchase 30-10-2024
        store <- FarmerBernard
        name <- "Organic apples"
        count <- 3

    store:FarmerBernard 01-01-2024
        name <- "Farmer Bernard"

    purchase @15-11-2024 05-11-2024
        ...

Header: `kind[:id] [@override-date] date`. Each following indented line is
`field <- literal`, where a literal is a bare token or a double-quoted
string. A record ends at a blank line, a dedent or end of file.

Invariants:
    - One malformed record never aborts the file: it is reported and
      parsing resumes at the next unindented line
    - Field order is preserved
    - parse_records(format_record(r)) yields a record equal to r
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional

from ..errors import (
    DuplicateFieldInRecord,
    MalformedFieldLine,
    MalformedHeader,
    StructuralParseError,
)
from ..lexical import parse_literal, quote_literal, strip_comments
from ..schema.types import format_date, parse_date

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".plrecs"

_HEADER_RE = re.compile(
    r"(?P<kind>[A-Za-z_][A-Za-z0-9_-]*)"
    r"(?::(?P<id>[^\s@\":]+))?"
    r"(?:\s+@(?P<override>\S+))?"
    r"\s+(?P<date>\S+)"
)
_FIELD_RE = re.compile(r"(?P<name>[A-Za-z_][A-Za-z0-9_-]*)\s*<-\s*(?P<literal>.*)")

ErrorCallback = Callable[[StructuralParseError], None]


@dataclass(frozen=True)
class RawField:
    """One untyped field assignment from a record file.

    Attributes:
        name: Field name
        value: Literal text, quotes removed and escapes resolved
        line: Source line (location only, not part of equality)
    """

    name: str
    value: str
    line: Optional[int] = dataclass_field(default=None, compare=False)


@dataclass(frozen=True)
class RawRecord:
    """A parsed but unvalidated record.

    Attributes:
        kind: Record kind
        date: Occurrence date
        override: Explicit as-of date forcing another definition version
        id: Optional id, unique per kind
        fields: Field assignments in file order
        source: File the record came from (not part of equality)
        line: Header line (not part of equality)
    """

    kind: str
    date: datetime
    override: Optional[datetime] = None
    id: Optional[str] = None
    fields: tuple[RawField, ...] = dataclass_field(default_factory=tuple)
    source: Optional[str] = dataclass_field(default=None, compare=False)
    line: Optional[int] = dataclass_field(default=None, compare=False)

    @property
    def effective_date(self) -> datetime:
        """The date used to resolve the definition version."""
        return self.override if self.override is not None else self.date

    def get(self, name: str) -> Optional[RawField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


def _report(error: StructuralParseError, on_error: Optional[ErrorCallback]) -> None:
    if on_error is not None:
        on_error(error)
    else:
        logger.warning(f"Skipping malformed record: {error}")


def _parse_header(line: str, lineno: int, source: Optional[str]):
    match = _HEADER_RE.fullmatch(line.strip())
    if not match:
        raise MalformedHeader(
            f"Expected 'kind[:id] [@override-date] date', got '{line.strip()}'",
            source=source,
            line=lineno,
        )

    def date_of(group: str) -> Optional[datetime]:
        text = match.group(group)
        if text is None:
            return None
        try:
            return parse_date(text)
        except ValueError:
            raise MalformedHeader(
                f"Malformed date '{text}' in record header, expected DD-MM-YYYY[THH:MM]",
                source=source,
                line=lineno,
            ) from None

    return match.group("kind"), match.group("id"), date_of("override"), date_of("date")


def _parse_record(
    header: str,
    header_lineno: int,
    body: list[tuple[int, str]],
    source: Optional[str],
) -> RawRecord:
    kind, record_id, override, date = _parse_header(header, header_lineno, source)

    fields: list[RawField] = []
    seen: set[str] = set()
    for lineno, line in body:
        match = _FIELD_RE.fullmatch(line.strip())
        if not match:
            raise MalformedFieldLine(
                f"Expected 'field <- value', got '{line.strip()}'",
                source=source,
                line=lineno,
            )
        name = match.group("name")
        try:
            value = parse_literal(match.group("literal"))
        except ValueError as e:
            raise MalformedFieldLine(
                f"Invalid value for '{name}': {e}", source=source, line=lineno
            ) from None
        if name in seen:
            raise DuplicateFieldInRecord(name, source=source, line=lineno)
        seen.add(name)
        fields.append(RawField(name=name, value=value, line=lineno))

    return RawRecord(
        kind=kind,
        date=date,
        override=override,
        id=record_id,
        fields=tuple(fields),
        source=source,
        line=header_lineno,
    )


def parse_records(
    text: str,
    source: Optional[str] = None,
    on_error: Optional[ErrorCallback] = None,
) -> Iterator[RawRecord]:
    """Lazily parse the records in one record file.

    Args:
        text: File contents
        source: File path, for error locations
        on_error: Called with each structural error; errors are logged
            when no callback is given

    Yields:
        RawRecord for every well-formed record, in file order
    """
    lines = strip_comments(text).splitlines()
    total = len(lines)
    i = 0

    while i < total:
        line = lines[i]
        if not line.strip():
            i += 1
            continue

        j = i + 1
        while j < total and lines[j].strip() and lines[j][0] in " \t":
            j += 1

        if line[0] in " \t":
            _report(
                MalformedFieldLine(
                    "Indented line without a record header", source=source, line=i + 1
                ),
                on_error,
            )
            i = j
            continue

        body = [(n + 1, lines[n]) for n in range(i + 1, j)]
        try:
            record = _parse_record(line, i + 1, body, source)
        except StructuralParseError as e:
            _report(e, on_error)
        else:
            yield record
        i = j


def format_record(record: RawRecord, indent: str = "    ") -> str:
    """Render a RawRecord in the record file grammar."""
    header = record.kind
    if record.id is not None:
        header += f":{record.id}"
    if record.override is not None:
        header += f" @{format_date(record.override)}"
    header += f" {format_date(record.date)}"

    lines = [header]
    lines.extend(f"{indent}{f.name} <- {quote_literal(f.value)}" for f in record.fields)
    return "\n".join(lines) + "\n"


def format_records(records: Iterable[RawRecord]) -> str:
    """Render several records separated by blank lines."""
    return "\n".join(format_record(r) for r in records)
