"""
Core type definitions for the plaixt schema system.

This module defines the foundational types of the definition model:
- FieldKind / FieldType: the closed set of field types and their modifiers
- Field: one named, typed field of a definition version
- DefinitionVersion: one dated snapshot of a kind's fields
- Definition: the declaration-ordered history of a kind
- Duration, RecordRef: typed values produced by validation
- parse_date / format_date: the shared date grammar

Invariants:
    - Field names are unique within a DefinitionVersion
    - Versions are kept in declaration order; date order is derived
    - All types here are immutable once constructed
    - LinkTo is a (kind, id) lookup value, never an object reference

How to change safely:
    - Add new primitive kinds to FieldKind and teach records/validate.py
      and query/schema.py about them in the same change
    - Never reorder a Definition's versions, the tie-break depends on it

Example:
    >>> purchase = DefinitionVersion(
    ...     kind="purchase",
    ...     live_from=parse_date("26-10-2024"),
    ...     fields=(
    ...         Field("store", FieldType.parse("LinkTo[Store]")),
    ...         Field("count", FieldType.parse("integer")),
    ...     ),
    ... )
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..errors import UnknownTypeToken
from ..lexical import parse_literal, quote_string


class FieldKind(Enum):
    """Supported field types in a definition.

    These map to typed record values and to query vertex properties.
    """

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    CURRENCY = "currency"  # Decimal with at most two fractional digits
    DURATION = "duration"  # Compact grammar: 90d, 3mo, 1y6mo
    DATETIME = "datetime"
    PATH = "path"  # Filesystem path, traversable to Path/File/Directory
    PAPERLESS = "paperless"  # External document id
    LINK = "LinkTo"  # Reference to another kind's record
    ONE_OF = "oneOf"  # One of a fixed set of strings

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert a primitive type token to FieldKind (case-insensitive).

        Raises:
            ValueError: If value is not a primitive type token
        """
        lowered = value.lower()
        for kind in cls:
            if kind not in _PARAMETRIZED and kind.value == lowered:
                return kind
        valid = [k.value for k in cls if k not in _PARAMETRIZED]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")


_PARAMETRIZED = (FieldKind.LINK, FieldKind.ONE_OF)

_LINK_RE = re.compile(r"^LinkTo\[\s*([^\s\[\]]+)\s*\]$")
_ONE_OF_RE = re.compile(r"^oneOf\[(.*)\]$")
_OPTION_RE = re.compile(r'\s*("(?:[^"\\]|\\.)*"|[^\s",\[\]]+)\s*')


def _parse_options(body: str) -> tuple[str, ...]:
    """Parse the comma-separated literals of `oneOf[...]`.

    Raises:
        ValueError: If the list is empty, malformed or repeats an option
    """
    options: list[str] = []
    pos = 0
    while True:
        match = _OPTION_RE.match(body, pos)
        if not match:
            raise ValueError(f"malformed option list '{body}'")
        options.append(parse_literal(match.group(1)))
        pos = match.end()
        if pos == len(body):
            break
        if body[pos] != ",":
            raise ValueError(f"malformed option list '{body}'")
        pos += 1
    if len(set(options)) != len(options):
        raise ValueError(f"repeated option in '{body}'")
    return tuple(options)


@dataclass(frozen=True)
class FieldType:
    """A field's type: a FieldKind plus the optional/LinkTo/oneOf modifiers.

    Attributes:
        kind: The underlying kind
        optional: Whether the field may be absent
        link_kind: Target kind if kind is LINK
        options: Allowed values if kind is ONE_OF, in declaration order
    """

    kind: FieldKind
    optional: bool = False
    link_kind: str | None = None
    options: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.kind == FieldKind.LINK and not self.link_kind:
            raise ValueError("link_kind required for LinkTo fields")
        if self.kind != FieldKind.LINK and self.link_kind is not None:
            raise ValueError("link_kind is only valid for LinkTo fields")
        if self.kind == FieldKind.ONE_OF and not self.options:
            raise ValueError("options required for oneOf fields")
        if self.kind != FieldKind.ONE_OF and self.options is not None:
            raise ValueError("options are only valid for oneOf fields")

    @classmethod
    def parse(cls, token: str) -> FieldType:
        """Parse a type token: `type`, `LinkTo[Kind]` or `oneOf["a", "b"]`, each
        optionally followed by `?`.

        Raises:
            UnknownTypeToken: If the token is not a known type
        """
        text = token.strip()
        optional = text.endswith("?")
        if optional:
            text = text[:-1].rstrip()

        match = _LINK_RE.match(text)
        if match:
            return cls(FieldKind.LINK, optional=optional, link_kind=match.group(1))

        match = _ONE_OF_RE.match(text)
        if match:
            try:
                options = _parse_options(match.group(1))
            except ValueError:
                raise UnknownTypeToken(token.strip()) from None
            return cls(FieldKind.ONE_OF, optional=optional, options=options)

        try:
            return cls(FieldKind.from_str(text), optional=optional)
        except ValueError:
            raise UnknownTypeToken(token.strip()) from None

    @property
    def required(self) -> bool:
        return not self.optional

    @property
    def is_edge(self) -> bool:
        """Whether values of this type can be traversed as query edges."""
        return self.kind in (FieldKind.LINK, FieldKind.PATH, FieldKind.PAPERLESS)

    def base_token(self) -> str:
        if self.kind == FieldKind.LINK:
            return f"LinkTo[{self.link_kind}]"
        if self.kind == FieldKind.ONE_OF:
            return "oneOf[" + ", ".join(quote_string(o) for o in self.options) + "]"
        return self.kind.value

    def __str__(self) -> str:
        return self.base_token() + ("?" if self.optional else "")


@dataclass(frozen=True)
class Field:
    """Definition of a single field within a definition version.

    Attributes:
        name: Field name, unique within its version
        type: The field's type
        line: Declaring line in the definition file (not part of equality)
    """

    name: str
    type: FieldType
    line: int | None = dataclass_field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.name} -> {self.type}"


@dataclass(frozen=True)
class DefinitionVersion:
    """One dated snapshot of a kind's schema.

    Attributes:
        kind: Kind this version belongs to
        live_from: First moment (inclusive) the version applies
        fields: Ordered field definitions
        check_with: Name of the check module to run on records, if any
        position: Declaration index within the definition file
        line: Line of the `define` header (not part of equality)

    Invariants:
        - Field names are unique
        - Immutable once parsed
    """

    kind: str
    live_from: datetime
    fields: tuple[Field, ...] = dataclass_field(default_factory=tuple)
    check_with: str | None = None
    position: int = 0
    line: int | None = dataclass_field(default=None, compare=False)

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field name in definition of '{self.kind}'")

    def get_field(self, name: str) -> Field | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get list of all field names, in declaration order."""
        return [f.name for f in self.fields]

    def get_required_fields(self) -> list[Field]:
        """Get list of required fields."""
        return [f for f in self.fields if f.type.required]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "live_from": self.live_from.isoformat(),
            "position": self.position,
            "fields": {f.name: str(f.type) for f in self.fields},
        }
        if self.check_with:
            result["check_with"] = self.check_with
        return result


@dataclass(frozen=True)
class Definition:
    """The full version history of a kind's schema.

    Attributes:
        kind: The kind name
        versions: Versions in declaration order (not date order)
        source: Path of the definition file, if loaded from disk
    """

    kind: str
    versions: tuple[DefinitionVersion, ...] = dataclass_field(default_factory=tuple)
    source: str | None = dataclass_field(default=None, compare=False)

    def all_fields(self) -> list[Field]:
        """Union of every version's fields, first declaration wins."""
        seen: dict[str, Field] = {}
        for version in self.versions:
            for f in version.fields:
                seen.setdefault(f.name, f)
        return list(seen.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "versions": [v.to_dict() for v in self.versions],
        }


# =============================================================================
# Typed values
# =============================================================================


@dataclass(frozen=True)
class RecordRef:
    """A typed reference to another record: (kind, id).

    Dereferencing is an explicit lookup done by consumers, so a dangling
    reference is representable and harmless.
    """

    kind: str
    id: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


_DURATION_RE = re.compile(r"-?(?:[0-9]+(?:y|mo|min|w|d|h|s))+")
_DURATION_PART_RE = re.compile(r"([0-9]+)(y|mo|min|w|d|h|s)")


@dataclass(frozen=True)
class Duration:
    """A calendar-aware span of time.

    Months are kept apart from days because their length varies; adding a
    Duration to a datetime clamps the day to the end of the target month.

    Grammar: one or more `<integer><unit>` parts, units `y`, `mo`, `w`, `d`,
    `h`, `min`, `s`, with an optional leading `-`. Examples: `90d`, `3mo`,
    `1y6mo`, `2w`, `30min`, `-1mo`.
    """

    months: int = 0
    days: int = 0
    seconds: int = 0

    @classmethod
    def parse(cls, text: str) -> Duration:
        """Parse the compact duration grammar.

        Raises:
            ValueError: If text does not match the grammar
        """
        if not _DURATION_RE.fullmatch(text):
            raise ValueError(f"'{text}' is not a duration (e.g. 90d, 3mo, 1y6mo)")
        months = days = seconds = 0
        for amount_text, unit in _DURATION_PART_RE.findall(text):
            amount = int(amount_text)
            if unit == "y":
                months += 12 * amount
            elif unit == "mo":
                months += amount
            elif unit == "w":
                days += 7 * amount
            elif unit == "d":
                days += amount
            elif unit == "h":
                seconds += 3600 * amount
            elif unit == "min":
                seconds += 60 * amount
            else:
                seconds += amount
        if text.startswith("-"):
            return cls(months=-months, days=-days, seconds=-seconds)
        return cls(months=months, days=days, seconds=seconds)

    def is_zero(self) -> bool:
        return not (self.months or self.days or self.seconds)

    def is_negative(self) -> bool:
        return self.months < 0 or self.days < 0 or self.seconds < 0

    def __neg__(self) -> Duration:
        return Duration(months=-self.months, days=-self.days, seconds=-self.seconds)

    def add_to(self, moment: datetime) -> datetime:
        """Return `moment` shifted forward by this duration."""
        month_index = moment.month - 1 + self.months
        year = moment.year + month_index // 12
        month = month_index % 12 + 1
        day = min(moment.day, calendar.monthrange(year, month)[1])
        shifted = moment.replace(year=year, month=month, day=day)
        return shifted + timedelta(days=self.days, seconds=self.seconds)

    def __str__(self) -> str:
        if self.is_negative():
            return f"-{-self}"
        parts = []
        years, months = divmod(self.months, 12)
        hours, rest = divmod(self.seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        for amount, unit in (
            (years, "y"),
            (months, "mo"),
            (self.days, "d"),
            (hours, "h"),
            (minutes, "min"),
            (seconds, "s"),
        ):
            if amount:
                parts.append(f"{amount}{unit}")
        return "".join(parts) or "0d"


# =============================================================================
# Dates
# =============================================================================

_DMY_RE = re.compile(
    r"(\d{1,2})-(\d{1,2})-(\d{4})(?:T(\d{1,2}):(\d{2})(?::(\d{2}))?)?", re.ASCII
)
_ISO_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})(?:[T ](\d{2}):(\d{2})(?::(\d{2}))?)?", re.ASCII
)


def parse_date(text: str) -> datetime:
    """Parse `DD-MM-YYYY[THH:MM]`, falling back to ISO `YYYY-MM-DD[THH:MM[:SS]]`.

    Returns:
        A naive datetime

    Raises:
        ValueError: If text is not a valid date in either form
    """
    match = _DMY_RE.fullmatch(text)
    if match:
        day, month, year, hour, minute, second = match.groups()
        return datetime(
            int(year), int(month), int(day), int(hour or 0), int(minute or 0), int(second or 0)
        )

    match = _ISO_RE.fullmatch(text)
    if match:
        year, month, day, hour, minute, second = match.groups()
        return datetime(
            int(year), int(month), int(day), int(hour or 0), int(minute or 0), int(second or 0)
        )

    raise ValueError(f"'{text}' is not a date (DD-MM-YYYY[THH:MM])")


def format_date(moment: datetime) -> str:
    """Render a datetime in the record grammar, dropping a midnight time."""
    text = f"{moment.day:02d}-{moment.month:02d}-{moment.year:04d}"
    if moment.hour or moment.minute or moment.second:
        text += f"T{moment.hour:02d}:{moment.minute:02d}"
    if moment.second:
        text += f":{moment.second:02d}"
    return text
