"""
Schema module for plaixt.

This module provides the definition model and its evolution over time:
- Type definitions (FieldKind, FieldType, Field, DefinitionVersion, Definition)
- Definition file parsing and the DefinitionStore
- Temporal resolution of the version live at a date

Invariants:
    - Definitions are immutable once parsed
    - Declaration order is kept; it breaks ties between same-dated versions
    - Schema evolution is over time, not over code releases: old records
      keep validating against the version that was live when they happened

How to change safely:
    - Add a new `define` block with a later date; never edit history that
      existing records resolve against
    - Use an `@` override on a record to force a different version
"""

from .definitions import DEFINITION_SUFFIX, DefinitionStore, parse_definition
from .resolver import resolve, resolve_record
from .types import (
    Definition,
    DefinitionVersion,
    Duration,
    Field,
    FieldKind,
    FieldType,
    RecordRef,
    format_date,
    parse_date,
)

__all__ = [
    # Types
    "FieldKind",
    "FieldType",
    "Field",
    "DefinitionVersion",
    "Definition",
    "Duration",
    "RecordRef",
    "parse_date",
    "format_date",
    # Store
    "DefinitionStore",
    "parse_definition",
    "DEFINITION_SUFFIX",
    # Resolution
    "resolve",
    "resolve_record",
]
