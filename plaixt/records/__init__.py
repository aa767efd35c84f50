"""
Records module for plaixt.

- Record file parsing and formatting (RawRecord)
- Validation against a resolved definition version (ValidatedRecord)
"""

from .parser import (
    RECORD_SUFFIX,
    RawField,
    RawRecord,
    format_record,
    format_records,
    parse_records,
)
from .validate import (
    ValidatedRecord,
    coerce_value,
    collect_validation_errors,
    render_value,
    validate_record,
)

__all__ = [
    "RECORD_SUFFIX",
    "RawField",
    "RawRecord",
    "parse_records",
    "format_record",
    "format_records",
    "ValidatedRecord",
    "coerce_value",
    "render_value",
    "collect_validation_errors",
    "validate_record",
]
