"""
Built-in check modules.

- links_exist: every LinkTo value references an existing record
- warranty: `warranty_length`, when present, is positive and does not put
  the expiration before the purchase date
"""

from __future__ import annotations

from typing import Dict

from ..errors import CheckFailure
from ..records.validate import ValidatedRecord
from ..schema.types import Duration, format_date
from .registry import CheckFunc, StoreView

WARRANTY_FIELD = "warranty_length"


def links_exist(record: ValidatedRecord, view: StoreView) -> None:
    for name, ref in record.links():
        if view.get(ref.kind, ref.id) is None:
            raise CheckFailure(
                f"Field '{name}' of '{record.kind}' links to {ref}, which does not exist",
                module="links_exist",
            )


def warranty(record: ValidatedRecord, view: StoreView) -> None:
    length = record.get(WARRANTY_FIELD)
    if length is None:
        return
    if not isinstance(length, Duration):
        raise CheckFailure(
            f"'{WARRANTY_FIELD}' must be a duration, got {type(length).__name__}",
            module="warranty",
        )
    if length.is_zero():
        raise CheckFailure(f"'{WARRANTY_FIELD}' must be positive", module="warranty")

    expires = length.add_to(record.date)
    if expires < record.date:
        raise CheckFailure(
            f"Warranty expires {format_date(expires)}, before the purchase on "
            f"{format_date(record.date)}",
            module="warranty",
        )


BUILTIN_CHECKS: Dict[str, CheckFunc] = {
    "links_exist": links_exist,
    "warranty": warranty,
}
