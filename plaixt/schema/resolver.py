"""
Temporal resolution: which definition version applies at a given date.

Precedence rule:
    1. Only versions with live_from <= effective date qualify
    2. Among those, the latest live_from wins
    3. Equal live_from dates are broken by declaration order, later wins

Invariants:
    - resolve() is a pure function of an immutable Definition and a date
    - Adding a version dated after D never changes the result for D
    - The same tie-break applies to explicit override dates
"""

from __future__ import annotations

import bisect
from datetime import datetime
from functools import lru_cache
from typing import Mapping, Optional, Tuple

from ..errors import NoLiveDefinition, UnknownKind
from .types import Definition, DefinitionVersion


@lru_cache(maxsize=256)
def _timeline(definition: Definition) -> Tuple[Tuple[datetime, int], ...]:
    """Versions' (live_from, position) keys, sorted; positions index `versions`."""
    return tuple(sorted((v.live_from, i) for i, v in enumerate(definition.versions)))


def resolve(definition: Definition, effective_date: datetime) -> Optional[DefinitionVersion]:
    """Select the version of `definition` live at `effective_date`.

    Args:
        definition: The kind's full version history
        effective_date: Override date if given, else the occurrence date

    Returns:
        The authoritative DefinitionVersion, or None if every version is
        dated after `effective_date`

    Example:
        >>> resolve(purchase, parse_date("30-10-2024")).live_from
        datetime.datetime(2024, 10, 26, 0, 0)
    """
    timeline = _timeline(definition)
    # Keys sort by (date, position), so the rightmost key <= (date, +inf) is
    # the latest date and, among equal dates, the latest declaration.
    index = bisect.bisect_right(timeline, (effective_date, len(timeline)))
    if index == 0:
        return None
    _, position = timeline[index - 1]
    return definition.versions[position]


def resolve_record(definitions: Mapping[str, Definition], raw) -> DefinitionVersion:
    """Resolve the version that governs a parsed record.

    Args:
        definitions: Loaded definitions by kind
        raw: A RawRecord

    Raises:
        UnknownKind: If the record's kind has no (valid) definition
        NoLiveDefinition: If no version is live at the effective date
    """
    definition = definitions.get(raw.kind)
    if definition is None:
        raise UnknownKind(raw.kind, source=raw.source, line=raw.line)

    version = resolve(definition, raw.effective_date)
    if version is None:
        raise NoLiveDefinition(
            raw.kind, raw.effective_date, source=raw.source, line=raw.line
        )
    return version
