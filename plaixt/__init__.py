"""
plaixt - a plain-text structured record store.

Human-authored text files describe definitions (versioned schemas for a
kind of record) and records (timestamped instances of a kind). plaixt
resolves the definition version that was live when each record happened,
validates the record against it, runs pluggable cross-record checks and
exposes the accepted records through a directive-driven graph query.

Architecture:
    definitions/*.pldef ──▶ DefinitionStore ──▶ Temporal Resolver
                                                     │
    **/*.plrecs ──▶ Record Parser ──▶ Validator ◀────┘
                                          │
                                          ▼
                                   Check Invoker ──▶ RecordSet ──▶ Query Adapter

Invariants:
    - Definitions are immutable once parsed
    - Records are never mutated after validation
    - One bad file or record never aborts a load

How to change safely:
    - New field types go in schema/types.py and records/validate.py together
    - New vertex types need a schema entry and a resolver in query/interpreter.py
"""

from ._version import __version__
from .config import Settings
from .errors import PlaixtError
from .query import Adapter
from .store import LoadResult, RecordSet, Store, load_store

__all__ = [
    "__version__",
    "Adapter",
    "LoadResult",
    "PlaixtError",
    "RecordSet",
    "Settings",
    "Store",
    "load_store",
]
