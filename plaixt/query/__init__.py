"""
Query module for plaixt.

A directive-driven graph query language over the validated record set:
- QuerySchema: vertex types derived from definitions
- compile_query: GraphQL-syntax text to a checked IR
- Execution: the interpreter's step function over one snapshot
- Adapter: schema + snapshot + execute()

Invariants:
    - Query errors fail the whole query, at compile time or first evaluation
    - LinkTo edges dereference at query time; dangling links have no neighbors
"""

from .adapter import Adapter
from .compiler import CompiledQuery, compile_query
from .interpreter import Execution
from .operators import FILTER_OPS, TRANSFORM_OPS
from .schema import QuerySchema

__all__ = [
    "Adapter",
    "CompiledQuery",
    "Execution",
    "QuerySchema",
    "compile_query",
    "FILTER_OPS",
    "TRANSFORM_OPS",
]
