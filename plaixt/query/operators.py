"""
Filter and transform operators of the query language.

Types are tracked as GraphQL-style names without non-null markers:
`String`, `Int`, `Float`, `Boolean`, and `[T]` for folded lists.

Null handling:
    - `=` / `!=` compare nulls like any other value
    - every other operator is false when the property value is null,
      including the negated string operators
    - transforms map null to null
"""

from __future__ import annotations

import re
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Dict, Sequence

from ..errors import FilterTypeMismatch, QueryError, UnsupportedFilterOp, UnsupportedTransformOp

NUMERIC = frozenset({"Int", "Float"})
ORDERABLE = frozenset({"String", "Int", "Float", "Boolean"})

NULL_OPS = frozenset({"is_null", "is_not_null"})
COMPARISON_OPS = frozenset({"=", "!=", "<", "<=", ">", ">="})
MEMBERSHIP_OPS = frozenset({"one_of", "not_one_of"})
STRING_OPS = frozenset(
    {
        "has_prefix",
        "not_has_prefix",
        "has_suffix",
        "not_has_suffix",
        "has_substring",
        "not_has_substring",
        "regex",
        "not_regex",
    }
)
CONTAINS_OPS = frozenset({"contains", "not_contains"})

FILTER_OPS = NULL_OPS | COMPARISON_OPS | MEMBERSHIP_OPS | STRING_OPS | CONTAINS_OPS
TRANSFORM_OPS = frozenset({"count", "length", "lowercase", "uppercase"})


def base_type(type_name: str) -> str:
    """Strip non-null markers: `[String!]!` -> `[String]`."""
    return type_name.replace("!", "")


def is_list_type(type_name: str) -> bool:
    return base_type(type_name).startswith("[")


def value_type(value: Any) -> str:
    """GraphQL-style type of a runtime value (variables, tag values)."""
    if value is None:
        return "Null"
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, int):
        return "Int"
    if isinstance(value, (float, Decimal)):
        return "Float"
    if isinstance(value, str):
        return "String"
    if isinstance(value, (list, tuple)):
        inner = {value_type(v) for v in value} - {"Null"}
        if len(inner) == 1:
            return f"[{inner.pop()}]"
        if inner <= NUMERIC:
            return "[Float]" if inner else "[]"
        return "[Any]"
    return type(value).__name__


def _scalar_compatible(expected: str, actual: str) -> bool:
    if actual == "Null" or actual == expected:
        return True
    return expected in NUMERIC and actual in NUMERIC


def _list_compatible(expected_element: str, actual: str) -> bool:
    if not actual.startswith("["):
        return False
    inner = actual[1:-1]
    return inner == "" or _scalar_compatible(expected_element, inner) or (
        inner == "Float" and expected_element in NUMERIC
    )


def check_filter(op: str, property_type: str, operand_types: Sequence[str]) -> None:
    """Check that `op` applies to a property and operands of the given types.

    Raises:
        UnsupportedFilterOp: If op is unknown
        QueryError: If the number of operands is wrong
        FilterTypeMismatch: If the types are incompatible
    """
    if op not in FILTER_OPS:
        raise UnsupportedFilterOp(op)

    expected_arity = 0 if op in NULL_OPS else 1
    if len(operand_types) != expected_arity:
        raise QueryError(
            f"Filter '{op}' takes {expected_arity} operand(s), got {len(operand_types)}",
            code="FILTER_ARITY",
            details={"op": op},
        )
    if op in NULL_OPS:
        return

    prop = base_type(property_type)
    operand = base_type(operand_types[0])

    def mismatch() -> FilterTypeMismatch:
        return FilterTypeMismatch(
            f"Filter '{op}' cannot compare a {prop} property with a {operand} operand"
        )

    if op in COMPARISON_OPS:
        if op not in ("=", "!=") and prop not in ORDERABLE:
            raise FilterTypeMismatch(f"Filter '{op}' needs an orderable property, got {prop}")
        if not _scalar_compatible(prop, operand):
            raise mismatch()
    elif op in MEMBERSHIP_OPS:
        if not _list_compatible(prop, operand):
            raise mismatch()
    elif op in STRING_OPS:
        if prop != "String" or operand not in ("String", "Null"):
            raise mismatch()
    elif op in CONTAINS_OPS:
        if prop.startswith("["):
            if not _scalar_compatible(prop[1:-1], operand):
                raise mismatch()
        elif prop != "String" or operand not in ("String", "Null"):
            raise mismatch()


def coerce_operand(property_type: str, value: Any) -> Any:
    """Normalize a variable value for comparison with a property."""
    prop = base_type(property_type)
    if isinstance(value, (list, tuple)):
        element = prop[1:-1] if prop.startswith("[") else prop
        return [coerce_operand(element, v) for v in value]
    if prop == "Float" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    return value


@lru_cache(maxsize=128)
def compile_regex(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise FilterTypeMismatch(f"Invalid regex '{pattern}': {e}") from None


def _string_op(op: str, left: str, right: str) -> bool:
    if op.endswith("prefix"):
        return left.startswith(right)
    if op.endswith("suffix"):
        return left.endswith(right)
    if op.endswith("substring"):
        return right in left
    return compile_regex(right).search(left) is not None


def apply_filter(op: str, left: Any, operands: Sequence[Any]) -> bool:
    """Evaluate filter `op` for property value `left`."""
    if op == "is_null":
        return left is None
    if op == "is_not_null":
        return left is not None

    right = operands[0]
    if op == "=":
        return left == right
    if op == "!=":
        return left != right
    if left is None:
        return False

    try:
        if op in COMPARISON_OPS:
            if right is None:
                return False
            if op == "<":
                return left < right
            if op == "<=":
                return left <= right
            if op == ">":
                return left > right
            return left >= right

        if op in MEMBERSHIP_OPS:
            found = left in (right or ())
            return found if op == "one_of" else not found

        if right is None:
            return False

        if op in STRING_OPS:
            result = _string_op(op, left, right)
            return not result if op.startswith("not_") else result

        found = right in left
        return found if op == "contains" else not found
    except TypeError as e:
        raise FilterTypeMismatch(f"Filter '{op}' failed on {left!r}: {e}") from None


def _count(value: Any) -> int:
    return len(value)


_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "count": _count,
    "length": _count,
    "lowercase": str.lower,
    "uppercase": str.upper,
}


def transform_type(op: str, input_type: str) -> str:
    """Result type of applying transform `op` to a value of `input_type`.

    Raises:
        UnsupportedTransformOp: If op is unknown
        QueryError: If op does not apply to the input type
    """
    if op not in TRANSFORM_OPS:
        raise UnsupportedTransformOp(op)

    source = base_type(input_type)
    if op == "count":
        ok = is_list_type(source)
    elif op == "length":
        ok = is_list_type(source) or source == "String"
    else:
        ok = source == "String"
    if not ok:
        raise QueryError(
            f"Transform '{op}' does not apply to a {source} value",
            code="TRANSFORM_TYPE_MISMATCH",
            details={"op": op, "type": source},
        )
    return "Int" if op in ("count", "length") else "String"


def apply_transform(op: str, value: Any) -> Any:
    if value is None:
        return None
    return _TRANSFORMS[op](value)

