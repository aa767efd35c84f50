"""
Error types for plaixt.

Every error raised by the store derives from PlaixtError and falls into
one of the families below:

- StructuralParseError: malformed definition or record text
- ResolutionError: no definition applies to a record
- ValidationError: a record does not match its resolved definition
- CheckFailure: a check module rejected a record
- QueryError: a query could not be compiled or evaluated
- DefinitionStoreUnavailable: the definitions directory cannot be read

Invariants:
    - All errors inherit from PlaixtError
    - Parse, resolution, validation and check errors are per-file or
      per-record and are collected, never fatal to a load
    - Query errors fail the whole query
    - Errors carry source/line context when it is known

How to change safely:
    - Add new error types as subclasses of an existing family
    - Keep `code` values stable, the HTTP API and CLI report them
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PlaixtError(Exception):
    """Base exception for all plaixt errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        source: File the error was found in, if known
        line: 1-based line number, if known
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PLAIXT_ERROR"
        self.details = details or {}
        self.source = source
        self.line = line

    @property
    def location(self) -> str:
        """Human-readable `file:line` prefix (empty if unknown)."""
        if self.source and self.line:
            return f"{self.source}:{self.line}"
        return self.source or ""

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation for reports."""
        result: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.source:
            result["source"] = self.source
        if self.line:
            result["line"] = self.line
        if self.details:
            result["details"] = self.details
        return result


class DefinitionStoreUnavailable(PlaixtError):
    """The definitions directory is missing or unreadable.

    This is the only fatal load error: without definitions no record
    can be resolved.
    """

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message, code="DEFINITION_STORE_UNAVAILABLE", source=source)


# =============================================================================
# Structural parse errors
# =============================================================================


class StructuralParseError(PlaixtError):
    """Malformed definition or record syntax."""

    def __init__(
        self,
        message: str,
        code: str = "STRUCTURAL_PARSE_ERROR",
        source: Optional[str] = None,
        line: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, details=details, source=source, line=line)


class MalformedDate(StructuralParseError):
    """A date is not in `DD-MM-YYYY[THH:MM]` (or ISO) form."""

    def __init__(self, text: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Malformed date '{text}', expected DD-MM-YYYY or DD-MM-YYYYTHH:MM",
            code="MALFORMED_DATE",
            source=source,
            line=line,
            details={"text": text},
        )
        self.text = text


class MalformedDefinition(StructuralParseError):
    """Any other structural problem in a definition file."""

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(message, code="MALFORMED_DEFINITION", source=source, line=line)


class DuplicateFieldName(StructuralParseError):
    """A field name appears twice within one definition version."""

    def __init__(self, field_name: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Field '{field_name}' is declared twice in the same define block",
            code="DUPLICATE_FIELD_NAME",
            source=source,
            line=line,
            details={"field_name": field_name},
        )
        self.field_name = field_name


class UnknownTypeToken(StructuralParseError):
    """A field type is not one of the known type tokens."""

    def __init__(self, token: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Unknown field type '{token}'",
            code="UNKNOWN_TYPE_TOKEN",
            source=source,
            line=line,
            details={"token": token},
        )
        self.token = token


class ReservedFieldName(StructuralParseError):
    """Field names starting with '_' are reserved for built-in properties."""

    def __init__(self, field_name: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Field name '{field_name}' is reserved (names starting with '_' are built-in)",
            code="RESERVED_FIELD_NAME",
            source=source,
            line=line,
            details={"field_name": field_name},
        )
        self.field_name = field_name


class MalformedHeader(StructuralParseError):
    """A record header line does not match `kind[:id] [@date] date`."""

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(message, code="MALFORMED_HEADER", source=source, line=line)


class MalformedFieldLine(StructuralParseError):
    """A record field line does not match `name <- literal`."""

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(message, code="MALFORMED_FIELD_LINE", source=source, line=line)


class DuplicateFieldInRecord(StructuralParseError):
    """A field is assigned twice within one record."""

    def __init__(self, field_name: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Field '{field_name}' is assigned twice in the same record",
            code="DUPLICATE_FIELD_IN_RECORD",
            source=source,
            line=line,
            details={"field_name": field_name},
        )
        self.field_name = field_name


# =============================================================================
# Resolution errors
# =============================================================================


class ResolutionError(PlaixtError):
    """No definition version could be resolved for a record."""


class UnknownKind(ResolutionError):
    """No definition file exists for a kind."""

    def __init__(self, kind: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Unknown record kind '{kind}'",
            code="UNKNOWN_KIND",
            details={"kind": kind},
            source=source,
            line=line,
        )
        self.kind = kind


class NoLiveDefinition(ResolutionError):
    """The record's effective date precedes every version of its kind."""

    def __init__(
        self,
        kind: str,
        effective_date: Any,
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"No definition of '{kind}' is live at {effective_date}",
            code="NO_LIVE_DEFINITION",
            details={"kind": kind, "effective_date": str(effective_date)},
            source=source,
            line=line,
        )
        self.kind = kind
        self.effective_date = effective_date


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(PlaixtError):
    """A record failed validation against its resolved definition.

    Attributes:
        kind: Record kind
        field_name: Offending field, if any
    """

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        kind: Optional[str] = None,
        field_name: Optional[str] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"kind": kind, "field": field_name}
        merged.update(details or {})
        super().__init__(message, code=code, details=merged, source=source, line=line)
        self.kind = kind
        self.field_name = field_name


class MissingRequiredField(ValidationError):
    """A non-optional field is missing from the record."""

    def __init__(
        self,
        kind: str,
        field_name: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"Record of kind '{kind}' is missing required field '{field_name}'",
            code="MISSING_REQUIRED_FIELD",
            kind=kind,
            field_name=field_name,
            source=source,
            line=line,
        )


class UnknownField(ValidationError):
    """A record assigns a field its resolved definition does not declare.

    Includes suggestions for similar field names.
    """

    def __init__(
        self,
        kind: str,
        field_name: str,
        suggestions: Optional[List[str]] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in record of kind '{kind}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            kind=kind,
            field_name=field_name,
            source=source,
            line=line,
            details={"suggestions": suggestions},
        )
        self.suggestions = suggestions


class TypeMismatch(ValidationError):
    """A literal cannot be coerced to its declared field type."""

    def __init__(
        self,
        kind: str,
        field_name: str,
        expected: str,
        literal: str,
        reason: str = "",
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        msg = f"Field '{field_name}' of '{kind}' expects {expected}, got '{literal}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(
            msg,
            code="TYPE_MISMATCH",
            kind=kind,
            field_name=field_name,
            source=source,
            line=line,
            details={"expected": expected, "literal": literal},
        )
        self.expected = expected
        self.literal = literal


class DuplicateRecordId(ValidationError):
    """Two records of the same kind share an id."""

    def __init__(
        self,
        kind: str,
        record_id: str,
        first_location: str = "",
        source: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        msg = f"Duplicate id '{record_id}' for kind '{kind}'"
        if first_location:
            msg += f" (first defined at {first_location})"
        super().__init__(
            msg,
            code="DUPLICATE_RECORD_ID",
            kind=kind,
            source=source,
            line=line,
            details={"id": record_id},
        )
        self.record_id = record_id


# =============================================================================
# Check failures
# =============================================================================


class CheckFailure(PlaixtError):
    """A check module reported a semantic violation for a record.

    Attributes:
        module: Name of the check module
    """

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
        code: str = "CHECK_FAILURE",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"module": module},
            source=source,
            line=line,
        )
        self.module = module


class UnknownCheckModule(CheckFailure):
    """A definition names a check module that is not registered."""

    def __init__(self, module: str, source: Optional[str] = None, line: Optional[int] = None) -> None:
        super().__init__(
            f"Check module '{module}' is not registered",
            module=module,
            source=source,
            line=line,
            code="UNKNOWN_CHECK_MODULE",
        )


# =============================================================================
# Query errors
# =============================================================================


class QueryError(PlaixtError):
    """A query failed to compile or evaluate. Fails the whole query."""

    def __init__(
        self,
        message: str,
        code: str = "QUERY_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class QuerySyntaxError(QueryError):
    """The query text is not a valid query document."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="QUERY_SYNTAX_ERROR")


class UnknownSchemaElement(QueryError):
    """The query names a type, property or edge the schema lacks."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="UNKNOWN_SCHEMA_ELEMENT")


class UnsupportedFilterOp(QueryError):
    """`@filter` uses an operator that does not exist."""

    def __init__(self, op: str) -> None:
        super().__init__(
            f"Unsupported filter operator '{op}'",
            code="UNSUPPORTED_FILTER_OP",
            details={"op": op},
        )
        self.op = op


class UnsupportedTransformOp(QueryError):
    """`@transform` uses an operation that does not exist."""

    def __init__(self, op: str) -> None:
        super().__init__(
            f"Unsupported transform operation '{op}'",
            code="UNSUPPORTED_TRANSFORM_OP",
            details={"op": op},
        )
        self.op = op


class UnresolvableTag(QueryError):
    """A filter references a tag that is not visible at that point."""

    def __init__(self, tag: str) -> None:
        super().__init__(
            f"Tag '%{tag}' is not defined before this point or not visible here",
            code="UNRESOLVABLE_TAG",
            details={"tag": tag},
        )
        self.tag = tag


class UnknownVariable(QueryError):
    """A filter references a `$variable` that was not supplied."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Variable '${name}' was not supplied",
            code="UNKNOWN_VARIABLE",
            details={"variable": name},
        )
        self.name = name


class DuplicateName(QueryError):
    """A tag or output name is used twice in one query."""

    def __init__(self, what: str, name: str) -> None:
        super().__init__(
            f"Duplicate {what} name '{name}'",
            code="DUPLICATE_NAME",
            details={"what": what, "name": name},
        )
        self.name = name


class FilterTypeMismatch(QueryError):
    """A filter operand's type is incompatible with the property type."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="FILTER_TYPE_MISMATCH")


class QueryCancelled(QueryError):
    """Query evaluation was cancelled or exceeded its timeout."""

    def __init__(self, message: str = "Query evaluation was cancelled") -> None:
        super().__init__(message, code="QUERY_CANCELLED")
