"""
Definition files and the Definition Store.

A definition file describes every version of one kind's schema:

    # purchases
    @checkWith "warranty"
    define 26-10-2024
        store -> LinkTo[Store]
        name -> string
        warranty_length -> duration?
        count -> integer

    define 15-11-2024
        ...

Parsing rules:
    - Comments (`#`, `//`, `/* */`) are stripped first
    - `@checkWith "<module>"` applies to the next `define` block only
    - `define <date>` starts a version; indented `name -> type` lines
      follow until the next `define` or end of file

Invariants:
    - Versions keep their declaration order (the resolver's tie-break)
    - A structural error is fatal for its own file only
    - Definitions are loaded once per store open and never mutated

How to change safely:
    - New directives must apply to a single following `define`
    - Keep error types stable, the load report exposes their codes
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import (
    DefinitionStoreUnavailable,
    DuplicateFieldName,
    MalformedDate,
    MalformedDefinition,
    PlaixtError,
    ReservedFieldName,
    UnknownKind,
    UnknownTypeToken,
)
from ..lexical import parse_literal, strip_comments
from .types import Definition, DefinitionVersion, Field, FieldType, parse_date

logger = logging.getLogger(__name__)

DEFINITION_SUFFIX = ".pldef"

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_FIELD_RE = re.compile(r"(\S+?)\s*->\s*(.+)")
_CHECK_WITH_RE = re.compile(r"@checkWith\s+(.+)")


class _Block:
    """A `define` block being accumulated."""

    def __init__(self, live_from, line: int, check_with: Optional[str]) -> None:
        self.live_from = live_from
        self.line = line
        self.check_with = check_with
        self.fields: List[Field] = []
        self.names: set[str] = set()


def parse_definition(text: str, kind: str, source: Optional[str] = None) -> Definition:
    """Parse the text of one definition file.

    Args:
        text: File contents
        kind: Kind the file defines (usually the file stem)
        source: File path, for error locations

    Returns:
        Definition with versions in declaration order

    Raises:
        MalformedDate: If a `define` date cannot be parsed
        DuplicateFieldName: If a field repeats within one block
        UnknownTypeToken: If a field type is not recognised
        ReservedFieldName: If a field name starts with '_'
        MalformedDefinition: For any other structural problem
    """
    versions: List[DefinitionVersion] = []
    pending_check: Optional[str] = None
    pending_check_line = 0
    block: Optional[_Block] = None

    def close(current: Optional[_Block]) -> None:
        if current is None:
            return
        versions.append(
            DefinitionVersion(
                kind=kind,
                live_from=current.live_from,
                fields=tuple(current.fields),
                check_with=current.check_with,
                position=len(versions),
                line=current.line,
            )
        )

    for lineno, line in enumerate(strip_comments(text).splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue

        if line[0] not in " \t":
            close(block)
            block = None

            if stripped.startswith("@"):
                match = _CHECK_WITH_RE.fullmatch(stripped)
                if not match:
                    raise MalformedDefinition(
                        f"Unknown directive '{stripped.split()[0]}'. Allowed: @checkWith",
                        source=source,
                        line=lineno,
                    )
                if pending_check is not None:
                    raise MalformedDefinition(
                        "@checkWith given twice before a define block",
                        source=source,
                        line=lineno,
                    )
                try:
                    pending_check = parse_literal(match.group(1))
                except ValueError as e:
                    raise MalformedDefinition(
                        f"Invalid @checkWith module name: {e}", source=source, line=lineno
                    ) from None
                pending_check_line = lineno
                continue

            parts = stripped.split()
            if parts[0] != "define":
                raise MalformedDefinition(
                    f"Unexpected '{stripped}'. Allowed top-level lines: define, @checkWith",
                    source=source,
                    line=lineno,
                )
            if len(parts) != 2:
                raise MalformedDefinition(
                    "Expected 'define <DD-MM-YYYY[THH:MM]>'", source=source, line=lineno
                )
            try:
                live_from = parse_date(parts[1])
            except ValueError:
                raise MalformedDate(parts[1], source=source, line=lineno) from None

            block = _Block(live_from, lineno, pending_check)
            pending_check = None
            continue

        if block is None:
            raise MalformedDefinition(
                "Field line outside of a define block", source=source, line=lineno
            )

        match = _FIELD_RE.fullmatch(stripped)
        if not match:
            raise MalformedDefinition(
                f"Expected 'name -> type', got '{stripped}'", source=source, line=lineno
            )
        name, type_token = match.group(1), match.group(2)

        if name.startswith("_"):
            raise ReservedFieldName(name, source=source, line=lineno)
        if not _IDENT_RE.fullmatch(name):
            raise MalformedDefinition(
                f"Invalid field name '{name}'", source=source, line=lineno
            )
        if name in block.names:
            raise DuplicateFieldName(name, source=source, line=lineno)

        try:
            field_type = FieldType.parse(type_token)
        except UnknownTypeToken as e:
            raise UnknownTypeToken(e.token, source=source, line=lineno) from None

        block.names.add(name)
        block.fields.append(Field(name=name, type=field_type, line=lineno))

    close(block)

    if pending_check is not None:
        raise MalformedDefinition(
            "@checkWith is not followed by a define block",
            source=source,
            line=pending_check_line,
        )

    if not versions:
        logger.warning(f"Definition of '{kind}' has no define blocks ({source})")

    return Definition(kind=kind, versions=tuple(versions), source=source)


class DefinitionStore:
    """Loads definition files from one directory.

    A kind `K` is defined by the file `K` or `K.pldef`. Parsed definitions
    are cached for the lifetime of the store and shared read-only.

    Thread-safety:
        - Loading is guarded by an internal lock
        - Returned Definitions are immutable

    Example:
        >>> store = DefinitionStore("records/definitions")
        >>> purchase = store.load("purchase")
        >>> len(purchase.versions)
        2
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._cache: Dict[str, Definition] = {}
        self._lock = threading.Lock()

    def _ensure_readable(self) -> None:
        if not self.directory.is_dir():
            raise DefinitionStoreUnavailable(
                f"Definitions directory '{self.directory}' does not exist or is not a directory",
                source=str(self.directory),
            )

    def _path_for(self, kind: str) -> Optional[Path]:
        for candidate in (self.directory / kind, self.directory / f"{kind}{DEFINITION_SUFFIX}"):
            if candidate.is_file():
                return candidate
        return None

    def kinds(self) -> List[str]:
        """List the kinds that have a definition file, sorted."""
        self._ensure_readable()
        try:
            entries = list(self.directory.iterdir())
        except OSError as e:
            raise DefinitionStoreUnavailable(
                f"Cannot read definitions directory '{self.directory}': {e}",
                source=str(self.directory),
            ) from e

        kinds = set()
        for entry in entries:
            if not entry.is_file() or entry.name.startswith("."):
                continue
            kinds.add(entry.stem if entry.suffix == DEFINITION_SUFFIX else entry.name)
        return sorted(kinds)

    def load(self, kind: str) -> Definition:
        """Load (and cache) the definition of one kind.

        Raises:
            DefinitionStoreUnavailable: If the directory cannot be read
            UnknownKind: If no file defines `kind`
            StructuralParseError: If the file is malformed
        """
        with self._lock:
            cached = self._cache.get(kind)
            if cached is not None:
                return cached

            self._ensure_readable()
            path = self._path_for(kind)
            if path is None:
                raise UnknownKind(kind)

            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise PlaixtError(
                    f"Cannot read definition file: {e}",
                    code="UNREADABLE_FILE",
                    source=str(path),
                ) from e

            definition = parse_definition(text, kind, source=str(path))
            self._cache[kind] = definition
            logger.debug(
                f"Loaded definition '{kind}' with {len(definition.versions)} version(s)"
            )
            return definition

    def load_all(self) -> Tuple[Dict[str, Definition], List[PlaixtError]]:
        """Load every definition in the directory.

        A malformed file is reported and skipped; other kinds stay usable.

        Returns:
            Tuple of (definitions by kind, list of per-file errors)

        Raises:
            DefinitionStoreUnavailable: If the directory cannot be read
        """
        definitions: Dict[str, Definition] = {}
        errors: List[PlaixtError] = []

        for kind in self.kinds():
            try:
                definitions[kind] = self.load(kind)
            except DefinitionStoreUnavailable:
                raise
            except PlaixtError as e:
                logger.warning(f"Skipping definition '{kind}': {e}")
                errors.append(e)

        logger.info(
            f"Loaded {len(definitions)} definition(s) from {self.directory}, "
            f"{len(errors)} with errors"
        )
        return definitions, errors
