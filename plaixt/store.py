"""
Store loading: from a root folder to an immutable RecordSet.

    root/
        definitions/<kind>[.pldef]    Definition Store
        **/*.plrecs                   record files, any mix of kinds

Pipeline per load:
    1. Load every definition (a bad file drops only its own kind)
    2. Parse, resolve and validate each record file; files may be
       processed in parallel, results keep file order
    3. Reject duplicate ids (first occurrence per kind wins)
    4. Run `@checkWith` modules against the candidate set

Invariants:
    - Only an unreadable definitions directory aborts a load; every other
      problem is collected into LoadResult.errors
    - A RecordSet is never mutated; reloading builds a new one
    - Record order is file order, then position within the file

How to change safely:
    - Keep _process_file free of shared state, it runs on worker threads
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .checks import CheckRegistry, build_registry
from .errors import (
    CheckFailure,
    DuplicateRecordId,
    PlaixtError,
    ResolutionError,
    StructuralParseError,
    ValidationError,
)
from .records.parser import RECORD_SUFFIX, parse_records
from .records.validate import ValidatedRecord, validate_record
from .schema.definitions import DefinitionStore
from .schema.resolver import resolve_record
from .schema.types import Definition

logger = logging.getLogger(__name__)


class RecordSet:
    """Immutable, indexed collection of validated records.

    Implements the read-only StoreView used by check modules and is the
    snapshot a query execution observes.

    Example:
        >>> records = RecordSet(validated)
        >>> records.get("Store", "FarmerBernard")
        >>> [r.id for r in records.records_of("purchase")]
    """

    def __init__(self, records: Sequence[ValidatedRecord] = ()) -> None:
        self._records: Tuple[ValidatedRecord, ...] = tuple(records)
        self._by_kind: Dict[str, List[ValidatedRecord]] = {}
        self._by_id: Dict[Tuple[str, str], ValidatedRecord] = {}
        for record in self._records:
            self._by_kind.setdefault(record.kind, []).append(record)
            if record.id is not None:
                self._by_id.setdefault((record.kind, record.id), record)

    def get(self, kind: str, record_id: str) -> Optional[ValidatedRecord]:
        """Look a record up by kind and id."""
        return self._by_id.get((kind, record_id))

    def records_of(self, kind: str) -> Sequence[ValidatedRecord]:
        """Records of one kind, in load order."""
        return tuple(self._by_kind.get(kind, ()))

    def kinds(self) -> List[str]:
        """Kinds that have at least one record, sorted."""
        return sorted(self._by_kind)

    def __iter__(self) -> Iterator[ValidatedRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"RecordSet({len(self._records)} records, kinds={self.kinds()})"


@dataclass
class LoadResult:
    """Outcome of loading a store root.

    Attributes:
        definitions: Successfully parsed definitions by kind
        records: Accepted records
        errors: Every collected problem, in discovery order
        files: Record files that were read
        duration_ms: Wall time of the load
    """

    definitions: Dict[str, Definition]
    records: RecordSet
    errors: List[PlaixtError] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors

    def errors_of(self, error_type: type) -> List[PlaixtError]:
        return [e for e in self.errors if isinstance(e, error_type)]

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for error in self.errors:
            counts[error.code] = counts.get(error.code, 0) + 1
        return {
            "kinds": len(self.definitions),
            "files": len(self.files),
            "records": len(self.records),
            "errors": len(self.errors),
            "errors_by_code": counts,
            "duration_ms": round(self.duration_ms, 2),
        }

    def problems(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.errors]


def _process_file(
    path: Path, definitions: Mapping[str, Definition]
) -> Tuple[List[ValidatedRecord], List[PlaixtError]]:
    """Parse, resolve and validate one record file."""
    errors: List[PlaixtError] = []
    records: List[ValidatedRecord] = []
    source = str(path)

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        errors.append(
            PlaixtError(f"Cannot read record file: {e}", code="UNREADABLE_FILE", source=source)
        )
        return records, errors

    def on_error(error: StructuralParseError) -> None:
        logger.warning(f"Skipping malformed record: {error}")
        errors.append(error)

    for raw in parse_records(text, source=source, on_error=on_error):
        try:
            version = resolve_record(definitions, raw)
            records.append(validate_record(raw, version))
        except (ResolutionError, ValidationError) as e:
            logger.warning(f"Rejecting record: {e}")
            errors.append(e)

    return records, errors


class Store:
    """A plaixt store rooted at a folder.

    Attributes:
        root: Store root folder
        definitions_dir: Definitions folder (relative to root unless absolute)
        record_glob: Glob selecting record files below root
        workers: Threads used to process record files
        registry: Frozen CheckRegistry for `@checkWith` modules
        reject_failed_checks: Drop records whose check fails

    Example:
        >>> result = Store("~/records").load()
        >>> result.summary()
        {'kinds': 2, 'files': 3, 'records': 41, 'errors': 0, ...}
    """

    def __init__(
        self,
        root: str | Path,
        definitions_dir: str = "definitions",
        record_glob: str = f"**/*{RECORD_SUFFIX}",
        workers: int = 1,
        registry: Optional[CheckRegistry] = None,
        reject_failed_checks: bool = True,
    ) -> None:
        self.root = Path(root).expanduser()
        self.definitions_dir = self.root / definitions_dir
        self.record_glob = record_glob
        self.workers = max(1, workers)
        self.registry = registry if registry is not None else build_registry()
        self.reject_failed_checks = reject_failed_checks

    @classmethod
    def from_settings(cls, settings) -> Store:
        """Build a Store from plaixt.config.Settings."""
        registry = build_registry(
            modules=settings.check_modules, commands=settings.check_commands
        )
        return cls(
            root=settings.root_folder,
            definitions_dir=settings.definitions_dir,
            record_glob=settings.record_glob,
            workers=settings.workers,
            registry=registry,
            reject_failed_checks=settings.reject_failed_checks,
        )

    def record_files(self) -> List[Path]:
        """Record files below root, sorted for a stable load order."""
        return sorted(p for p in self.root.glob(self.record_glob) if p.is_file())

    def load(self) -> LoadResult:
        """Load definitions and records into a fresh RecordSet.

        Raises:
            DefinitionStoreUnavailable: If the definitions folder is unreadable
        """
        started = time.monotonic()
        definitions, errors = DefinitionStore(self.definitions_dir).load_all()
        errors = list(errors)
        files = self.record_files()

        if self.workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="plaixt-load-"
            ) as executor:
                outcomes = list(executor.map(lambda p: _process_file(p, definitions), files))
        else:
            outcomes = [_process_file(p, definitions) for p in files]

        candidates: List[ValidatedRecord] = []
        seen: Dict[Tuple[str, str], ValidatedRecord] = {}
        for file_records, file_errors in outcomes:
            errors.extend(file_errors)
            for record in file_records:
                if record.id is not None:
                    key = (record.kind, record.id)
                    first = seen.get(key)
                    if first is not None:
                        errors.append(
                            DuplicateRecordId(
                                record.kind,
                                record.id,
                                first_location=f"{first.source}:{first.line}",
                                source=record.source,
                                line=record.line,
                            )
                        )
                        continue
                    seen[key] = record
                candidates.append(record)

        records, check_errors = self.run_checks(candidates)
        errors.extend(check_errors)

        result = LoadResult(
            definitions=definitions,
            records=records,
            errors=errors,
            files=[str(p) for p in files],
            duration_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(
            f"Loaded {len(result.records)} record(s) of {len(definitions)} kind(s) "
            f"from {len(files)} file(s) in {result.duration_ms:.1f}ms, "
            f"{len(errors)} problem(s)"
        )
        return result

    def run_checks(
        self, candidates: Sequence[ValidatedRecord]
    ) -> Tuple[RecordSet, List[PlaixtError]]:
        """Run each record's `@checkWith` module against the candidate set.

        Returns:
            Tuple of (accepted RecordSet, check failures)
        """
        view = RecordSet(candidates)
        failures: List[PlaixtError] = []
        accepted: List[ValidatedRecord] = []

        for record in candidates:
            module = record.version.check_with
            if module is None:
                accepted.append(record)
                continue
            try:
                self.registry.invoke(module, record, view)
            except CheckFailure as e:
                logger.warning(f"Check failed: {e}")
                failures.append(e)
                if self.reject_failed_checks:
                    continue
            accepted.append(record)

        if len(accepted) == len(candidates):
            return view, failures
        return RecordSet(accepted), failures


def load_store(root: str | Path, **kwargs: Any) -> LoadResult:
    """Shortcut for Store(root, **kwargs).load()."""
    return Store(root, **kwargs).load()
