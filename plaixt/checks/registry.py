"""
Check registry for plaixt.

Check modules enforce cross-record invariants that type shape cannot
express ("a purchase's store must exist"). A module is any callable

    check(record: ValidatedRecord, view: StoreView) -> None

that raises CheckFailure on violation. Modules are registered by name in
a CheckRegistry at startup; definitions refer to them with `@checkWith`.

Invariants:
    - Registry is mutable during startup, frozen before records are checked
    - Once frozen, no new modules can be registered
    - Names are unique
    - Any exception escaping a module surfaces as CheckFailure

How to change safely:
    - Register every module before calling freeze()
    - Modules only read through the StoreView, never mutate records
"""

from __future__ import annotations

import importlib
import json
import logging
import subprocess
import threading
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence

from ..errors import CheckFailure, PlaixtError, UnknownCheckModule
from ..records.validate import ValidatedRecord

logger = logging.getLogger(__name__)


class RegistryFrozenError(PlaixtError):
    """Raised when attempting to modify a frozen registry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")


class DuplicateRegistrationError(PlaixtError):
    """Raised when attempting to register a check name twice."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DUPLICATE_REGISTRATION")


class InvalidCheckModule(PlaixtError):
    """A configured check module cannot be imported or is not callable."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_CHECK_MODULE")


class StoreView(Protocol):
    """Read-only access to the validated record set."""

    def get(self, kind: str, record_id: str) -> Optional[ValidatedRecord]:
        ...

    def records_of(self, kind: str) -> Sequence[ValidatedRecord]:
        ...

    def kinds(self) -> List[str]:
        ...


CheckFunc = Callable[[ValidatedRecord, StoreView], None]


class SubprocessCheck:
    """Runs an external command as a check module.

    The record is written to the command's stdin as one JSON object (see
    ValidatedRecord.to_dict). Exit status 0 accepts the record; any other
    status rejects it with the command's stderr (or stdout) as message.

    Example:
        >>> check = SubprocessCheck("budget", ["./checks/budget.sh"])
        >>> registry.register("budget", check)
    """

    def __init__(self, name: str, argv: Sequence[str], timeout: float = 30.0) -> None:
        if not argv:
            raise InvalidCheckModule(f"Check command '{name}' has an empty argv")
        self.name = name
        self.argv = list(argv)
        self.timeout = timeout

    def __call__(self, record: ValidatedRecord, view: StoreView) -> None:
        payload = json.dumps(record.to_dict())
        result = subprocess.run(
            self.argv,
            input=payload,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip()
            if not message:
                message = f"'{self.argv[0]}' exited with status {result.returncode}"
            raise CheckFailure(message, module=self.name)

    def __repr__(self) -> str:
        return f"SubprocessCheck({self.name!r}, {self.argv!r})"


def load_callable(target: str) -> CheckFunc:
    """Import a check callable from a `package.module:attribute` path.

    Raises:
        InvalidCheckModule: If the path is malformed, cannot be imported,
            or does not name a callable
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise InvalidCheckModule(
            f"Check module path '{target}' must look like 'package.module:callable'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise InvalidCheckModule(f"Cannot import check module '{module_name}': {e}") from e

    obj = module
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            raise InvalidCheckModule(f"'{module_name}' has no attribute '{attr}'")
    if not callable(obj):
        raise InvalidCheckModule(f"'{target}' is not callable")
    return obj


class CheckRegistry:
    """Name to check-module table, frozen before use.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Example:
        >>> registry = CheckRegistry()
        >>> registry.register("links_exist", links_exist)
        >>> registry.freeze()
        >>> registry.invoke("links_exist", record, view)
    """

    def __init__(self) -> None:
        self._checks: Dict[str, CheckFunc] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, name: str, check: CheckFunc) -> None:
        """Register a check module under `name`.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register check '{name}': registry is frozen"
                )
            if name in self._checks:
                raise DuplicateRegistrationError(f"Check '{name}' is already registered")
            if not callable(check):
                raise InvalidCheckModule(f"Check '{name}' is not callable")
            self._checks[name] = check
            logger.debug(f"Registered check module: {name}")

    def freeze(self) -> None:
        """Freeze the registry. No module can be added afterwards.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Check registry is already frozen")
            self._frozen = True
            logger.info(f"Check registry frozen with {len(self._checks)} module(s)")

    def get(self, name: str) -> Optional[CheckFunc]:
        return self._checks.get(name)

    def names(self) -> List[str]:
        return sorted(self._checks)

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def invoke(self, name: str, record: ValidatedRecord, view: StoreView) -> None:
        """Run check module `name` against one record.

        Raises:
            UnknownCheckModule: If no module is registered under `name`
            CheckFailure: If the module rejects the record, or fails with
                any other exception (chained as the cause)
        """
        check = self._checks.get(name)
        if check is None:
            raise UnknownCheckModule(name, source=record.source, line=record.line)

        try:
            check(record, view)
        except CheckFailure as e:
            if e.module is None:
                e.module = name
                e.details["module"] = name
            if e.source is None:
                e.source, e.line = record.source, record.line
            raise
        except Exception as e:
            raise CheckFailure(
                f"Check '{name}' failed with {type(e).__name__}: {e}",
                module=name,
                source=record.source,
                line=record.line,
            ) from e


def build_registry(
    modules: Optional[Mapping[str, str]] = None,
    commands: Optional[Mapping[str, Sequence[str]]] = None,
    include_builtins: bool = True,
) -> CheckRegistry:
    """Build and freeze the registry used for a store.

    Args:
        modules: Check name to `package.module:callable` path
        commands: Check name to argv of a subprocess check
        include_builtins: Register `links_exist` and `warranty`

    Returns:
        A frozen CheckRegistry
    """
    registry = CheckRegistry()
    if include_builtins:
        from .builtin import BUILTIN_CHECKS

        for name, check in BUILTIN_CHECKS.items():
            registry.register(name, check)

    for name, target in (modules or {}).items():
        registry.register(name, load_callable(target))
    for name, argv in (commands or {}).items():
        registry.register(name, SubprocessCheck(name, argv))

    registry.freeze()
    return registry


_default_registry: Optional[CheckRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> CheckRegistry:
    """The frozen registry of built-in check modules."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = build_registry()
        return _default_registry


def invoke(
    module_name: str,
    record: ValidatedRecord,
    view: StoreView,
    registry: Optional[CheckRegistry] = None,
) -> None:
    """Run one check module against a validated record.

    Uses the built-in registry unless `registry` is given.

    Raises:
        CheckFailure: If the record violates the module's invariant
    """
    (registry or default_registry()).invoke(module_name, record, view)
