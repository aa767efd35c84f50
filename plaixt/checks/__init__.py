"""
Check modules for plaixt.

The only extension point of the store: named callables that enforce
cross-record invariants, held in a CheckRegistry frozen at startup.
"""

from .builtin import BUILTIN_CHECKS, links_exist, warranty
from .registry import (
    CheckFunc,
    CheckRegistry,
    DuplicateRegistrationError,
    InvalidCheckModule,
    RegistryFrozenError,
    StoreView,
    SubprocessCheck,
    build_registry,
    default_registry,
    invoke,
    load_callable,
)

__all__ = [
    "CheckFunc",
    "CheckRegistry",
    "StoreView",
    "SubprocessCheck",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "InvalidCheckModule",
    "build_registry",
    "default_registry",
    "invoke",
    "load_callable",
    "BUILTIN_CHECKS",
    "links_exist",
    "warranty",
]
