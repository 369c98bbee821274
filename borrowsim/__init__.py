"""
borrowsim — Memory-Model Permission Simulator
=============================================

Models a running program's stack frames and heap allocations, tracks
per-binding Read/Write/Own permissions as the program moves and borrows
values, and reports the exact class of undefined behaviour an operation
would trigger.

Core modules
------------
permissions
    The immutable (R, W, O) triple.
memory_model
    Stack frames of slots plus an address-indexed heap.
bindings
    Lexically scoped binding table with shadowing.
detector
    Permission checks that classify a refused access.
borrows
    Borrow arena and the shared / exclusive / reborrow engine.
ownership
    Declaration, move, copy, drop, scope exit, read/write/grow.
operations
    Operation records and per-record outcomes.
simulator
    The driver, its configuration, and the pure ``validate`` pass.
invariants
    Safety properties checked after every step.
errors
    Error codes, violation records and the exception hierarchy.

Quick start
-----------
>>> from borrowsim import Simulator, Operation
>>> result = Simulator().run([
...     Operation.enter("main"),
...     Operation.declare("x", "heap", size=3),
...     Operation.borrow_exclusive("x", "r1"),
...     Operation.write("r1", 7),
...     Operation.read("x"),
... ])
>>> print(result.outcomes[-1])
Err(ConflictingBorrow, x)
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: module_name → names re-exported at package level
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "permissions": [
        "PermissionState",
        "FULL",
        "NONE",
        "READ_ONLY",
        "READ_WRITE",
        "POINTER",
    ],
    "errors": [
        "ErrorCode",
        "ErrorCodes",
        "ViolationKind",
        "Violation",
        "SimulationError",
        "ViolationError",
        "ProtocolError",
        "UseAfterMoveError",
        "DoubleFreeError",
        "ConflictingBorrowError",
        "DanglingReferenceError",
        "FrameUnderflowError",
        "UnknownBindingError",
        "UnknownBorrowError",
        "InvalidOperationError",
        "RecordError",
        "InvariantBreach",
    ],
    "memory_model": [
        "MemoryModel",
        "Allocation",
        "AllocationStatus",
        "StackSlot",
        "SlotKind",
        "Frame",
    ],
    "bindings": [
        "Binding",
        "BindingState",
        "BindingTable",
        "ValueKind",
    ],
    "detector": [
        "Access",
        "ViolationDetector",
    ],
    "borrows": [
        "Borrow",
        "BorrowArena",
        "BorrowEngine",
        "BorrowKind",
    ],
    "ownership": [
        "OwnershipEngine",
    ],
    "operations": [
        "OpKind",
        "Operation",
        "Outcome",
    ],
    "invariants": [
        "InvariantMonitor",
        "PropertySpec",
    ],
    "simulator": [
        "Simulator",
        "SimulatorConfig",
        "SimulationResult",
        "LeakRecord",
        "TraceStep",
        "validate",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"borrowsim: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"borrowsim.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of all core submodules."""
    return sorted(_CORE_MODULES)


__all__ += ["list_submodules", "__version__"]

# ---------------------------------------------------------------------------
# TYPE_CHECKING block — gives IDEs full visibility without runtime cost
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .permissions import (
        PermissionState as PermissionState,
        FULL as FULL,
        NONE as NONE,
        READ_ONLY as READ_ONLY,
        READ_WRITE as READ_WRITE,
        POINTER as POINTER,
    )
    from .errors import (
        ErrorCode as ErrorCode,
        ErrorCodes as ErrorCodes,
        ViolationKind as ViolationKind,
        Violation as Violation,
        SimulationError as SimulationError,
        ViolationError as ViolationError,
        ProtocolError as ProtocolError,
        UseAfterMoveError as UseAfterMoveError,
        DoubleFreeError as DoubleFreeError,
        ConflictingBorrowError as ConflictingBorrowError,
        DanglingReferenceError as DanglingReferenceError,
        FrameUnderflowError as FrameUnderflowError,
        UnknownBindingError as UnknownBindingError,
        UnknownBorrowError as UnknownBorrowError,
        InvalidOperationError as InvalidOperationError,
        RecordError as RecordError,
        InvariantBreach as InvariantBreach,
    )
    from .memory_model import (
        MemoryModel as MemoryModel,
        Allocation as Allocation,
        AllocationStatus as AllocationStatus,
        StackSlot as StackSlot,
        SlotKind as SlotKind,
        Frame as Frame,
    )
    from .bindings import (
        Binding as Binding,
        BindingState as BindingState,
        BindingTable as BindingTable,
        ValueKind as ValueKind,
    )
    from .detector import (
        Access as Access,
        ViolationDetector as ViolationDetector,
    )
    from .borrows import (
        Borrow as Borrow,
        BorrowArena as BorrowArena,
        BorrowEngine as BorrowEngine,
        BorrowKind as BorrowKind,
    )
    from .ownership import OwnershipEngine as OwnershipEngine
    from .operations import (
        OpKind as OpKind,
        Operation as Operation,
        Outcome as Outcome,
    )
    from .invariants import (
        InvariantMonitor as InvariantMonitor,
        PropertySpec as PropertySpec,
    )
    from .simulator import (
        Simulator as Simulator,
        SimulatorConfig as SimulatorConfig,
        SimulationResult as SimulationResult,
        LeakRecord as LeakRecord,
        TraceStep as TraceStep,
        validate as validate,
    )
