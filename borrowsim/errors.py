# borrowsim/errors.py
"""
Error Types and Reporting for the Permission Simulator

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                    │
├─────────────────────────────────────────────────────────────────────────────┤
│  SimulationError (base)                                                     │
│  ├── ViolationError        - the modeled program exhibits UB               │
│  │   ├── UseAfterMoveError                                                  │
│  │   ├── DoubleFreeError                                                    │
│  │   ├── ConflictingBorrowError                                             │
│  │   └── DanglingReferenceError                                             │
│  ├── ProtocolError         - the driver misused the simulator (fatal)      │
│  │   ├── FrameUnderflowError                                                │
│  │   ├── UnknownBindingError                                                │
│  │   ├── UnknownBorrowError                                                 │
│  │   └── InvalidOperationError                                              │
│  ├── RecordError           - malformed operation record                     │
│  └── InvariantBreach       - simulator bug (should never happen)            │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a code of the form BSIM-XXXX:
  - 0001-0999: Informational (leaks)
  - 1000-1999: Violations of the modeled program
  - 2000-2999: Protocol errors
  - 3000-3999: Operation-log syntax / load errors
  - 9000-9999: Internal errors

Violations are not raised out of the simulator: it converts each one into
a :class:`Violation` record and keeps going.  Protocol errors abort the
current run.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, ClassVar, Dict, List, Optional, Type


# ═══════════════════════════════════════════════════════════════════════════════
# SEVERITY AND CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorSeverity(Enum):
    """Severity attached to an error code."""

    FATAL = "fatal"
    ERROR = "error"
    INFO = "info"

    def is_error(self) -> bool:
        return self in (ErrorSeverity.FATAL, ErrorSeverity.ERROR)


@unique
class ErrorCategory(Enum):
    INFO = "info"
    VIOLATION = "violation"
    PROTOCOL = "protocol"
    SYNTAX = "syntax"
    INTERNAL = "internal"


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Structured error code ``PREFIX-NNNN``.

    Compares equal to its string form so callers can write
    ``violation.code == "BSIM-1001"``.
    """

    __slots__ = ("prefix", "number", "category", "default_severity", "title",
                 "summary")

    def __init__(
        self,
        prefix: str,
        number: int,
        category: ErrorCategory,
        title: str,
        summary: str = "",
        default_severity: ErrorSeverity = ErrorSeverity.ERROR,
    ) -> None:
        self.prefix = prefix
        self.number = number
        self.category = category
        self.title = title
        self.summary = summary
        self.default_severity = default_severity

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.title})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class ErrorCodes:
    """Predefined codes."""

    LEAK = ErrorCode(
        "BSIM", 1, ErrorCategory.INFO, "Leak",
        "An allocation was still live when the run ended. Leaks are valid, "
        "just wasteful, so this is never an error.",
        ErrorSeverity.INFO,
    )

    USE_AFTER_MOVE = ErrorCode(
        "BSIM", 1001, ErrorCategory.VIOLATION, "UseAfterMove",
        "The operation targets a binding whose ownership was already moved "
        "away, which was dropped, or which was never initialised.",
    )
    DOUBLE_FREE = ErrorCode(
        "BSIM", 1002, ErrorCategory.VIOLATION, "DoubleFree",
        "A drop or deallocation targets an allocation that is already freed.",
    )
    CONFLICTING_BORROW = ErrorCode(
        "BSIM", 1003, ErrorCategory.VIOLATION, "ConflictingBorrow",
        "The access breaks the shared-XOR-exclusive rule: the binding is "
        "borrowed in a way that forbids it, or the reference only grants "
        "shared access.",
    )
    DANGLING_REFERENCE = ErrorCode(
        "BSIM", 1004, ErrorCategory.VIOLATION, "DanglingReference",
        "A reference or pointer is used after the memory it designates was "
        "dropped, moved or reallocated.",
    )

    FRAME_UNDERFLOW = ErrorCode(
        "BSIM", 2001, ErrorCategory.PROTOCOL, "FrameUnderflow",
        "A scope exit (or a declaration) was issued with no live frame.",
        ErrorSeverity.FATAL,
    )
    UNKNOWN_BINDING = ErrorCode(
        "BSIM", 2002, ErrorCategory.PROTOCOL, "UnknownBinding",
        "No live frame declares the named binding.",
        ErrorSeverity.FATAL,
    )
    UNKNOWN_BORROW = ErrorCode(
        "BSIM", 2003, ErrorCategory.PROTOCOL, "UnknownBorrow",
        "The reference does not correspond to a live borrow.",
        ErrorSeverity.FATAL,
    )
    INVALID_OPERATION = ErrorCode(
        "BSIM", 2004, ErrorCategory.PROTOCOL, "InvalidOperation",
        "The operation does not apply to its operands (wrong value kind, "
        "bad size, unknown address, non-copyable copy source).",
        ErrorSeverity.FATAL,
    )

    OPLOG_SYNTAX = ErrorCode(
        "BSIM", 3001, ErrorCategory.SYNTAX, "OplogSyntax",
        "The operation log text does not match the oplog grammar.",
    )
    OPLOG_LOAD = ErrorCode(
        "BSIM", 3002, ErrorCategory.SYNTAX, "OplogLoad",
        "The operation log could not be read or decoded.",
    )
    BAD_RECORD = ErrorCode(
        "BSIM", 3003, ErrorCategory.SYNTAX, "BadRecord",
        "An operation record has a missing, unknown or ill-typed field.",
    )

    INVARIANT_BREACH = ErrorCode(
        "BSIM", 9001, ErrorCategory.INTERNAL, "InvariantBreach",
        "A safety invariant of the memory model stopped holding. This is a "
        "simulator bug.",
        ErrorSeverity.FATAL,
    )

    @classmethod
    def all(cls) -> List[ErrorCode]:
        codes = [v for v in vars(cls).values() if isinstance(v, ErrorCode)]
        return sorted(codes, key=lambda c: c.number)

    @classmethod
    def lookup(cls, key: str) -> Optional[ErrorCode]:
        """Find a code by ``BSIM-NNNN`` string or by title (case-insensitive)."""
        folded = key.strip().lower()
        for code in cls.all():
            if code.code.lower() == folded or code.title.lower() == folded:
                return code
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# VIOLATION TAXONOMY
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ViolationKind(Enum):
    """Taxonomy of reported failures; values are the wire names."""

    USE_AFTER_MOVE = "UseAfterMove"
    DOUBLE_FREE = "DoubleFree"
    CONFLICTING_BORROW = "ConflictingBorrow"
    DANGLING_REFERENCE = "DanglingReference"
    FRAME_UNDERFLOW = "FrameUnderflow"
    UNKNOWN_BINDING = "UnknownBinding"
    UNKNOWN_BORROW = "UnknownBorrow"
    INVALID_OPERATION = "InvalidOperation"

    @property
    def code(self) -> ErrorCode:
        return _KIND_CODES[self]

    @property
    def is_protocol(self) -> bool:
        """Driver misuse rather than a property of the modeled program."""
        return self.code.category is ErrorCategory.PROTOCOL

    def __str__(self) -> str:
        return self.value


_KIND_CODES: Dict[ViolationKind, ErrorCode] = {
    ViolationKind.USE_AFTER_MOVE: ErrorCodes.USE_AFTER_MOVE,
    ViolationKind.DOUBLE_FREE: ErrorCodes.DOUBLE_FREE,
    ViolationKind.CONFLICTING_BORROW: ErrorCodes.CONFLICTING_BORROW,
    ViolationKind.DANGLING_REFERENCE: ErrorCodes.DANGLING_REFERENCE,
    ViolationKind.FRAME_UNDERFLOW: ErrorCodes.FRAME_UNDERFLOW,
    ViolationKind.UNKNOWN_BINDING: ErrorCodes.UNKNOWN_BINDING,
    ViolationKind.UNKNOWN_BORROW: ErrorCodes.UNKNOWN_BORROW,
    ViolationKind.INVALID_OPERATION: ErrorCodes.INVALID_OPERATION,
}


@dataclass(frozen=True)
class Violation:
    """
    One reported failure, tied to the operation that triggered it.

    ``index`` is the 0-based position of the operation in the run and
    ``line`` its source line in the operation log (0 when unknown).
    """

    kind: ViolationKind
    binding: Optional[str]
    message: str
    index: int = -1
    line: int = 0
    source: str = ""

    @classmethod
    def from_error(cls, exc: "SimulationError", index: int = -1,
                   line: int = 0, source: str = "") -> "Violation":
        if exc.kind is None:
            raise ValueError(f"{type(exc).__name__} has no violation kind")
        return cls(exc.kind, exc.binding, exc.message, index, line, source)

    @property
    def code(self) -> ErrorCode:
        return self.kind.code

    @property
    def severity(self) -> ErrorSeverity:
        return self.code.default_severity

    @property
    def location(self) -> str:
        if not self.source and self.line == 0:
            return f"<op {self.index}>" if self.index >= 0 else "<unknown location>"
        parts = [self.source or "<oplog>"]
        if self.line > 0:
            parts.append(str(self.line))
        return ":".join(parts)

    def to_gcc_format(self) -> str:
        """``file:line: error: message [BSIM-NNNN]``"""
        return f"{self.location}: {self.severity.value}: {self.message} [{self.code}]"

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code.code,
            "kind": self.kind.value,
            "binding": self.binding,
            "message": self.message,
            "severity": self.severity.value,
            "index": self.index,
            "location": {"file": self.source, "line": self.line},
        }

    def __str__(self) -> str:
        return self.to_gcc_format()


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class SimulationError(Exception):
    """
    Base exception for everything the simulator raises.

    ``kind`` is a class attribute on concrete subclasses; ``related``
    collects further errors raised by the same operation (a scope exit
    can fail several drops at once).
    """

    kind: ClassVar[Optional[ViolationKind]] = None
    default_code: ClassVar[ErrorCode] = ErrorCodes.INVARIANT_BREACH

    def __init__(self, message: str, binding: Optional[str] = None,
                 hint: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.binding = binding
        self.hint = hint
        self.related: List["SimulationError"] = []

    @property
    def code(self) -> ErrorCode:
        return self.kind.code if self.kind is not None else self.default_code

    @property
    def severity(self) -> ErrorSeverity:
        return self.code.default_severity

    def with_hint(self, hint: str) -> "SimulationError":
        self.hint = hint
        return self

    def to_gcc_format(self, location: str = "<simulation>") -> str:
        main = f"{location}: {self.severity.value}: {self.message} [{self.code}]"
        if self.hint:
            return f"{main}\nhint: {self.hint}"
        return main

    def __str__(self) -> str:
        return self.message


class ViolationError(SimulationError):
    """The modeled program would exhibit undefined behaviour."""


class UseAfterMoveError(ViolationError):
    kind = ViolationKind.USE_AFTER_MOVE


class DoubleFreeError(ViolationError):
    kind = ViolationKind.DOUBLE_FREE


class ConflictingBorrowError(ViolationError):
    kind = ViolationKind.CONFLICTING_BORROW


class DanglingReferenceError(ViolationError):
    kind = ViolationKind.DANGLING_REFERENCE


class ProtocolError(SimulationError):
    """The driver misused the simulator; fatal to the current run."""


class FrameUnderflowError(ProtocolError):
    kind = ViolationKind.FRAME_UNDERFLOW


class UnknownBindingError(ProtocolError):
    kind = ViolationKind.UNKNOWN_BINDING


class UnknownBorrowError(ProtocolError):
    kind = ViolationKind.UNKNOWN_BORROW


class InvalidOperationError(ProtocolError):
    kind = ViolationKind.INVALID_OPERATION


class RecordError(SimulationError, ValueError):
    """An operation record could not be turned into an Operation."""

    default_code = ErrorCodes.BAD_RECORD


class InvariantBreach(SimulationError):
    """A memory-model invariant failed after an operation was applied."""

    default_code = ErrorCodes.INVARIANT_BREACH

    def __init__(self, invariant: str, message: str, index: int = -1) -> None:
        super().__init__(f"invariant '{invariant}' broken after op {index}: {message}")
        self.invariant = invariant
        self.index = index


_ERROR_CLASSES: Dict[ViolationKind, Type[SimulationError]] = {
    cls.kind: cls
    for cls in (
        UseAfterMoveError, DoubleFreeError, ConflictingBorrowError,
        DanglingReferenceError, FrameUnderflowError, UnknownBindingError,
        UnknownBorrowError, InvalidOperationError,
    )
}


def error_for(kind: ViolationKind, message: str,
              binding: Optional[str] = None) -> SimulationError:
    """Instantiate the exception class that corresponds to *kind*."""
    return _ERROR_CLASSES[kind](message, binding)
