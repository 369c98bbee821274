"""
simulator.py — Operation Driver for the Permission Simulator
============================================================

Feeds an ordered sequence of :class:`Operation` records through the
memory model, binding table and the two engines, one at a time.

Per record the driver produces an :class:`Outcome` (``Ok`` or
``Err(kind, binding)``).  Violations of the modeled program are recorded
and the run continues (unless ``stop_on_violation``); the offending
operation is not applied.  Protocol errors abort the run.  At the end,
allocations that are still live are listed as informational leaks.

Usage
-----
    sim = Simulator()
    result = sim.run([
        Operation.enter("main"),
        Operation.declare("x", "heap", size=3),
        Operation.move("x", "y"),
        Operation.read("x"),
    ])
    print(result.outcomes[-1])          # Err(UseAfterMove, x)

    violations = validate(operations)   # pure pass, fresh state each call
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from borrowsim.bindings import BindingTable
from borrowsim.borrows import BorrowArena, BorrowEngine
from borrowsim.detector import ViolationDetector
from borrowsim.errors import (
    ErrorCodes,
    ProtocolError,
    SimulationError,
    Violation,
    ViolationError,
)
from borrowsim.invariants import InvariantMonitor
from borrowsim.memory_model import Allocation, MemoryModel
from borrowsim.operations import OpKind, Operation, Outcome
from borrowsim.ownership import OwnershipEngine

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class SimulatorConfig:
    """Tunable knobs of a simulation run."""

    stop_on_violation: bool = False
    check_invariants: bool = True
    unwind_at_end: bool = False       # pop frames still open at end of run
    implicit_root_frame: bool = False # start with one frame already pushed
    record_trace: bool = True
    max_operations: int = 0           # 0 = unlimited
    source: str = ""                  # file name used in diagnostics

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty = valid)."""
        problems: List[str] = []
        if self.max_operations < 0:
            problems.append("max_operations must be >= 0")
        return problems


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LeakRecord:
    """An allocation still live at the end of the run (informational)."""

    address: int
    size: int
    capacity: int
    owner: Optional[str] = None

    @classmethod
    def from_allocation(cls, block: Allocation) -> "LeakRecord":
        return cls(block.address, block.size, block.capacity, block.owner_name)

    @property
    def message(self) -> str:
        holder = f"owned by '{self.owner}'" if self.owner else "with no owner"
        return (f"allocation @{self.address} ({self.size} bytes, cap "
                f"{self.capacity}) {holder} is never freed")

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": ErrorCodes.LEAK.code,
            "severity": "info",
            "address": self.address,
            "size": self.size,
            "capacity": self.capacity,
            "owner": self.owner,
            "message": self.message,
        }

    def to_gcc_format(self, location: str = "<end of run>") -> str:
        return f"{location}: info: {self.message} [{ErrorCodes.LEAK}]"

    def __str__(self) -> str:
        return self.to_gcc_format()


@dataclass
class TraceStep:
    """Snapshot of the permission state right after one operation."""

    index: int
    op: Operation
    outcome: str
    state: Dict[str, Any]

    def __str__(self) -> str:
        return f"[{self.index}] {self.op} => {self.outcome}"


@dataclass
class SimulationResult:
    outcomes: List[Outcome] = field(default_factory=list)
    violations: List[Violation] = field(default_factory=list)
    leaks: List[LeakRecord] = field(default_factory=list)
    trace: List[TraceStep] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.violations and not self.aborted

    @property
    def fatal(self) -> Optional[Violation]:
        """The protocol error that aborted the run, if any."""
        if self.aborted and self.violations:
            return self.violations[-1]
        return None

    def summary(self) -> str:
        failed = sum(1 for o in self.outcomes if not o.ok)
        lines = [
            f"Operations applied: {len(self.outcomes)}",
            f"Failed operations: {failed}",
            f"Violations: {len(self.violations)}",
            f"Leaked allocations: {len(self.leaks)}",
        ]
        if self.aborted:
            lines.append("Run aborted by a protocol error")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "aborted": self.aborted,
            "outcomes": [
                {
                    "index": o.index,
                    "op": o.op.to_record(),
                    "result": str(o),
                    "value": list(o.value) if isinstance(o.value, bytes) else o.value,
                }
                for o in self.outcomes
            ],
            "violations": [v.to_json() for v in self.violations],
            "leaks": [leak.to_json() for leak in self.leaks],
        }


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------

class SimulationAborted(RuntimeError):
    """``apply`` was called after a protocol error ended the run."""


class Simulator:
    """Single-threaded, deterministic driver over one memory model."""

    def __init__(self, config: Optional[SimulatorConfig] = None,
                 monitor: Optional[InvariantMonitor] = None) -> None:
        self.config = config or SimulatorConfig()
        problems = self.config.validate()
        if problems:
            raise ValueError("invalid SimulatorConfig: " + "; ".join(problems))

        self.memory = MemoryModel()
        self.bindings = BindingTable(self.memory)
        self.arena = BorrowArena()
        self.detector = ViolationDetector(self.memory, self.bindings, self.arena)
        self.borrows = BorrowEngine(self.bindings, self.arena, self.detector)
        self.ownership = OwnershipEngine(self.memory, self.bindings,
                                         self.detector, self.borrows)
        self.monitor = monitor or InvariantMonitor()

        self.outcomes: List[Outcome] = []
        self.violations: List[Violation] = []
        self.trace: List[TraceStep] = []
        self.aborted = False
        self._index = 0
        self._handlers: Dict[OpKind, Callable[[Operation], Any]] = {
            OpKind.ENTER: self._do_enter,
            OpKind.EXIT: self._do_exit,
            OpKind.DECLARE: self._do_declare,
            OpKind.MOVE: self._do_move,
            OpKind.COPY: self._do_copy,
            OpKind.ALLOCATE: self._do_allocate,
            OpKind.GROW: self._do_grow,
            OpKind.BORROW_SHARED: self._do_borrow_shared,
            OpKind.BORROW_EXCLUSIVE: self._do_borrow_exclusive,
            OpKind.REBORROW: self._do_reborrow,
            OpKind.END_BORROW: self._do_end_borrow,
            OpKind.READ: self._do_read,
            OpKind.WRITE: self._do_write,
            OpKind.DROP: self._do_drop,
        }
        if self.config.implicit_root_frame:
            self.memory.push_frame("<root>")

    # -- driving -----------------------------------------------------------

    def apply(self, op: Operation) -> Outcome:
        """Check and apply one operation."""
        if self.aborted:
            raise SimulationAborted("the run was aborted by a protocol error")
        index = self._index
        self._index += 1
        outcome = Outcome(op=op, index=index)
        try:
            outcome.value = self._handlers[op.kind](op)
        except ProtocolError as exc:
            self.aborted = True
            outcome.violation = self._record(exc, index, op)
            _log.warning("op %d (%s) aborted the run: %s", index, op.kind.value, exc)
        except ViolationError as exc:
            outcome.violation = self._record(exc, index, op)
            for extra in exc.related:
                outcome.related.append(self._record(extra, index, op))
            _log.info("op %d (%s): %s", index, op.kind.value, exc)
        else:
            _log.debug("op %d (%s) ok", index, op.kind.value)

        if self.config.check_invariants:
            self.monitor.check(self, index)
        if self.config.record_trace:
            self.trace.append(TraceStep(index, op, str(outcome), self.snapshot()))
        self.outcomes.append(outcome)
        return outcome

    def run(self, operations: Iterable[Operation]) -> SimulationResult:
        """Apply *operations* in order and return the full result."""
        limit = self.config.max_operations
        for count, op in enumerate(operations):
            if limit and count >= limit:
                _log.warning("stopping after max_operations=%d", limit)
                break
            outcome = self.apply(op)
            if self.aborted:
                break
            if not outcome.ok and self.config.stop_on_violation:
                _log.info("stopping at first violation (op %d)", outcome.index)
                break
        if self.config.unwind_at_end and not self.aborted:
            while self.memory.depth:
                self.apply(Operation.exit("<unwind>"))
        return self.result()

    def result(self) -> SimulationResult:
        return SimulationResult(
            outcomes=list(self.outcomes),
            violations=list(self.violations),
            leaks=self.leaks(),
            trace=list(self.trace),
            aborted=self.aborted,
        )

    def leaks(self) -> List[LeakRecord]:
        return [LeakRecord.from_allocation(b) for b in self.memory.live_allocations()]

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view of frames, bindings, heap and live borrows."""
        frames = []
        for frame in self.memory.frames:
            frames.append({
                "index": frame.index,
                "label": frame.label,
                "bindings": [
                    {
                        "name": b.name,
                        "kind": b.kind.value,
                        "permissions": str(b.permissions),
                        "view": str(b.view) if b.borrow_id is not None else None,
                        "state": b.state.value,
                        "slot": str(b.slot),
                    }
                    for b in self.bindings.bindings_in(frame.index)
                ],
            })
        heap = [
            {
                "address": block.address,
                "size": block.size,
                "capacity": block.capacity,
                "status": block.status.value,
                "owner": block.owner_name,
            }
            for block in self.memory.allocations
        ]
        borrows = [
            {
                "id": b.id,
                "kind": b.kind.value,
                "reference": b.reference_name,
                "referent": b.referent_name,
                "parent": b.parent,
                "dangling": b.dangling,
            }
            for b in self.arena.live()
        ]
        return {"frames": frames, "heap": heap, "borrows": borrows}

    def _record(self, exc: SimulationError, index: int, op: Operation) -> Violation:
        violation = Violation.from_error(exc, index, op.line, self.config.source)
        self.violations.append(violation)
        return violation

    # -- handlers ----------------------------------------------------------

    def _do_enter(self, op: Operation) -> None:
        self.memory.push_frame(op.label)

    def _do_exit(self, op: Operation) -> None:
        self.ownership.exit_scope()

    def _do_declare(self, op: Operation) -> None:
        self.ownership.declare(
            op.name, op.value_kind,
            size=op.size, capacity=op.capacity, value=op.value,
            uninit=op.uninit, adopt=op.address, line=op.line,
        )

    def _do_move(self, op: Operation) -> None:
        self.ownership.move(op.name, op.to, op.line)

    def _do_copy(self, op: Operation) -> None:
        self.ownership.copy(op.name, op.to, op.line)

    def _do_allocate(self, op: Operation) -> int:
        return self.memory.allocate(op.size, op.capacity).address

    def _do_grow(self, op: Operation) -> int:
        if op.address is not None:
            return self.ownership.grow_address(op.address, op.capacity).address
        return self.ownership.grow(op.name, op.capacity).address

    def _do_borrow_shared(self, op: Operation) -> None:
        self.borrows.borrow_shared(op.name, op.to, op.line)

    def _do_borrow_exclusive(self, op: Operation) -> None:
        self.borrows.borrow_exclusive(op.name, op.to, op.line)

    def _do_reborrow(self, op: Operation) -> None:
        self.borrows.reborrow(op.name, op.to, op.line)

    def _do_end_borrow(self, op: Operation) -> None:
        self.borrows.end_borrow(op.name)

    def _do_read(self, op: Operation) -> Any:
        return self.ownership.read(op.name)

    def _do_write(self, op: Operation) -> None:
        self.ownership.write(op.name, op.value)

    def _do_drop(self, op: Operation) -> None:
        self.ownership.drop(op.name)


def validate(operations: Iterable[Operation],
             config: Optional[SimulatorConfig] = None) -> List[Violation]:
    """
    Pure validation pass: run *operations* on a private simulator and
    return every violation found.  No trace is kept and no state leaks
    out of the call.
    """
    private = replace(config or SimulatorConfig(), record_trace=False)
    return Simulator(private).run(operations).violations
