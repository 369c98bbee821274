# borrowsim/invariants.py
"""
Safety invariants of the memory model, checked after every step.

These are properties of the *simulator*, not of the modeled program: a
correct engine keeps them true whatever operation log it is fed.  A
breach therefore means a bug here, and is raised as
:class:`InvariantBreach` rather than reported as a violation.

Properties
----------
single-owner       at most one live binding owns each live allocation
borrow-exclusivity a referent's live top-level borrows are all shared,
                   or there is exactly one exclusive; each borrow has at
                   most one live reborrow
freed-unowned      a freed allocation has no recorded owner
frame-stack        frames are numbered 0..depth-1 with no gaps
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

from borrowsim.bindings import BindingState, ValueKind
from borrowsim.borrows import BorrowKind
from borrowsim.errors import InvariantBreach

if TYPE_CHECKING:
    from borrowsim.simulator import Simulator

_log = logging.getLogger(__name__)

# A check returns None when the property holds, else a diagnosis.
CheckFn = Callable[["Simulator"], Optional[str]]


@dataclass(frozen=True)
class PropertySpec:
    """A named invariant over the simulator state."""
    name: str
    description: str
    check: CheckFn

    def holds(self, sim: "Simulator") -> bool:
        return self.check(sim) is None

    def diagnostic(self, sim: "Simulator") -> str:
        return self.check(sim) or ""


def _single_owner(sim: "Simulator") -> Optional[str]:
    claims: Counter = Counter()
    for binding in sim.bindings:
        if not binding.kind.owns_heap or binding.address is None:
            continue
        if binding.state in (BindingState.OWNED, BindingState.BORROWED_SHARED,
                             BindingState.BORROWED_EXCLUSIVE):
            if sim.memory.get(binding.address).is_live:
                claims[binding.address] += 1
    for block in sim.memory.live_allocations():
        if claims[block.address] > 1:
            return f"allocation @{block.address} has {claims[block.address]} live owners"
        if block.owner is not None:
            owner = sim.bindings.get(block.owner)
            if owner.address != block.address or not owner.is_live:
                return (f"allocation @{block.address} records owner "
                        f"'{owner.name}', which does not own it")
    return None


def _borrow_exclusivity(sim: "Simulator") -> Optional[str]:
    for referent in sim.arena.referents():
        live = sim.arena.live_on(referent)
        top = [b for b in live if b.parent is None]
        exclusive = [b for b in top if b.kind is BorrowKind.EXCLUSIVE]
        if exclusive and len(top) > 1:
            return (f"'{top[0].referent_name}' has an exclusive borrow alongside "
                    f"{len(top) - 1} other borrow(s)")
        for borrow in live:
            if len(sim.arena.children_of(borrow.id)) > 1:
                return f"borrow {borrow.id} has more than one live reborrow"
    return None


def _freed_unowned(sim: "Simulator") -> Optional[str]:
    for block in sim.memory.allocations:
        if block.is_freed and block.owner is not None:
            return f"freed allocation @{block.address} still has an owner"
    return None


def _frame_stack(sim: "Simulator") -> Optional[str]:
    for position, frame in enumerate(sim.memory.frames):
        if frame.index != position:
            return f"frame at depth {position} is numbered {frame.index}"
    for binding in sim.bindings:
        if binding.kind is ValueKind.REFERENCE and binding.borrow_id is not None:
            borrow = sim.arena.find(binding.borrow_id)
            if borrow is not None and borrow.live and borrow.reference != binding.serial:
                return f"'{binding.name}' holds borrow {borrow.id} owned by another binding"
    return None


DEFAULT_PROPERTIES: List[PropertySpec] = [
    PropertySpec("single-owner",
                 "at most one live binding holds Own over an allocation",
                 _single_owner),
    PropertySpec("borrow-exclusivity",
                 "shared borrows XOR one exclusive borrow per referent",
                 _borrow_exclusivity),
    PropertySpec("freed-unowned",
                 "freed allocations have no owner",
                 _freed_unowned),
    PropertySpec("frame-stack",
                 "frames form a gap-free LIFO stack",
                 _frame_stack),
]


class InvariantMonitor:
    """
    Checks a set of properties against a simulator.

    >>> monitor = InvariantMonitor()
    >>> monitor.add_property(PropertySpec("custom", "...", my_check))
    >>> monitor.check(sim, index=3)      # raises InvariantBreach on failure
    """

    def __init__(self, properties: Optional[List[PropertySpec]] = None) -> None:
        self._properties = list(DEFAULT_PROPERTIES if properties is None else properties)

    @property
    def properties(self) -> List[PropertySpec]:
        return list(self._properties)

    def add_property(self, prop: PropertySpec) -> "InvariantMonitor":
        """Fluent API: add a property to check."""
        self._properties.append(prop)
        return self

    def breaches(self, sim: "Simulator") -> List[InvariantBreach]:
        found = []
        for prop in self._properties:
            diagnosis = prop.check(sim)
            if diagnosis is not None:
                found.append(InvariantBreach(prop.name, diagnosis))
        return found

    def check(self, sim: "Simulator", index: int = -1) -> None:
        for prop in self._properties:
            diagnosis = prop.check(sim)
            if diagnosis is not None:
                _log.error("invariant %s broken after op %d: %s",
                           prop.name, index, diagnosis)
                raise InvariantBreach(prop.name, diagnosis, index)
