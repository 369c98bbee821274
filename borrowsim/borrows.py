# borrowsim/borrows.py
"""
Borrow engine.

Borrows are plain records in an arena indexed by id.  Each referent
(the owning binding) additionally has an explicit stack of the ids of
its live borrows, so nested reborrows are a chain of ``parent`` ids
rather than references pointing at references.

Permission deltas
-----------------
                      owner        reference (pointer)   view
    borrow_shared     R - -        R - O                 R - -
    borrow_exclusive  - - -        R - O                 R W -
    reborrow(r)       unchanged    r: suspended          r2: R W -

The owner's pre-borrow triple is saved when its first live borrow is
created and restored verbatim when its last live borrow ends.
"""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from borrowsim.bindings import Binding, BindingState, BindingTable, ValueKind
from borrowsim.detector import Access, ViolationDetector
from borrowsim.errors import (
    DanglingReferenceError,
    InvalidOperationError,
    UnknownBorrowError,
)
from borrowsim.permissions import NONE, POINTER, READ_ONLY, READ_WRITE, PermissionState

_log = logging.getLogger(__name__)


class BorrowKind(enum.Enum):
    SHARED = "shared"
    EXCLUSIVE = "exclusive"


@dataclass
class Borrow:
    """One borrow record.  ``address`` is the referent's heap address when taken."""
    id: int
    kind: BorrowKind
    referent: int
    referent_name: str
    reference: int
    reference_name: str
    parent: Optional[int] = None
    address: Optional[int] = None
    line: int = 0
    live: bool = True
    dangling: bool = False

    def __repr__(self) -> str:
        flags = "live" if self.live else "ended"
        if self.dangling:
            flags += ",dangling"
        return (f"Borrow({self.id}, {self.kind.value}, "
                f"{self.reference_name} -> {self.referent_name}, {flags})")


class BorrowArena:
    """Borrow records by id plus a stack of live ids per referent."""

    def __init__(self) -> None:
        self._records: Dict[int, Borrow] = {}
        self._stacks: Dict[int, List[int]] = {}
        self._ids = itertools.count(1)

    def create(
        self,
        kind: BorrowKind,
        referent: Binding,
        reference: Binding,
        *,
        parent: Optional[int] = None,
        address: Optional[int] = None,
        line: int = 0,
    ) -> Borrow:
        borrow = Borrow(
            id=next(self._ids),
            kind=kind,
            referent=referent.serial,
            referent_name=referent.name,
            reference=reference.serial,
            reference_name=reference.name,
            parent=parent,
            address=address,
            line=line,
        )
        self._records[borrow.id] = borrow
        self._stacks.setdefault(referent.serial, []).append(borrow.id)
        return borrow

    def find(self, borrow_id: int) -> Optional[Borrow]:
        return self._records.get(borrow_id)

    def get(self, borrow_id: int) -> Borrow:
        borrow = self._records.get(borrow_id)
        if borrow is None:
            raise UnknownBorrowError(f"no borrow with id {borrow_id}")
        return borrow

    def live_on(self, referent: int) -> List[Borrow]:
        """Live borrows of one referent, oldest first."""
        return [self._records[i] for i in self._stacks.get(referent, ())]

    def children_of(self, borrow_id: int) -> List[Borrow]:
        parent = self._records[borrow_id]
        return [b for b in self.live_on(parent.referent) if b.parent == borrow_id]

    def retire(self, borrow_id: int) -> Borrow:
        borrow = self.get(borrow_id)
        borrow.live = False
        stack = self._stacks.get(borrow.referent, [])
        if borrow_id in stack:
            stack.remove(borrow_id)
        if not stack:
            self._stacks.pop(borrow.referent, None)
        return borrow

    def live(self) -> List[Borrow]:
        return [b for b in self._records.values() if b.live]

    def referents(self) -> List[int]:
        return list(self._stacks)

    def __iter__(self) -> Iterator[Borrow]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


class BorrowEngine:
    """Creates and retires borrows, keeping owner/reference permissions in step."""

    def __init__(self, bindings: BindingTable, arena: BorrowArena,
                 detector: ViolationDetector) -> None:
        self._bindings = bindings
        self._arena = arena
        self._detector = detector

    # -- creation ----------------------------------------------------------

    def borrow_shared(self, owner_name: str, ref_name: str, line: int = 0) -> Binding:
        owner = self._bindings.lookup(owner_name)
        self._detector.require(Access.BORROW_SHARED, owner)
        slot = self._check_target(ref_name)
        self._save(owner)
        owner.permissions = owner.permissions.revoke(write=True, own=True)
        owner.state = BindingState.BORROWED_SHARED
        ref = self._bind(slot, ref_name, line)
        borrow = self._arena.create(BorrowKind.SHARED, owner, ref,
                                    address=owner.address, line=line)
        self._attach(ref, owner, borrow, READ_ONLY)
        return ref

    def borrow_exclusive(self, owner_name: str, ref_name: str, line: int = 0) -> Binding:
        owner = self._bindings.lookup(owner_name)
        self._detector.require(Access.BORROW_EXCLUSIVE, owner)
        slot = self._check_target(ref_name)
        self._save(owner)
        owner.permissions = NONE
        owner.state = BindingState.BORROWED_EXCLUSIVE
        ref = self._bind(slot, ref_name, line)
        borrow = self._arena.create(BorrowKind.EXCLUSIVE, owner, ref,
                                    address=owner.address, line=line)
        self._attach(ref, owner, borrow, READ_WRITE)
        return ref

    def reborrow(self, ref_name: str, new_name: str, line: int = 0) -> Binding:
        """Borrow through an exclusive reference, suspending it meanwhile."""
        parent_ref = self._bindings.lookup(ref_name)
        if parent_ref.kind is not ValueKind.REFERENCE:
            raise InvalidOperationError(
                f"cannot reborrow '{ref_name}': it is not a reference; "
                f"borrow it instead", ref_name)
        self._detector.require(Access.REBORROW, parent_ref)
        slot = self._check_target(new_name)
        parent = self._arena.get(parent_ref.borrow_id)
        owner = self._bindings.get(parent.referent)

        parent_ref.saved_permissions = parent_ref.permissions
        parent_ref.saved_view = parent_ref.view
        parent_ref.permissions = parent_ref.permissions.revoke(read=True)
        parent_ref.view = NONE
        parent_ref.state = BindingState.BORROWED_EXCLUSIVE

        child_ref = self._bind(slot, new_name, line)
        child = self._arena.create(BorrowKind.EXCLUSIVE, owner, child_ref,
                                   parent=parent.id, address=parent.address,
                                   line=line)
        self._attach(child_ref, owner, child, READ_WRITE)
        return child_ref

    def copy_shared(self, source: Binding, target: Binding) -> Borrow:
        """Duplicating a shared reference is one more shared borrow."""
        borrow = self._arena.get(source.borrow_id)
        owner = self._bindings.get(borrow.referent)
        copied = self._arena.create(BorrowKind.SHARED, owner, target,
                                    address=borrow.address, line=target.line)
        self._attach(target, owner, copied, READ_ONLY)
        return copied

    def transfer(self, source: Binding, target: Binding) -> None:
        """Move a reference: the borrow record follows the pointer."""
        borrow = self._arena.get(source.borrow_id)
        borrow.reference = target.serial
        borrow.reference_name = target.name
        target.borrow_id = borrow.id
        target.referent = source.referent
        target.exclusive = source.exclusive
        target.view = source.view
        target.permissions = POINTER
        source.borrow_id = None
        source.view = NONE

    # -- retirement --------------------------------------------------------

    def end_borrow(self, ref_name: str) -> List[Borrow]:
        """
        Retire the borrow held by *ref_name* and any live reborrows of it.

        Returns the retired records, innermost first.  A borrow whose
        referent is already gone is still retired, then reported as
        :class:`DanglingReferenceError`.
        """
        ref = self._bindings.lookup(ref_name)
        if ref.kind is not ValueKind.REFERENCE or ref.borrow_id is None:
            raise UnknownBorrowError(f"'{ref_name}' does not hold a borrow", ref_name)
        borrow = self._arena.get(ref.borrow_id)
        if not borrow.live:
            raise UnknownBorrowError(
                f"the borrow held by '{ref_name}' has already ended", ref_name)
        dangling = self._detector.is_dangling(borrow)
        reason = self._detector.dangling_reason(borrow) if dangling else ""
        ended = self._retire_chain(borrow)
        if dangling:
            raise DanglingReferenceError(
                f"'{ref_name}' is dangling: {reason}",
                ref_name)
        return ended

    def release(self, ref: Binding) -> Optional[Borrow]:
        """
        End the borrow of a reference that is being dropped.

        Live reborrows do not depend on the dropped pointer itself, so
        they are handed up to the grandparent borrow (or become top-level
        borrows of the owner).
        """
        if ref.borrow_id is None:
            return None
        borrow = self._arena.find(ref.borrow_id)
        if borrow is None or not borrow.live:
            return None
        for child in self._arena.children_of(borrow.id):
            child.parent = borrow.parent
        self._arena.retire(borrow.id)
        ref.view = NONE
        self._restore(borrow)
        _log.debug("released %r", borrow)
        return borrow

    def orphan(self, owner: Binding) -> List[Borrow]:
        """Mark every live borrow of *owner* dangling; the owner is going away."""
        live = self._arena.live_on(owner.serial)
        for borrow in live:
            borrow.dangling = True
            _log.debug("%r now dangling", borrow)
        return live

    def retarget(self, owner: Binding, old_address: int, new_address: int) -> None:
        for borrow in self._arena.live_on(owner.serial):
            if borrow.address == old_address:
                borrow.address = new_address
                self._bindings.get(borrow.reference).slot.address = new_address

    # -- internals ---------------------------------------------------------

    def _check_target(self, ref_name: str) -> Optional[Binding]:
        """
        An uninitialised reference binding receives the borrow; any other
        name gets a fresh declaration in the top frame.
        """
        existing = self._bindings.find(ref_name)
        if existing is None or existing.state is not BindingState.UNINITIALIZED:
            return None
        if existing.kind is not ValueKind.REFERENCE:
            raise InvalidOperationError(
                f"cannot store a reference in {existing.kind.value} binding "
                f"'{ref_name}'", ref_name)
        return existing

    def _bind(self, existing: Optional[Binding], ref_name: str, line: int) -> Binding:
        if existing is not None:
            existing.state = BindingState.OWNED
            return existing
        return self._bindings.declare(ref_name, ValueKind.REFERENCE, line=line)

    def _attach(self, ref: Binding, owner: Binding, borrow: Borrow,
                view: PermissionState) -> None:
        ref.permissions = POINTER
        ref.borrow_id = borrow.id
        ref.referent = owner.serial
        ref.exclusive = borrow.kind is BorrowKind.EXCLUSIVE
        ref.view = view
        ref.slot.address = owner.address
        _log.debug("created %r", borrow)

    def _save(self, owner: Binding) -> None:
        if not self._arena.live_on(owner.serial):
            owner.saved_permissions = owner.permissions

    def _retire_chain(self, borrow: Borrow) -> List[Borrow]:
        chain: List[Borrow] = []
        pending = [borrow]
        while pending:
            current = pending.pop()
            chain.append(current)
            pending.extend(self._arena.children_of(current.id))
        for current in reversed(chain):
            self._arena.retire(current.id)
            self._bindings.get(current.reference).view = NONE
            self._restore(current)
            _log.debug("ended %r", current)
        return list(reversed(chain))

    def _restore(self, borrow: Borrow) -> None:
        if borrow.parent is not None:
            parent = self._arena.get(borrow.parent)
            if parent.live and not self._arena.children_of(parent.id):
                holder = self._bindings.get(parent.reference)
                if holder.state is BindingState.BORROWED_EXCLUSIVE:
                    holder.permissions = holder.saved_permissions or POINTER
                    holder.view = holder.saved_view or NONE
                    holder.saved_permissions = None
                    holder.saved_view = None
                    holder.state = BindingState.OWNED
            return
        owner = self._bindings.get(borrow.referent)
        if owner.state.is_borrowed and not self._arena.live_on(owner.serial):
            if owner.saved_permissions is not None:
                owner.permissions = owner.saved_permissions
            owner.saved_permissions = None
            owner.state = BindingState.OWNED
