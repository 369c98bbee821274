# borrowsim/bindings.py
"""
Binding table: names → stack slots, heap targets and permission state.

Scopes mirror the memory model's frames one to one.  Lookup walks the
frames innermost first and, within a frame, newest declaration first,
which gives ordinary shadowing semantics.  Bindings that are moved-from
or dropped stay in their scope until it exits so that later uses can be
diagnosed; every binding ever created also stays reachable by serial
number for the reports.
"""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from borrowsim.errors import InvalidOperationError, UnknownBindingError
from borrowsim.memory_model import Allocation, MemoryModel, SlotKind, StackSlot
from borrowsim.permissions import FULL, NONE, READ_ONLY, PermissionState

_log = logging.getLogger(__name__)


class BindingState(enum.Enum):
    """
    Uninitialized → Owned → {MovedFrom | Borrowed(...) → Owned | Dropped}
    """
    UNINITIALIZED = "uninitialized"
    OWNED = "owned"
    BORROWED_SHARED = "borrowed-shared"
    BORROWED_EXCLUSIVE = "borrowed-exclusive"
    MOVED_FROM = "moved-from"
    DROPPED = "dropped"

    @property
    def is_terminal(self) -> bool:
        return self in (BindingState.MOVED_FROM, BindingState.DROPPED)

    @property
    def is_borrowed(self) -> bool:
        return self in (BindingState.BORROWED_SHARED,
                        BindingState.BORROWED_EXCLUSIVE)


class ValueKind(enum.Enum):
    SCALAR = "scalar"       # plain bits, copyable
    BOX = "box"             # thin pointer owning one heap allocation
    HEAP = "heap"           # fat pointer owning a growable allocation
    REFERENCE = "ref"       # produced by a borrow

    @property
    def slot_kind(self) -> SlotKind:
        return _SLOT_KINDS[self]

    @property
    def owns_heap(self) -> bool:
        return self in (ValueKind.BOX, ValueKind.HEAP)


_SLOT_KINDS = {
    ValueKind.SCALAR: SlotKind.SCALAR,
    ValueKind.BOX: SlotKind.THIN_POINTER,
    ValueKind.HEAP: SlotKind.FAT_POINTER,
    ValueKind.REFERENCE: SlotKind.THIN_POINTER,
}


@dataclass(eq=False)
class Binding:
    """
    One binding instance.

    Owners use ``saved_permissions`` to remember their triple while
    borrowed.  Reference bindings carry the id of the borrow they hold,
    the serial of their referent and their ``view`` of its data; when a
    reference is itself reborrowed its view is parked in ``saved_view``.
    """
    name: str
    kind: ValueKind
    serial: int
    frame_index: int
    slot: StackSlot
    permissions: PermissionState = FULL
    state: BindingState = BindingState.OWNED
    line: int = 0
    borrow_id: Optional[int] = None
    referent: Optional[int] = None
    exclusive: bool = False
    view: PermissionState = NONE
    saved_permissions: Optional[PermissionState] = None
    saved_view: Optional[PermissionState] = None

    @property
    def address(self) -> Optional[int]:
        return self.slot.address

    @property
    def copyable(self) -> bool:
        """Scalars and shared references duplicate instead of moving."""
        if self.kind is ValueKind.SCALAR:
            return True
        return self.kind is ValueKind.REFERENCE and not self.exclusive

    @property
    def is_live(self) -> bool:
        return not self.state.is_terminal

    @property
    def key(self) -> str:
        return f"{self.name}#{self.serial}"

    def describe(self) -> str:
        text = f"{self.name}: {self.kind.value} {self.permissions} {self.state.value} = {self.slot}"
        if self.kind is ValueKind.REFERENCE and self.borrow_id is not None:
            text += f" (borrow {self.borrow_id}, view {self.view})"
        return text

    def __repr__(self) -> str:
        return f"Binding({self.key}, {self.kind.value}, {self.permissions}, {self.state.value})"


@dataclass
class _Scope:
    frame_index: int
    bindings: List[Binding] = field(default_factory=list)


class BindingTable:
    """Lexically scoped table of :class:`Binding` objects."""

    def __init__(self, memory: MemoryModel) -> None:
        self._memory = memory
        self._scopes: List[_Scope] = []
        self._registry: Dict[int, Binding] = {}
        self._serials = itertools.count(1)

    # -- declaration -------------------------------------------------------

    def declare(
        self,
        name: str,
        kind: ValueKind,
        *,
        state: BindingState = BindingState.OWNED,
        permissions: Optional[PermissionState] = None,
        line: int = 0,
    ) -> Binding:
        """
        Declare *name* in the top frame.

        Owners start with full (R,W,O); references start without Own
        until a borrow hands them their pointer.  Uninitialised bindings
        start with nothing.
        """
        frame = self._memory.top_frame
        if not name.isidentifier():
            raise InvalidOperationError(f"invalid binding name {name!r}")
        if permissions is None:
            if state is BindingState.UNINITIALIZED:
                permissions = NONE
            elif kind is ValueKind.REFERENCE:
                permissions = READ_ONLY
            else:
                permissions = FULL
        serial = next(self._serials)
        slot = self._memory.add_slot(kind.slot_kind, serial, name)
        binding = Binding(
            name=name,
            kind=kind,
            serial=serial,
            frame_index=frame.index,
            slot=slot,
            permissions=permissions,
            state=state,
            line=line,
        )
        while len(self._scopes) <= frame.index:
            self._scopes.append(_Scope(len(self._scopes)))
        self._scopes[frame.index].bindings.append(binding)
        self._registry[serial] = binding
        _log.debug("declare %s in frame %d", binding.key, frame.index)
        return binding

    # -- lookup ------------------------------------------------------------

    def find(self, name: str) -> Optional[Binding]:
        for scope in reversed(self._scopes[:self._memory.depth]):
            for binding in reversed(scope.bindings):
                if binding.name == name:
                    return binding
        return None

    def lookup(self, name: str) -> Binding:
        binding = self.find(name)
        if binding is None:
            raise UnknownBindingError(
                f"no binding named '{name}' in any live frame", name)
        return binding

    def get(self, serial: int) -> Binding:
        return self._registry[serial]

    def owner_of(self, allocation: Allocation) -> Optional[Binding]:
        if allocation.owner is None:
            return None
        return self._registry.get(allocation.owner)

    def bindings_in(self, frame_index: int) -> List[Binding]:
        if frame_index >= len(self._scopes):
            return []
        return list(self._scopes[frame_index].bindings)

    def remove_scope(self, frame_index: int) -> List[Binding]:
        """Forget the scope of a popped frame; returns its bindings."""
        removed: List[Binding] = []
        while len(self._scopes) > frame_index:
            removed.extend(self._scopes.pop().bindings)
        return removed

    def __iter__(self) -> Iterator[Binding]:
        """All bindings of live frames, outermost frame first."""
        for scope in self._scopes[:self._memory.depth]:
            yield from scope.bindings

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def __len__(self) -> int:
        return sum(len(s.bindings) for s in self._scopes[:self._memory.depth])
