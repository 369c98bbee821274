# borrowsim/detector.py
"""
Violation detector.

Given an attempted access and the binding it targets, decide whether the
binding's current permission triple allows it.  The answer is either
``None`` (allowed) or the precise taxonomy kind plus a message:

    read   needs R            write  needs R+W
    move   needs R+O          drop   needs O
    copy   needs R            borrow needs R (shared) / R+W (exclusive)

References are checked twice: their own pointer permissions, then their
*view* of the referent.  A reference whose referent has gone away is
dangling no matter what its permissions say.

:meth:`ViolationDetector.check` returns a :class:`Violation` record;
:meth:`ViolationDetector.require` raises the matching exception and is
what the engines call before mutating anything.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from borrowsim.bindings import Binding, BindingState, BindingTable, ValueKind
from borrowsim.errors import Violation, ViolationKind, error_for
from borrowsim.memory_model import Allocation, FreeReason, MemoryModel
from borrowsim.permissions import (
    NONE,
    POINTER,
    READ_ONLY,
    READ_WRITE,
    PermissionState,
)

if TYPE_CHECKING:
    from borrowsim.borrows import Borrow, BorrowArena

_log = logging.getLogger(__name__)


class Access(enum.Enum):
    """Kinds of access the detector can be asked about (value = verb)."""
    READ = "read"
    WRITE = "write to"
    MOVE = "move"
    COPY = "copy"
    DROP = "drop"
    BORROW_SHARED = "borrow"
    BORROW_EXCLUSIVE = "mutably borrow"
    REBORROW = "reborrow"


_OWNER_REQUIREMENTS: Dict[Access, PermissionState] = {
    Access.READ: READ_ONLY,
    Access.WRITE: READ_WRITE,
    Access.MOVE: POINTER,
    Access.COPY: READ_ONLY,
    Access.DROP: PermissionState(own=True),
    Access.BORROW_SHARED: READ_ONLY,
    Access.BORROW_EXCLUSIVE: READ_WRITE,
}

# (pointer permissions, view permissions)
_REFERENCE_REQUIREMENTS: Dict[Access, Tuple[PermissionState, PermissionState]] = {
    Access.READ: (READ_ONLY, READ_ONLY),
    Access.WRITE: (READ_ONLY, READ_WRITE),
    Access.MOVE: (POINTER, NONE),
    Access.COPY: (READ_ONLY, NONE),
    Access.REBORROW: (POINTER, READ_WRITE),
}

Finding = Optional[Tuple[ViolationKind, str]]


def _article(word: str) -> str:
    return f"an {word}" if word[:1] in "aeiou" else f"a {word}"


class ViolationDetector:
    """Permission checks over the live memory state."""

    def __init__(self, memory: MemoryModel, bindings: BindingTable,
                 arena: "BorrowArena") -> None:
        self._memory = memory
        self._bindings = bindings
        self._arena = arena

    # -- public API --------------------------------------------------------

    def check(self, access: Access, binding: Binding) -> Optional[Violation]:
        finding = self._diagnose(access, binding)
        if finding is None:
            return None
        kind, message = finding
        return Violation(kind, binding.name, message)

    def require(self, access: Access, binding: Binding) -> None:
        """Raise the taxonomy exception if *access* is not permitted."""
        finding = self._diagnose(access, binding)
        if finding is not None:
            kind, message = finding
            _log.debug("%s on %s refused: %s", access.name, binding.key, kind.value)
            raise error_for(kind, message, binding.name)

    def is_dangling(self, borrow: "Borrow") -> bool:
        """True once the data *borrow* designates no longer exists."""
        if borrow.dangling:
            return True
        if self._bindings.get(borrow.referent).state.is_terminal:
            return True
        if borrow.address is not None:
            return self._memory.get(borrow.address).is_freed
        return False

    def dangling_reason(self, borrow: "Borrow") -> str:
        """Why *borrow* dangles, phrased for a diagnostic."""
        referent = self._bindings.get(borrow.referent)
        if (not borrow.dangling and not referent.state.is_terminal
                and borrow.address is not None):
            block = self._memory.get(borrow.address)
            if block.freed_by is FreeReason.REALLOC:
                return (f"allocation @{borrow.address} of '{borrow.referent_name}' "
                        f"was reallocated")
        return f"it outlives '{borrow.referent_name}', which it borrows"

    # -- internals ---------------------------------------------------------

    def _allocation(self, binding: Binding) -> Optional[Allocation]:
        if binding.kind.owns_heap and binding.address is not None:
            return self._memory.get(binding.address)
        return None

    def _diagnose(self, access: Access, binding: Binding) -> Finding:
        name = binding.name
        verb = access.value
        state = binding.state

        if access is Access.DROP and (state.is_terminal
                                      or state is BindingState.UNINITIALIZED):
            return None
        if state is BindingState.MOVED_FROM:
            return (ViolationKind.USE_AFTER_MOVE,
                    f"cannot {verb} '{name}': its value was moved out")
        if state is BindingState.DROPPED:
            return (ViolationKind.USE_AFTER_MOVE,
                    f"cannot {verb} '{name}': it was already dropped")
        if state is BindingState.UNINITIALIZED:
            if access is Access.WRITE and binding.kind is ValueKind.SCALAR:
                return None
            return (ViolationKind.USE_AFTER_MOVE,
                    f"cannot {verb} '{name}': it is not initialised")

        if binding.kind is ValueKind.REFERENCE:
            return self._diagnose_reference(access, binding)

        block = self._allocation(binding)
        if block is not None and block.is_freed:
            if access is Access.DROP:
                return (ViolationKind.DOUBLE_FREE,
                        f"dropping '{name}' would free @{block.address} a second time")
            return (ViolationKind.DANGLING_REFERENCE,
                    f"cannot {verb} '{name}': it points at freed allocation "
                    f"@{block.address}")

        required = _OWNER_REQUIREMENTS.get(access)
        if required is None:
            return (ViolationKind.INVALID_OPERATION,
                    f"cannot {verb} '{name}': it is not a reference")
        if binding.permissions.allows(required):
            return None

        missing = binding.permissions.missing(required)
        live = self._arena.live_on(binding.serial)
        if access is Access.MOVE:
            if live:
                return (ViolationKind.USE_AFTER_MOVE,
                        f"cannot move out of '{name}' while it is borrowed "
                        f"by '{live[-1].reference_name}'")
            return (ViolationKind.USE_AFTER_MOVE,
                    f"cannot move '{name}': it lacks {missing}")
        if live:
            return (ViolationKind.CONFLICTING_BORROW,
                    f"cannot {verb} '{name}' while it has {_article(live[-1].kind.value)} "
                    f"borrow held by '{live[-1].reference_name}'")
        return (ViolationKind.USE_AFTER_MOVE,
                f"cannot {verb} '{name}': it lacks {missing}")

    def _diagnose_reference(self, access: Access, ref: Binding) -> Finding:
        name = ref.name
        verb = access.value
        borrow = self._arena.find(ref.borrow_id) if ref.borrow_id is not None else None

        if borrow is None or not borrow.live:
            if access is Access.DROP:
                return None
            if borrow is None:
                return (ViolationKind.UNKNOWN_BORROW,
                        f"'{name}' does not hold a borrow")
            return (ViolationKind.UNKNOWN_BORROW,
                    f"the borrow held by '{name}' has already ended")
        if access is Access.DROP:
            return None
        if self.is_dangling(borrow):
            return (ViolationKind.DANGLING_REFERENCE,
                    f"cannot {verb} '{name}': {self.dangling_reason(borrow)}")
        if ref.state is BindingState.BORROWED_EXCLUSIVE:
            children = self._arena.children_of(borrow.id)
            holder = children[-1].reference_name if children else "?"
            return (ViolationKind.CONFLICTING_BORROW,
                    f"cannot {verb} '{name}' while it is reborrowed by '{holder}'")
        if access in (Access.BORROW_SHARED, Access.BORROW_EXCLUSIVE):
            return (ViolationKind.INVALID_OPERATION,
                    f"cannot {verb} reference '{name}'; reborrow or copy it instead")
        if access is Access.REBORROW and not ref.exclusive:
            return (ViolationKind.INVALID_OPERATION,
                    f"cannot reborrow shared reference '{name}'; copy it instead")

        pointer_need, view_need = _REFERENCE_REQUIREMENTS[access]
        if not ref.permissions.allows(pointer_need):
            return (ViolationKind.USE_AFTER_MOVE,
                    f"cannot {verb} '{name}': it lacks "
                    f"{ref.permissions.missing(pointer_need)}")
        if not ref.view.allows(view_need):
            return (ViolationKind.CONFLICTING_BORROW,
                    f"cannot {verb} through '{name}': it is a shared reference to "
                    f"'{borrow.referent_name}'")
        return None
