# borrowsim/ownership.py
"""
Ownership engine: declaration, move, copy, drop, scope exit, and the
value-level read/write/grow operations.

Every public method asks the :class:`ViolationDetector` first and only
mutates state once the access is known to be legal, so a refused
operation leaves the model exactly as it was.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from borrowsim.bindings import Binding, BindingState, BindingTable, ValueKind
from borrowsim.borrows import BorrowEngine
from borrowsim.detector import Access, ViolationDetector
from borrowsim.errors import (
    FrameUnderflowError,
    InvalidOperationError,
    ViolationError,
)
from borrowsim.memory_model import Allocation, Frame, MemoryModel, StackSlot
from borrowsim.permissions import FULL, NONE

_log = logging.getLogger(__name__)

BOX_DEFAULT_SIZE = 8

Value = Union[int, bytes, None]


class OwnershipEngine:
    """Owns the value lifecycle of every binding."""

    def __init__(self, memory: MemoryModel, bindings: BindingTable,
                 detector: ViolationDetector, borrows: BorrowEngine) -> None:
        self._memory = memory
        self._bindings = bindings
        self._detector = detector
        self._borrows = borrows

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def declare(
        self,
        name: str,
        kind: ValueKind,
        *,
        size: Optional[int] = None,
        capacity: Optional[int] = None,
        value: Optional[int] = None,
        uninit: bool = False,
        adopt: Optional[int] = None,
        line: int = 0,
    ) -> Binding:
        """
        Declare a binding in the top frame.

        Parameters
        ----------
        kind:
            ``SCALAR`` holds ``value`` inline.  ``BOX`` and ``HEAP`` allocate
            (``size``/``capacity``) unless ``adopt`` names an existing
            allocation.  ``REFERENCE`` may only be declared ``uninit``;
            a borrow fills it later.
        uninit:
            Declare without a value; the first move, copy, borrow or
            scalar write initialises it.
        adopt:
            Address of an allocation that currently has no live owner.
        """
        if self._memory.depth == 0:
            raise FrameUnderflowError(f"cannot declare '{name}' outside any frame", name)
        if uninit:
            if adopt is not None or size is not None or value is not None:
                raise InvalidOperationError(
                    f"'{name}' is declared uninit and cannot take a value", name)
            return self._bindings.declare(
                name, kind, state=BindingState.UNINITIALIZED, line=line)
        if kind is ValueKind.REFERENCE:
            raise InvalidOperationError(
                f"reference '{name}' must be declared uninit; borrows create "
                f"references", name)
        if kind is ValueKind.SCALAR:
            if adopt is not None or size is not None or capacity is not None:
                raise InvalidOperationError(
                    f"scalar '{name}' has no heap allocation", name)
            binding = self._bindings.declare(name, kind, line=line)
            binding.slot.value = value if value is not None else 0
            return binding

        if adopt is not None:
            block = self._memory.get(adopt)
            current = self._bindings.owner_of(block)
            if block.is_live and current is not None and current.is_live:
                raise InvalidOperationError(
                    f"allocation @{adopt} is already owned by '{current.name}'", name)
        else:
            if kind is ValueKind.BOX:
                size = BOX_DEFAULT_SIZE if size is None else size
                if capacity is not None and capacity != size:
                    raise InvalidOperationError(
                        f"box '{name}' cannot have a separate capacity", name)
            block = self._memory.allocate(size or 0, capacity)
            if value is not None:
                self._store(block, value)

        binding = self._bindings.declare(name, kind, line=line)
        binding.slot.point_at(block)
        if block.is_live:
            block.owner, block.owner_name = binding.serial, binding.name
        return binding

    # ------------------------------------------------------------------
    # Move / copy
    # ------------------------------------------------------------------

    def move(self, src: str, dest: str, line: int = 0) -> Binding:
        """
        Transfer ownership from *src* to *dest*.

        Copy-capable sources are copied instead.  *dest* may be a new
        name, an uninitialised binding, or a live binding of the same
        kind, in which case its old value is dropped first.
        """
        source = self._bindings.lookup(src)
        if source.copyable:
            return self.copy(src, dest, line)
        self._detector.require(Access.MOVE, source)
        if self._bindings.find(dest) is source:
            return source
        target = self._claim_target(dest, source.kind, line)

        target.slot.assign_from(source.slot)
        if source.kind is ValueKind.REFERENCE:
            self._borrows.transfer(source, target)
        else:
            target.permissions = FULL
            if source.kind.owns_heap and source.address is not None:
                block = self._memory.get(source.address)
                if block.is_live:
                    block.owner, block.owner_name = target.serial, target.name
        target.state = BindingState.OWNED
        source.permissions = NONE
        source.state = BindingState.MOVED_FROM
        _log.debug("moved %s -> %s", source.key, target.key)
        return target

    def copy(self, src: str, dest: str, line: int = 0) -> Binding:
        source = self._bindings.lookup(src)
        if not source.copyable:
            raise InvalidOperationError(
                f"'{src}' is a {source.kind.value} value and cannot be copied; "
                f"move it instead", src)
        self._detector.require(Access.COPY, source)
        if self._bindings.find(dest) is source:
            return source
        target = self._claim_target(dest, source.kind, line)

        target.slot.assign_from(source.slot)
        target.state = BindingState.OWNED
        if source.kind is ValueKind.REFERENCE:
            self._borrows.copy_shared(source, target)
        else:
            target.permissions = FULL
        _log.debug("copied %s -> %s", source.key, target.key)
        return target

    def _claim_target(self, dest: str, kind: ValueKind, line: int) -> Binding:
        existing = self._bindings.find(dest)
        if existing is None or existing.state.is_terminal:
            return self._bindings.declare(dest, kind, line=line)
        if existing.kind is not kind:
            raise InvalidOperationError(
                f"cannot store a {kind.value} value in {existing.kind.value} "
                f"binding '{dest}'", dest)
        if existing.state is BindingState.UNINITIALIZED:
            return existing
        if kind is not ValueKind.REFERENCE:
            self._detector.require(Access.WRITE, existing)
        self._release(existing)
        return existing

    # ------------------------------------------------------------------
    # Drop / scope exit
    # ------------------------------------------------------------------

    def drop(self, name: str) -> Optional[Allocation]:
        """
        Destroy *name* now.

        Moved-from, dropped and uninitialised bindings make this a no-op.
        Returns the freed allocation, if any.
        """
        binding = self._bindings.lookup(name)
        if binding.state.is_terminal or binding.state is BindingState.UNINITIALIZED:
            _log.debug("drop %s is a no-op (%s)", binding.key, binding.state.value)
            return None
        self._detector.require(Access.DROP, binding)
        block = self._release(binding)
        binding.permissions = NONE
        binding.state = BindingState.DROPPED
        return block

    def exit_scope(self) -> Frame:
        """
        Pop the top frame, dropping its bindings newest first.

        Every drop runs even when an earlier one fails; the first failure
        is raised afterwards with the others in ``related``.
        """
        frame = self._memory.top_frame
        errors: List[ViolationError] = []

        def on_drop(slot: StackSlot) -> None:
            binding = self._bindings.get(slot.serial)
            if binding.state.is_terminal or binding.state is BindingState.UNINITIALIZED:
                return
            if binding.kind is not ValueKind.REFERENCE:
                self._borrows.orphan(binding)
            try:
                self._release(binding)
            except ViolationError as exc:
                errors.append(exc)
            binding.permissions = NONE
            binding.state = BindingState.DROPPED

        self._memory.pop_frame(on_drop)
        self._bindings.remove_scope(frame.index)
        if errors:
            first = errors[0]
            first.related.extend(errors[1:])
            raise first
        return frame

    def _release(self, binding: Binding) -> Optional[Allocation]:
        if binding.kind is ValueKind.REFERENCE:
            self._borrows.release(binding)
            return None
        if binding.kind.owns_heap and binding.address is not None:
            return self._memory.free(binding.address, by=binding.name)
        return None

    # ------------------------------------------------------------------
    # Value access
    # ------------------------------------------------------------------

    def read(self, name: str) -> Value:
        binding = self._bindings.lookup(name)
        self._detector.require(Access.READ, binding)
        return self._load(self._data_owner(binding))

    def write(self, name: str, value: Optional[int] = None) -> None:
        binding = self._bindings.lookup(name)
        self._detector.require(Access.WRITE, binding)
        if binding.state is BindingState.UNINITIALIZED:
            binding.state = BindingState.OWNED
            binding.permissions = FULL
        target = self._data_owner(binding)
        if target.kind is ValueKind.SCALAR:
            if value is not None:
                target.slot.value = value
            elif target.slot.value is None:
                target.slot.value = 0
        elif value is not None:
            self._store(self._memory.get(target.address), value)

    def grow(self, name: str, capacity: int) -> Allocation:
        """Reallocate a heap value through its owner or an exclusive reference."""
        binding = self._bindings.lookup(name)
        self._detector.require(Access.WRITE, binding)
        target = self._data_owner(binding)
        if target.kind is not ValueKind.HEAP:
            raise InvalidOperationError(
                f"cannot grow '{name}': only heap values are growable", name)
        old_address = target.address
        block = self._memory.grow(old_address, capacity)
        target.slot.point_at(block)
        self._borrows.retarget(target, old_address, block.address)
        return block

    def grow_address(self, address: int, capacity: int) -> Allocation:
        """
        Reallocate by raw address, bypassing every permission check.

        The owner (if any) follows the new address; references keep the
        old one and dangle.
        """
        owner = self._bindings.owner_of(self._memory.get(address))
        block = self._memory.grow(address, capacity)
        if owner is not None:
            owner.slot.point_at(block)
        return block

    def _data_owner(self, binding: Binding) -> Binding:
        if binding.kind is ValueKind.REFERENCE and binding.referent is not None:
            return self._bindings.get(binding.referent)
        return binding

    def _load(self, binding: Binding) -> Value:
        if binding.kind is ValueKind.SCALAR:
            return binding.slot.value
        if binding.address is None:
            return None
        return bytes(self._memory.get(binding.address).content)

    @staticmethod
    def _store(block: Allocation, value: int) -> None:
        if block.size:
            block.content[0] = value & 0xFF
