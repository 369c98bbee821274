"""
memory_model.py — Stack and Heap for the Permission Simulator
=============================================================

Two independent halves:

  Stack : an ordered list of :class:`Frame` objects, each an ordered list
          of fixed-size :class:`StackSlot` cells.  Frames are strictly
          LIFO.
  Heap  : a map from integer address to :class:`Allocation`.  Addresses
          start at 1 and are never reused, so a stale address always
          resolves to the (freed) allocation it once named.

The model knows nothing about permissions.  It records which binding
(by serial number) owns each live allocation, and hands every slot of a
popped frame to a caller-supplied drop callback, innermost-declared
first.

Usage
-----
    memory = MemoryModel()
    memory.push_frame("main")
    block = memory.allocate(3, 3, content=b"abc")
    bigger = memory.grow(block.address, 8)      # block is now freed
    memory.pop_frame(on_drop=lambda slot: ...)
"""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from borrowsim.errors import (
    DoubleFreeError,
    FrameUnderflowError,
    InvalidOperationError,
)

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 1. Heap
# ---------------------------------------------------------------------------

class AllocationStatus(enum.Enum):
    """Lifecycle state of a heap allocation."""
    LIVE = "live"
    FREED = "freed"


class FreeReason(enum.Enum):
    DROP = "drop"
    REALLOC = "realloc"     # freed by grow(); content lives on in the successor


@dataclass
class Allocation:
    """
    One heap byte region.
    """
    address: int
    size: int
    capacity: int
    content: bytearray
    status: AllocationStatus = AllocationStatus.LIVE
    owner: Optional[int] = None          # serial of the owning binding
    owner_name: Optional[str] = None
    freed_by: Optional[FreeReason] = None
    successor: Optional[int] = None      # address of the grown copy

    @property
    def is_live(self) -> bool:
        return self.status is AllocationStatus.LIVE

    @property
    def is_freed(self) -> bool:
        return self.status is AllocationStatus.FREED

    def __repr__(self) -> str:
        return (f"Allocation(@{self.address}, size={self.size}, "
                f"cap={self.capacity}, status={self.status.value})")


# ---------------------------------------------------------------------------
# 2. Stack
# ---------------------------------------------------------------------------

class SlotKind(enum.Enum):
    SCALAR = "scalar"
    THIN_POINTER = "thin"       # address only (Box, &T)
    FAT_POINTER = "fat"         # address + length (+ capacity): Vec, String


@dataclass
class StackSlot:
    """A fixed-size stack cell.  ``serial`` names the binding stored in it."""
    kind: SlotKind
    serial: int
    name: str
    value: Optional[int] = None
    address: Optional[int] = None
    length: Optional[int] = None
    capacity: Optional[int] = None

    def assign_from(self, other: "StackSlot") -> None:
        """Copy the raw bits of *other* into this slot."""
        self.value = other.value
        self.address = other.address
        self.length = other.length
        self.capacity = other.capacity

    def point_at(self, allocation: Allocation) -> None:
        self.address = allocation.address
        if self.kind is SlotKind.FAT_POINTER:
            self.length = allocation.size
            self.capacity = allocation.capacity

    def __str__(self) -> str:
        if self.kind is SlotKind.SCALAR:
            return "uninit" if self.value is None else str(self.value)
        if self.address is None:
            return "null"
        if self.kind is SlotKind.THIN_POINTER:
            return f"*@{self.address}"
        return f"{{@{self.address}, len={self.length}, cap={self.capacity}}}"


@dataclass
class Frame:
    """An activation record: slots in declaration order."""
    index: int
    label: str = ""
    slots: List[StackSlot] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"Frame({self.index}, {self.label!r}, slots={len(self.slots)})"


DropCallback = Callable[[StackSlot], None]


# ---------------------------------------------------------------------------
# 3. The model
# ---------------------------------------------------------------------------

class MemoryModel:
    """Stack frames plus an address-indexed heap."""

    def __init__(self) -> None:
        self._frames: List[Frame] = []
        self._heap: Dict[int, Allocation] = {}
        self._addresses = itertools.count(1)

    # -- stack -------------------------------------------------------------

    @property
    def frames(self) -> List[Frame]:
        return list(self._frames)

    @property
    def depth(self) -> int:
        return len(self._frames)

    @property
    def top_frame(self) -> Frame:
        if not self._frames:
            raise FrameUnderflowError("no live frame; issue 'enter' first")
        return self._frames[-1]

    def push_frame(self, label: str = "") -> Frame:
        frame = Frame(index=len(self._frames), label=label)
        self._frames.append(frame)
        _log.debug("push frame %d (%s)", frame.index, label or "-")
        return frame

    def pop_frame(self, on_drop: Optional[DropCallback] = None) -> Frame:
        """
        Remove the top frame.

        Before the frame disappears every slot is passed to *on_drop* in
        reverse declaration order, which is the order a stack unwinds.
        """
        if not self._frames:
            raise FrameUnderflowError("scope exit with no live frame")
        frame = self._frames[-1]
        if on_drop is not None:
            for slot in reversed(frame.slots):
                on_drop(slot)
        self._frames.pop()
        _log.debug("pop frame %d (%s)", frame.index, frame.label or "-")
        return frame

    def add_slot(self, kind: SlotKind, serial: int, name: str) -> StackSlot:
        slot = StackSlot(kind=kind, serial=serial, name=name)
        self.top_frame.slots.append(slot)
        return slot

    # -- heap --------------------------------------------------------------

    @property
    def allocations(self) -> List[Allocation]:
        return list(self._heap.values())

    def allocate(self, size: int, capacity: Optional[int] = None,
                 content: Optional[bytes] = None) -> Allocation:
        """Create a fresh allocation; *capacity* defaults to *size*."""
        if capacity is None:
            capacity = size
        if size < 0:
            raise InvalidOperationError(f"negative allocation size {size}")
        if capacity < size:
            raise InvalidOperationError(
                f"capacity {capacity} is smaller than size {size}")
        data = bytearray(content if content is not None else bytes(size))
        if len(data) != size:
            raise InvalidOperationError(
                f"content has {len(data)} bytes, allocation size is {size}")
        block = Allocation(next(self._addresses), size, capacity, data)
        self._heap[block.address] = block
        _log.debug("allocate @%d size=%d cap=%d", block.address, size, capacity)
        return block

    def get(self, address: int) -> Allocation:
        try:
            return self._heap[address]
        except KeyError:
            raise InvalidOperationError(f"no allocation at @{address}") from None

    def free(self, address: int, reason: FreeReason = FreeReason.DROP,
             by: Optional[str] = None) -> Allocation:
        """
        Free exactly once; a second free is a :class:`DoubleFreeError`
        blamed on *by*, or on the recorded owner when *by* is not given.
        """
        block = self.get(address)
        if block.is_freed:
            raise DoubleFreeError(
                f"allocation @{address} is already freed "
                f"(by {block.freed_by.value if block.freed_by else 'drop'})",
                by or block.owner_name,
            )
        block.status = AllocationStatus.FREED
        block.freed_by = reason
        block.owner = None
        block.owner_name = None
        _log.debug("free @%d (%s)", address, reason.value)
        return block

    def grow(self, address: int, new_capacity: int) -> Allocation:
        """
        Reallocate: copy the content into a new allocation of
        *new_capacity* and free the old one at once.

        Ownership is unchanged; the owner just targets a new address.
        """
        old = self.get(address)
        if old.is_freed:
            raise DoubleFreeError(
                f"cannot grow @{address}: it is already freed", old.owner_name)
        if new_capacity < old.size:
            raise InvalidOperationError(
                f"new capacity {new_capacity} is smaller than size {old.size}")
        new = self.allocate(old.size, new_capacity, content=bytes(old.content))
        new.owner, new.owner_name = old.owner, old.owner_name
        self.free(address, FreeReason.REALLOC)
        old.successor = new.address
        return new

    def live_allocations(self) -> List[Allocation]:
        return [b for b in self._heap.values() if b.is_live]
