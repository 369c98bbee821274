# tests/test_ownership.py
"""
Tests for the ownership engine: declaration, move/copy, drop, scope exit
and the value-level read/write/grow operations.
"""

import pytest

from borrowsim.bindings import BindingState, ValueKind
from borrowsim.errors import (
    ConflictingBorrowError,
    DanglingReferenceError,
    DoubleFreeError,
    FrameUnderflowError,
    InvalidOperationError,
    UseAfterMoveError,
)
from borrowsim.memory_model import AllocationStatus
from borrowsim.ownership import BOX_DEFAULT_SIZE
from borrowsim.permissions import FULL, NONE
from borrowsim.simulator import Simulator


def _b(sim, name):
    return sim.bindings.lookup(name)


class TestDeclare:

    def test_scalar(self, sim):
        n = sim.ownership.declare("n", ValueKind.SCALAR, value=5)
        assert n.slot.value == 5
        assert n.permissions == FULL

    def test_scalar_defaults_to_zero(self, sim):
        assert sim.ownership.declare("n", ValueKind.SCALAR).slot.value == 0

    def test_heap_allocates_and_owns(self, sim):
        v = sim.ownership.declare("v", ValueKind.HEAP, size=3, capacity=5)
        block = sim.memory.get(v.address)
        assert (block.size, block.capacity) == (3, 5)
        assert block.owner == v.serial
        assert str(v.slot) == "{@1, len=3, cap=5}"

    def test_box_default_size(self, sim):
        b = sim.ownership.declare("b", ValueKind.BOX)
        assert sim.memory.get(b.address).size == BOX_DEFAULT_SIZE

    def test_box_rejects_capacity(self, sim):
        with pytest.raises(InvalidOperationError):
            sim.ownership.declare("b", ValueKind.BOX, size=4, capacity=8)

    def test_value_goes_to_first_byte(self, sim):
        v = sim.ownership.declare("v", ValueKind.HEAP, size=2, value=7)
        assert bytes(sim.memory.get(v.address).content) == b"\x07\x00"

    def test_uninit(self, sim):
        u = sim.ownership.declare("u", ValueKind.HEAP, uninit=True)
        assert u.state is BindingState.UNINITIALIZED
        assert u.permissions == NONE
        assert u.address is None

    def test_uninit_with_value(self, sim):
        with pytest.raises(InvalidOperationError):
            sim.ownership.declare("u", ValueKind.SCALAR, uninit=True, value=1)

    def test_reference_must_be_uninit(self, sim):
        with pytest.raises(InvalidOperationError):
            sim.ownership.declare("r", ValueKind.REFERENCE)

    def test_scalar_has_no_heap(self, sim):
        with pytest.raises(InvalidOperationError):
            sim.ownership.declare("n", ValueKind.SCALAR, size=3)

    def test_outside_any_frame(self):
        with pytest.raises(FrameUnderflowError):
            Simulator().ownership.declare("x", ValueKind.SCALAR)

    def test_adopt_unowned_allocation(self, sim):
        block = sim.memory.allocate(3)
        b = sim.ownership.declare("b", ValueKind.BOX, adopt=block.address)
        assert block.owner == b.serial

    def test_adopt_owned_allocation_refused(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        with pytest.raises(InvalidOperationError):
            sim.ownership.declare("y", ValueKind.HEAP, adopt=1)


class TestMove:

    def test_move_transfers_ownership(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        y = sim.ownership.move("x", "y")
        x = sim.bindings.get(1)
        assert x.state is BindingState.MOVED_FROM
        assert x.permissions == NONE
        assert y.permissions == FULL
        assert sim.memory.get(1).owner == y.serial

    def test_use_after_move(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.move("x", "y")
        with pytest.raises(UseAfterMoveError):
            sim.ownership.read("x")
        with pytest.raises(UseAfterMoveError):
            sim.ownership.move("x", "z")

    def test_moved_from_never_regains_permissions(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.move("x", "y")
        sim.ownership.move("y", "x")
        old = sim.bindings.get(1)
        assert old.state is BindingState.MOVED_FROM
        assert _b(sim, "x") is not old
        assert _b(sim, "x").permissions == FULL

    def test_move_while_borrowed(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("x", "r")
        with pytest.raises(UseAfterMoveError):
            sim.ownership.move("x", "y")

    def test_move_into_uninit(self, sim):
        target = sim.ownership.declare("y", ValueKind.HEAP, uninit=True)
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        assert sim.ownership.move("x", "y") is target
        assert target.state is BindingState.OWNED
        assert target.address == 1

    def test_move_into_live_owner_frees_old_value(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.declare("y", ValueKind.HEAP, size=4)
        sim.ownership.move("x", "y")
        assert sim.memory.get(2).status is AllocationStatus.FREED
        assert _b(sim, "y").address == 1

    def test_move_kind_mismatch(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.declare("n", ValueKind.SCALAR)
        with pytest.raises(InvalidOperationError):
            sim.ownership.move("x", "n")

    def test_move_of_scalar_copies(self, sim):
        sim.ownership.declare("n", ValueKind.SCALAR, value=4)
        sim.ownership.move("n", "m")
        assert _b(sim, "n").permissions == FULL
        assert _b(sim, "m").slot.value == 4

    def test_move_exclusive_reference(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.borrows.borrow_exclusive("x", "r")
        moved = sim.ownership.move("r", "r2")
        borrow = sim.arena.get(moved.borrow_id)
        assert borrow.reference_name == "r2"
        with pytest.raises(UseAfterMoveError):
            sim.ownership.read("r")


class TestCopy:

    def test_copy_keeps_source(self, sim):
        sim.ownership.declare("n", ValueKind.SCALAR, value=9)
        sim.ownership.copy("n", "m")
        assert sim.ownership.read("n") == 9
        assert sim.ownership.read("m") == 9

    def test_copy_of_heap_value_is_invalid(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        with pytest.raises(InvalidOperationError):
            sim.ownership.copy("x", "y")

    def test_copy_of_exclusively_borrowed_scalar(self, sim):
        sim.ownership.declare("n", ValueKind.SCALAR, value=1)
        sim.borrows.borrow_exclusive("n", "r")
        with pytest.raises(ConflictingBorrowError):
            sim.ownership.copy("n", "m")

    def test_copy_shared_reference_adds_a_borrow(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("x", "a")
        sim.ownership.copy("a", "b")
        assert len(sim.arena.live_on(_b(sim, "x").serial)) == 2
        sim.borrows.end_borrow("a")
        assert _b(sim, "x").state is BindingState.BORROWED_SHARED
        sim.borrows.end_borrow("b")
        assert _b(sim, "x").permissions == FULL


class TestDrop:

    def test_drop_frees(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        block = sim.ownership.drop("x")
        assert block.is_freed
        assert sim.bindings.get(1).state is BindingState.DROPPED

    def test_second_drop_is_noop(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.drop("x")
        assert sim.ownership.drop("x") is None

    def test_drop_of_moved_from_is_noop(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.move("x", "y")
        assert sim.ownership.drop("x") is None
        assert sim.memory.get(1).is_live

    def test_free_through_alias_is_double_free(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.drop("x")
        sim.ownership.declare("alias", ValueKind.HEAP, adopt=1)
        with pytest.raises(DoubleFreeError):
            sim.ownership.drop("alias")

    def test_drop_borrowed_owner(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("x", "r")
        with pytest.raises(ConflictingBorrowError):
            sim.ownership.drop("x")


class TestExitScope:

    def test_frees_heap_owners(self, sim):
        sim.memory.push_frame("inner")
        sim.ownership.declare("v", ValueKind.HEAP, size=3)
        sim.ownership.exit_scope()
        assert sim.memory.get(1).is_freed
        assert sim.memory.live_allocations() == []
        assert "v" not in sim.bindings

    def test_skips_moved_from(self, sim):
        sim.ownership.declare("keep", ValueKind.HEAP, uninit=True)
        sim.memory.push_frame("inner")
        sim.ownership.declare("v", ValueKind.HEAP, size=3)
        sim.ownership.move("v", "keep")
        sim.ownership.exit_scope()
        assert sim.memory.get(1).is_live

    def test_reference_going_out_of_scope_ends_borrow(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.memory.push_frame("inner")
        sim.borrows.borrow_exclusive("x", "r")
        sim.ownership.exit_scope()
        assert _b(sim, "x").permissions == FULL

    def test_outliving_reference_dangles(self, sim):
        sim.ownership.declare("r", ValueKind.REFERENCE, uninit=True)
        sim.memory.push_frame("inner")
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("x", "r")
        sim.ownership.exit_scope()
        with pytest.raises(DanglingReferenceError):
            sim.ownership.read("r")

    def test_double_free_reported_after_pop(self, sim):
        sim.ownership.declare("x", ValueKind.HEAP, size=3)
        sim.ownership.drop("x")
        sim.memory.push_frame("inner")
        sim.ownership.declare("a", ValueKind.HEAP, adopt=1)
        sim.ownership.declare("b", ValueKind.HEAP, adopt=1)
        with pytest.raises(DoubleFreeError) as excinfo:
            sim.ownership.exit_scope()
        assert excinfo.value.binding == "b"
        assert len(excinfo.value.related) == 1
        assert excinfo.value.related[0].binding == "a"
        assert sim.memory.depth == 1

    def test_without_frame(self):
        with pytest.raises(FrameUnderflowError):
            Simulator().ownership.exit_scope()


class TestValueAccess:

    def test_read_heap_bytes(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=3, value=7)
        assert sim.ownership.read("v") == b"\x07\x00\x00"

    def test_write_through_exclusive_reference(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=2)
        sim.borrows.borrow_exclusive("v", "r")
        sim.ownership.write("r", 42)
        assert sim.ownership.read("r") == b"\x2a\x00"

    def test_write_initialises_uninit_scalar(self, sim):
        sim.ownership.declare("u", ValueKind.SCALAR, uninit=True)
        sim.ownership.write("u", 3)
        assert sim.ownership.read("u") == 3
        assert _b(sim, "u").state is BindingState.OWNED

    def test_read_uninit(self, sim):
        sim.ownership.declare("u", ValueKind.SCALAR, uninit=True)
        with pytest.raises(UseAfterMoveError):
            sim.ownership.read("u")

    def test_grow_through_owner(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=3, value=1)
        block = sim.ownership.grow("v", 8)
        assert block.capacity == 8
        assert _b(sim, "v").address == block.address
        assert sim.memory.get(1).is_freed
        assert sim.ownership.read("v") == b"\x01\x00\x00"

    def test_grow_through_exclusive_reference_retargets(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=3)
        sim.borrows.borrow_exclusive("v", "r")
        block = sim.ownership.grow("r", 6)
        assert _b(sim, "r").address == block.address
        sim.ownership.write("r", 5)

    def test_grow_while_shared(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("v", "r")
        with pytest.raises(ConflictingBorrowError):
            sim.ownership.grow("v", 8)

    def test_grow_box_is_invalid(self, sim):
        sim.ownership.declare("b", ValueKind.BOX)
        with pytest.raises(InvalidOperationError):
            sim.ownership.grow("b", 16)

    def test_grow_by_address_leaves_references_dangling(self, sim):
        sim.ownership.declare("v", ValueKind.HEAP, size=3)
        sim.borrows.borrow_shared("v", "r")
        block = sim.ownership.grow_address(1, 8)
        assert _b(sim, "v").address == block.address
        with pytest.raises(DanglingReferenceError):
            sim.ownership.read("r")
