# tests/test_bindings.py
"""
Tests for the lexically scoped binding table.
"""

import pytest

from borrowsim.bindings import BindingState, BindingTable, ValueKind
from borrowsim.errors import FrameUnderflowError, InvalidOperationError, UnknownBindingError
from borrowsim.memory_model import MemoryModel, SlotKind
from borrowsim.permissions import FULL, NONE, READ_ONLY


@pytest.fixture
def memory():
    m = MemoryModel()
    m.push_frame("main")
    return m


@pytest.fixture
def table(memory):
    return BindingTable(memory)


class TestDeclare:

    def test_default_permissions(self, table):
        assert table.declare("x", ValueKind.HEAP).permissions == FULL
        assert table.declare("r", ValueKind.REFERENCE).permissions == READ_ONLY
        u = table.declare("u", ValueKind.SCALAR, state=BindingState.UNINITIALIZED)
        assert u.permissions == NONE

    def test_slot_kind_follows_value_kind(self, table):
        assert table.declare("n", ValueKind.SCALAR).slot.kind is SlotKind.SCALAR
        assert table.declare("b", ValueKind.BOX).slot.kind is SlotKind.THIN_POINTER
        assert table.declare("v", ValueKind.HEAP).slot.kind is SlotKind.FAT_POINTER

    def test_serials_are_unique(self, table):
        a = table.declare("a", ValueKind.SCALAR)
        b = table.declare("a", ValueKind.SCALAR)
        assert a.serial != b.serial
        assert a.key == f"a#{a.serial}"

    def test_rejects_invalid_name(self, table):
        with pytest.raises(InvalidOperationError):
            table.declare("not a name", ValueKind.SCALAR)

    def test_needs_a_frame(self):
        with pytest.raises(FrameUnderflowError):
            BindingTable(MemoryModel()).declare("x", ValueKind.SCALAR)


class TestLookup:

    def test_shadowing_in_same_frame(self, table):
        table.declare("x", ValueKind.SCALAR)
        newer = table.declare("x", ValueKind.HEAP)
        assert table.lookup("x") is newer

    def test_inner_frame_shadows_outer(self, memory, table):
        outer = table.declare("x", ValueKind.SCALAR)
        memory.push_frame("inner")
        inner = table.declare("x", ValueKind.SCALAR)
        assert table.lookup("x") is inner
        memory.pop_frame()
        table.remove_scope(1)
        assert table.lookup("x") is outer

    def test_unknown_name(self, table):
        assert table.find("ghost") is None
        with pytest.raises(UnknownBindingError):
            table.lookup("ghost")

    def test_registry_outlives_scope(self, memory, table):
        memory.push_frame()
        inner = table.declare("t", ValueKind.SCALAR)
        memory.pop_frame()
        table.remove_scope(1)
        assert "t" not in table
        assert table.get(inner.serial) is inner

    def test_iteration_and_len(self, memory, table):
        table.declare("a", ValueKind.SCALAR)
        memory.push_frame()
        table.declare("b", ValueKind.SCALAR)
        assert [b.name for b in table] == ["a", "b"]
        assert len(table) == 2
        assert [b.name for b in table.bindings_in(1)] == ["b"]

    def test_owner_of(self, memory, table):
        x = table.declare("x", ValueKind.BOX)
        block = memory.allocate(8)
        assert table.owner_of(block) is None
        block.owner = x.serial
        assert table.owner_of(block) is x


class TestBindingProperties:

    def test_copyable(self, table):
        assert table.declare("n", ValueKind.SCALAR).copyable
        assert not table.declare("v", ValueKind.HEAP).copyable
        shared = table.declare("r", ValueKind.REFERENCE)
        assert shared.copyable
        shared.exclusive = True
        assert not shared.copyable

    def test_terminal_states(self):
        assert BindingState.MOVED_FROM.is_terminal
        assert BindingState.DROPPED.is_terminal
        assert not BindingState.BORROWED_SHARED.is_terminal
        assert BindingState.BORROWED_EXCLUSIVE.is_borrowed

    def test_describe(self, table):
        n = table.declare("n", ValueKind.SCALAR)
        n.slot.value = 5
        assert n.describe() == "n: scalar RWO owned = 5"
