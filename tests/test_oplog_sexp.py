# tests/test_oplog_sexp.py
"""
Tests for the S-expression operation-log form.
"""

import pytest

from borrowsim.bindings import ValueKind
from borrowsim.errors import ErrorCodes
from borrowsim.operations import OpKind, Operation
from oplog.errors import OplogLoadError
from oplog.sexp import dumps_sexp, loads_sexp

SESSION = """
(Enter :label main)
(Declare :name x :kind heap :size 3 :capacity 3)
(Declare :name r :kind ref :uninit t)
(BorrowExclusive :name x :to r)
(Write :name r :value 7)
(Grow :address 1 :capacity 8)
(Exit)
"""


class TestLoads:

    def test_session(self):
        ops = loads_sexp(SESSION)
        assert [op.kind for op in ops] == [
            OpKind.ENTER, OpKind.DECLARE, OpKind.DECLARE, OpKind.BORROW_EXCLUSIVE,
            OpKind.WRITE, OpKind.GROW, OpKind.EXIT,
        ]
        assert ops[0].label == "main"
        assert ops[1].value_kind is ValueKind.HEAP
        assert (ops[1].size, ops[1].capacity) == (3, 3)
        assert ops[2].uninit is True
        assert (ops[3].name, ops[3].to) == ("x", "r")
        assert ops[5].address == 1

    def test_strings_work_as_names(self):
        op, = loads_sexp('(Read :name "x")')
        assert op == Operation.read("x").with_line(1)

    def test_empty(self):
        assert loads_sexp("") == []

    def test_forms_carry_their_line(self):
        text = (
            "; leading comment\n"
            "(Enter :label main)\n"
            "\n"
            "(Declare :name x\n"
            "         :kind heap :size 2) ; (not a form)\n"
            "(Read :name \"(x\")\n"
        )
        ops = loads_sexp(text, source="demo.sexp")
        assert [op.line for op in ops] == [2, 4, 6]

    def test_explicit_line_wins(self):
        op, = loads_sexp("(Read :name x :line 40)")
        assert op.line == 40

    def test_uninit_must_be_boolean(self):
        with pytest.raises(OplogLoadError, match="uninit"):
            loads_sexp('(Declare :name r :kind ref :uninit "yes")')


class TestLoadErrors:

    @pytest.mark.parametrize("text", [
        "Enter",
        "()",
        "(Read :name)",
        "(Read name x)",
    ])
    def test_malformed_form(self, text):
        with pytest.raises(OplogLoadError) as excinfo:
            loads_sexp(text, source="bad.sexp")
        assert "form 1" in excinfo.value.message
        assert excinfo.value.span.file == "bad.sexp"

    def test_unbalanced(self):
        with pytest.raises(OplogLoadError, match="invalid S-expression"):
            loads_sexp("(Enter :label main")

    def test_bad_record_is_numbered(self):
        with pytest.raises(OplogLoadError) as excinfo:
            loads_sexp("(Enter)\n\n(Fly :name x)", source="bad.sexp")
        assert excinfo.value.code == ErrorCodes.BAD_RECORD
        assert excinfo.value.message.startswith("form 2:")
        assert excinfo.value.span.line == 3


class TestDumps:

    def test_forms(self):
        text = dumps_sexp([
            Operation.enter("main"),
            Operation.declare("r", "ref", uninit=True),
            Operation.grow(2, 16),
        ])
        assert text.splitlines() == [
            "(Enter :label main)",
            "(Declare :name r :kind ref :uninit t)",
            "(Grow :capacity 16 :address 2)",
        ]

    def test_reloads(self):
        ops = loads_sexp(SESSION)
        assert [str(op) for op in loads_sexp(dumps_sexp(ops))] == [str(op) for op in ops]
