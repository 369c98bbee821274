# tests/test_oplog_parser.py
"""
Tests for the oplog front end: text parsing into Operations, error spans,
JSON / JSON-lines record loading and rendering back to text.
"""

import json

import pytest

from borrowsim.bindings import ValueKind
from borrowsim.errors import ErrorCodes
from borrowsim.operations import OpKind, Operation
from oplog.errors import OplogLoadError, OplogSyntaxError
from oplog.parser import (
    format_log,
    format_operation,
    load,
    loads_json,
    loads_jsonl,
    parse,
    parse_records,
)


class TestParseStatements:

    def test_declare(self):
        op, = parse("declare x heap len=3 cap=4")
        assert op == Operation(OpKind.DECLARE, name="x", value_kind=ValueKind.HEAP,
                               size=3, capacity=4, line=1)

    def test_let_is_declare(self):
        op, = parse("let n scalar value=-2")
        assert op.kind is OpKind.DECLARE
        assert op.value == -2

    def test_uninit_and_adopt(self):
        ref, adopted = parse("declare r ref uninit\ndeclare b box adopt=@2")
        assert ref.uninit and ref.value_kind is ValueKind.REFERENCE
        assert adopted.address == 2

    def test_borrows(self):
        ops = parse("borrow x -> a\nborrow mut y -> b\nreborrow b -> c\nend c")
        assert [op.kind for op in ops] == [
            OpKind.BORROW_SHARED, OpKind.BORROW_EXCLUSIVE, OpKind.REBORROW,
            OpKind.END_BORROW,
        ]
        assert (ops[1].name, ops[1].to) == ("y", "b")

    def test_grow_by_name_and_by_address(self):
        by_name, by_address = parse("grow v cap=8\ngrow @3 cap=16")
        assert (by_name.name, by_name.address, by_name.capacity) == ("v", None, 8)
        assert (by_address.name, by_address.address) == (None, 3)

    def test_enter_label(self):
        labelled, bare = parse("enter main\nexit")
        assert labelled.label == "main"
        assert bare.label == ""

    def test_lines_skip_comments_and_blanks(self):
        ops = parse("# session\n\nenter main   # start\n\n  declare x box\n")
        assert [op.line for op in ops] == [3, 5]

    def test_semicolons_share_a_line(self):
        ops = parse("enter; declare x box; drop x")
        assert [op.line for op in ops] == [1, 1, 1]
        assert ops[2] == Operation.drop("x").with_line(1)

    def test_empty_text(self):
        assert parse("") == []
        assert parse("# only a comment\n") == []


class TestParseErrors:

    def test_unknown_statement_points_at_line(self):
        with pytest.raises(OplogSyntaxError) as excinfo:
            parse("enter main\ndeclare x heap\n  bogus\n", source="s.oplog")
        err = excinfo.value
        assert (err.span.file, err.span.line, err.span.column) == ("s.oplog", 3, 3)
        assert err.message == "cannot parse statement 'bogus'"
        assert err.code == ErrorCodes.OPLOG_SYNTAX
        assert err.to_gcc_format().splitlines() == [
            "s.oplog:3:3: error: cannot parse statement 'bogus' [BSIM-3001]",
            "      bogus",
            "      ^",
        ]

    def test_duplicate_option(self):
        with pytest.raises(OplogSyntaxError, match="more than once"):
            parse("declare x heap len=3 size=4")

    def test_option_not_valid_for_kind(self):
        with pytest.raises(OplogSyntaxError) as excinfo:
            parse("enter\n  declare n scalar len=3")
        assert "does not take size" in excinfo.value.message
        assert (excinfo.value.span.line, excinfo.value.span.column) == (2, 3)

    def test_adopt_needs_an_address(self):
        with pytest.raises(OplogSyntaxError, match="address"):
            parse("declare b box adopt=5")

    def test_value_cannot_be_an_address(self):
        with pytest.raises(OplogSyntaxError, match="expects a number"):
            parse("write x value=@1")

    def test_reference_must_be_uninit(self):
        with pytest.raises(OplogSyntaxError, match="must be uninit"):
            parse("declare r ref")

    def test_write_takes_no_capacity(self):
        with pytest.raises(OplogSyntaxError):
            parse("write x cap=3")

    def test_to_json(self):
        with pytest.raises(OplogSyntaxError) as excinfo:
            parse("oops")
        data = excinfo.value.to_json()
        assert data["code"] == "BSIM-3001"
        assert data["location"] == {"file": "", "line": 1, "column": 1}


class TestRecords:

    def test_parse_records_numbers_lines(self):
        ops = parse_records([{"op": "Enter"}, {"op": "Read", "name": "x", "line": 9}])
        assert [op.line for op in ops] == [1, 9]

    def test_aliases(self):
        op, = parse_records([{"op": "Move", "from": "x", "dest": "y"}])
        assert (op.name, op.to) == ("x", "y")
        op, = parse_records([{"op": "Declare", "name": "v", "kind": "heap",
                              "len": 2, "cap": 4, "adopt": "@1"}])
        assert (op.size, op.capacity, op.address) == (2, 4, 1)

    def test_bad_record(self):
        with pytest.raises(OplogLoadError) as excinfo:
            parse_records([{"op": "Enter"}, {"op": "Fly"}], source="r.json")
        assert excinfo.value.code == ErrorCodes.BAD_RECORD
        assert excinfo.value.span.line == 2

    @pytest.mark.parametrize("record, field", [
        ({"op": "Read", "name": "x", "line": "abc"}, "line"),
        ({"op": "Read", "name": "x", "line": None}, "line"),
        ({"op": "Read", "name": "x", "line": 2.5}, "line"),
        ({"op": "Read", "name": "x", "line": True}, "line"),
        ({"op": "Declare", "name": "r", "kind": "ref", "uninit": "false"}, "uninit"),
        ({"op": "Declare", "name": "r", "kind": "ref", "uninit": 1}, "uninit"),
        ({"op": "Declare", "name": "v", "kind": "heap", "size": 3.7}, "size"),
        ({"op": "Write", "name": "v", "value": True}, "value"),
        ({"op": "Write", "name": "v", "value": "7"}, "value"),
        ({"op": "Grow", "address": 1.0, "capacity": 4}, "address"),
    ])
    def test_badly_typed_field(self, record, field):
        with pytest.raises(OplogLoadError, match=field) as excinfo:
            parse_records([record], source="r.jsonl")
        assert excinfo.value.code == ErrorCodes.BAD_RECORD
        assert excinfo.value.span.line == 1

    def test_uninit_false_is_kept(self):
        op, = parse_records([{"op": "Declare", "name": "n", "kind": "scalar",
                              "value": 1, "uninit": False}])
        assert op.uninit is False

    def test_missing_field(self):
        with pytest.raises(OplogLoadError, match="requires to"):
            parse_records([{"op": "Move", "name": "x"}])

    def test_loads_json_list_and_object(self):
        records = [{"op": "Enter", "label": "main"}, {"op": "Declare", "name": "x",
                                                       "kind": "box"}]
        assert loads_json(json.dumps(records)) == loads_json(
            json.dumps({"operations": records}))

    def test_loads_json_rejects_other_shapes(self):
        with pytest.raises(OplogLoadError, match="expected a list"):
            loads_json('{"ops": []}')

    def test_loads_json_invalid(self):
        with pytest.raises(OplogLoadError) as excinfo:
            loads_json("[{]")
        assert excinfo.value.code == ErrorCodes.OPLOG_LOAD

    def test_loads_jsonl(self):
        text = '# replay\n{"op": "Enter"}\n\n{"op": "Read", "name": "x"}\n'
        ops = loads_jsonl(text)
        assert [op.line for op in ops] == [2, 4]

    def test_loads_jsonl_invalid_line(self):
        with pytest.raises(OplogLoadError) as excinfo:
            loads_jsonl('{"op": "Enter"}\nnot json\n')
        assert excinfo.value.span.line == 2


class TestLoad:

    def test_dispatch_by_suffix(self, write_log):
        text_ops = load(write_log("enter main\ndeclare x box\n"))
        json_ops = load(write_log(
            '[{"op": "Enter", "label": "main"}, '
            '{"op": "Declare", "name": "x", "kind": "box"}]', "session.json"))
        jsonl_ops = load(write_log(
            '{"op": "Enter", "label": "main"}\n'
            '{"op": "Declare", "name": "x", "kind": "box"}\n', "session.jsonl"))
        sexp_ops = load(write_log(
            "(Enter :label main)\n(Declare :name x :kind box)\n", "session.sexp"))
        for ops in (json_ops, jsonl_ops, text_ops):
            assert [op.kind for op in ops] == [OpKind.ENTER, OpKind.DECLARE]
        assert [op.kind for op in sexp_ops] == [OpKind.ENTER, OpKind.DECLARE]
        assert text_ops[1].value_kind is ValueKind.BOX

    def test_syntax_error_names_the_file(self, write_log):
        path = write_log("enter\nnonsense here\n")
        with pytest.raises(OplogSyntaxError) as excinfo:
            load(path)
        assert excinfo.value.span.file == path

    def test_missing_file(self, tmp_path):
        with pytest.raises(OplogLoadError, match="cannot read"):
            load(tmp_path / "absent.oplog")


class TestFormat:

    @pytest.mark.parametrize("op,text", [
        (Operation.enter("main"), "enter main"),
        (Operation.exit("<unwind>"), "exit"),
        (Operation.declare("v", "heap", size=3, capacity=4), "declare v heap len=3 cap=4"),
        (Operation.declare("b", "box", size=8), "declare b box size=8"),
        (Operation.declare("r", "ref", uninit=True), "declare r ref uninit"),
        (Operation.declare("a", "heap", adopt=2), "declare a heap adopt=@2"),
        (Operation.allocate(4, 8), "allocate size=4 cap=8"),
        (Operation.grow(3, 8), "grow @3 cap=8"),
        (Operation.borrow_exclusive("x", "r"), "borrow mut x -> r"),
        (Operation.end_borrow("r"), "end r"),
        (Operation.write("n"), "write n"),
    ])
    def test_format_operation(self, op, text):
        assert format_operation(op) == text

    def test_format_log_parses_back(self):
        ops = parse("enter main\ndeclare x heap len=2\nborrow x -> r\nend r\nexit main")
        reparsed = parse(format_log(ops))
        assert reparsed == ops
