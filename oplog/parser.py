"""
parser.py — Operation Log Front End
===================================

Turns operation logs into :class:`borrowsim.Operation` lists.

Three input forms are understood:

  * oplog text (``.oplog`` or anything else), parsed with the PEG grammar
    in :mod:`oplog.grammar`;
  * a JSON document (``.json``) holding a list of records, or an object
    with an ``"operations"`` list;
  * JSON lines (``.jsonl`` / ``.ndjson``), one record per line;
  * S-expressions (``.sexp``), see :mod:`oplog.sexp`.

Usage::

    from oplog.parser import parse, load

    ops = parse('''
        enter main
        declare x heap len=3 cap=3
        borrow mut x -> r
        write r value=7
        end r
        exit
    ''')

    ops = load("session.jsonl")

:func:`format_operation` renders an Operation back into oplog text.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

from parsimonious.exceptions import ParseError
from parsimonious.nodes import Node, NodeVisitor

from borrowsim.bindings import ValueKind
from borrowsim.errors import ErrorCodes, RecordError
from borrowsim.operations import OpKind, Operation
from oplog.errors import OplogLoadError, OplogSyntaxError, SourceSpan
from oplog.grammar import GRAMMAR
from oplog.sexp import loads_sexp

logger = logging.getLogger(__name__)

JSON_SUFFIXES = (".json",)
JSONL_SUFFIXES = (".jsonl", ".ndjson")
SEXP_SUFFIXES = (".sexp",)


class _Address(NamedTuple):
    number: int


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — PARSE TREE VISITOR
# ═══════════════════════════════════════════════════════════════════

_OPTION_FIELDS = {
    "len": "size",
    "size": "size",
    "cap": "capacity",
    "value": "value",
    "adopt": "address",
    "uninit": "uninit",
}


class OplogBuilder(NodeVisitor):
    """Transforms the parsimonious parse tree into Operation records."""

    unwrapped_exceptions = (OplogSyntaxError,)

    def __init__(self, text: str, source: str = "") -> None:
        self._text = text
        self._source = source

    def generic_visit(self, node, visited_children):
        return visited_children or node

    @staticmethod
    def _opt(value: Any) -> Any:
        """Unwrap an optional subexpression: ``[x]`` → x, absent → None."""
        if isinstance(value, list) and value:
            return value[0]
        return None

    def _span(self, node: Node) -> SourceSpan:
        return SourceSpan.from_offset(self._text, node.start, self._source)

    def _error(self, node: Node, message: str) -> OplogSyntaxError:
        span = self._span(node)
        return OplogSyntaxError(message, span, source_line=self._line_text(span.line))

    def _line_text(self, line: int) -> str:
        lines = self._text.splitlines()
        return lines[line - 1].rstrip() if 0 < line <= len(lines) else ""

    def _finish(self, node: Node, op: Operation) -> Operation:
        try:
            return op.validate()
        except RecordError as exc:
            raise self._error(node, exc.message) from None

    def _options(self, node: Node, options: List[Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for key, value in options:
            field_name = _OPTION_FIELDS[key]
            if field_name in fields:
                raise self._error(node, f"option '{key}' given more than once")
            if field_name == "address":
                if not isinstance(value, _Address):
                    raise self._error(node, "adopt expects an address such as @1")
                value = value.number
            elif isinstance(value, _Address):
                raise self._error(node, f"option '{key}' expects a number, not an address")
            fields[field_name] = value
        return fields

    # ─────────────────────────────────────────────────────────────
    # Structure
    # ─────────────────────────────────────────────────────────────

    def visit_log(self, node, visited_children):
        return [op for op in visited_children if isinstance(op, Operation)]

    def visit_line(self, node, visited_children):
        _, statement, _, _, _ = visited_children
        op = self._opt(statement)
        if op is None:
            return None
        return op.with_line(self._span(node).line)

    def visit_statement(self, node, visited_children):
        return visited_children[0]

    # ─────────────────────────────────────────────────────────────
    # Statements
    # ─────────────────────────────────────────────────────────────

    def visit_enter(self, node, visited_children):
        _, label = visited_children
        return Operation.enter(self._opt(label) or "")

    def visit_exit(self, node, visited_children):
        _, label = visited_children
        return Operation.exit(self._opt(label) or "")

    def visit_label(self, node, visited_children):
        _, name = visited_children
        return name

    def visit_declare(self, node, visited_children):
        _, _, name, _, kind, options = visited_children
        fields = self._options(node, options)
        op = Operation(OpKind.DECLARE, name=name, value_kind=kind, **fields)
        return self._finish(node, op)

    def visit_value_kind(self, node, visited_children):
        return ValueKind(node.text)

    def visit_allocate(self, node, visited_children):
        _, options = visited_children
        fields = self._options(node, options)
        return self._finish(node, Operation(OpKind.ALLOCATE, **fields))

    def visit_grow(self, node, visited_children):
        _, _, target, options = visited_children
        fields = self._options(node, options)
        if isinstance(target, _Address):
            fields["address"] = target.number
        else:
            fields["name"] = target
        return self._finish(node, Operation(OpKind.GROW, **fields))

    def visit_move(self, node, visited_children):
        _, _, src, _, _, _, dest = visited_children
        return Operation.move(src, dest)

    def visit_copy(self, node, visited_children):
        _, _, src, _, _, _, dest = visited_children
        return Operation.copy(src, dest)

    def visit_borrow(self, node, visited_children):
        _, mut, _, owner, _, _, _, ref = visited_children
        if self._opt(mut) is not None:
            return Operation.borrow_exclusive(owner, ref)
        return Operation.borrow_shared(owner, ref)

    def visit_reborrow(self, node, visited_children):
        _, _, ref, _, _, _, new_ref = visited_children
        return Operation.reborrow(ref, new_ref)

    def visit_end_borrow(self, node, visited_children):
        _, _, ref = visited_children
        return Operation.end_borrow(ref)

    def visit_read(self, node, visited_children):
        _, _, name = visited_children
        return Operation.read(name)

    def visit_write(self, node, visited_children):
        _, _, name, options = visited_children
        fields = self._options(node, options)
        return self._finish(node, Operation(OpKind.WRITE, name=name, **fields))

    def visit_drop(self, node, visited_children):
        _, _, name = visited_children
        return Operation.drop(name)

    # ─────────────────────────────────────────────────────────────
    # Options and atoms
    # ─────────────────────────────────────────────────────────────

    def visit_options(self, node, visited_children):
        return list(visited_children) if isinstance(visited_children, list) else []

    def visit_option(self, node, visited_children):
        _, body = visited_children
        return body

    def visit_option_body(self, node, visited_children):
        return visited_children[0]

    def visit_kv_option(self, node, visited_children):
        key, _, value = visited_children
        return (key, value)

    def visit_key(self, node, visited_children):
        return node.text

    def visit_flag(self, node, visited_children):
        return (node.text, True)

    def visit_value(self, node, visited_children):
        return visited_children[0]

    def visit_target(self, node, visited_children):
        return visited_children[0]

    def visit_address(self, node, visited_children):
        return _Address(int(node.text[1:]))

    def visit_integer(self, node, visited_children):
        return int(node.text)

    def visit_name(self, node, visited_children):
        return node.text


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def parse(text: str, source: str = "") -> List[Operation]:
    """Parse oplog text into operations (each tagged with its line)."""
    if not text.endswith("\n"):
        text += "\n"
    try:
        tree = GRAMMAR.parse(text)
    except ParseError as exc:
        raise _syntax_error(text, exc.pos, source) from None
    ops = OplogBuilder(text, source).visit(tree)
    logger.debug("parsed %d operation(s) from %s", len(ops), source or "<string>")
    return ops


def _syntax_error(text: str, pos: int, source: str) -> OplogSyntaxError:
    # Point at the first non-blank character of the offending line.
    line_start = text.rfind("\n", 0, pos) + 1
    while line_start < len(text) and text[line_start] in " \t":
        line_start += 1
    span = SourceSpan.from_offset(text, line_start, source)
    line_end = text.find("\n", line_start)
    snippet = text[line_start:line_end if line_end >= 0 else None].rstrip()
    lines = text.splitlines()
    source_line = lines[span.line - 1] if 0 < span.line <= len(lines) else ""
    return OplogSyntaxError(f"cannot parse statement {snippet!r}", span,
                            source_line=source_line)


def parse_records(records: Iterable[Mapping[str, Any]], source: str = "",
                  first_line: int = 1) -> List[Operation]:
    """
    Convert record mappings into operations.

    Records without their own ``line`` are numbered from *first_line*.
    """
    ops: List[Operation] = []
    for number, record in enumerate(records, start=first_line):
        try:
            op = Operation.from_record(record)
        except RecordError as exc:
            raise OplogLoadError(
                exc.message, SourceSpan(source, number), ErrorCodes.BAD_RECORD
            ) from None
        ops.append(op if op.line else op.with_line(number))
    return ops


def loads_json(text: str, source: str = "") -> List[Operation]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OplogLoadError(f"invalid JSON: {exc.msg}",
                             SourceSpan(source, exc.lineno, exc.colno)) from None
    if isinstance(data, Mapping):
        data = data.get("operations")
    if not isinstance(data, list):
        raise OplogLoadError("expected a list of operation records",
                             SourceSpan(source, 1))
    return parse_records(data, source)


def loads_jsonl(text: str, source: str = "") -> List[Operation]:
    ops: List[Operation] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise OplogLoadError(f"invalid JSON: {exc.msg}",
                                 SourceSpan(source, number, exc.colno)) from None
        ops.extend(parse_records([record], source, first_line=number))
    return ops


def load(path: Union[str, Path]) -> List[Operation]:
    """Read an operation log from disk, choosing the format by suffix."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise OplogLoadError(f"cannot read {p}: {exc.strerror or exc}",
                             SourceSpan(str(p))) from None
    suffix = p.suffix.lower()
    logger.info("loading %s", p)
    if suffix in JSON_SUFFIXES:
        return loads_json(text, str(p))
    if suffix in JSONL_SUFFIXES:
        return loads_jsonl(text, str(p))
    if suffix in SEXP_SUFFIXES:
        return loads_sexp(text, str(p))
    return parse(text, str(p))


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — UNPARSING
# ═══════════════════════════════════════════════════════════════════

def format_operation(op: Operation) -> str:
    """Render *op* as one oplog statement."""
    kind = op.kind
    if kind in (OpKind.ENTER, OpKind.EXIT):
        word = "enter" if kind is OpKind.ENTER else "exit"
        return f"{word} {op.label}" if op.label.isidentifier() else word
    if kind is OpKind.DECLARE:
        parts = [f"declare {op.name} {op.value_kind.value}"]
        if op.uninit:
            parts.append("uninit")
        if op.address is not None:
            parts.append(f"adopt=@{op.address}")
        if op.size is not None:
            parts.append(f"{'len' if op.value_kind is ValueKind.HEAP else 'size'}={op.size}")
        if op.capacity is not None:
            parts.append(f"cap={op.capacity}")
        if op.value is not None:
            parts.append(f"value={op.value}")
        return " ".join(parts)
    if kind is OpKind.ALLOCATE:
        text = f"allocate size={op.size}"
        return text + (f" cap={op.capacity}" if op.capacity is not None else "")
    if kind is OpKind.GROW:
        target = op.name if op.name is not None else f"@{op.address}"
        return f"grow {target} cap={op.capacity}"
    if kind is OpKind.WRITE:
        return f"write {op.name}" + (f" value={op.value}" if op.value is not None else "")
    arrows = {
        OpKind.MOVE: "move",
        OpKind.COPY: "copy",
        OpKind.BORROW_SHARED: "borrow",
        OpKind.BORROW_EXCLUSIVE: "borrow mut",
        OpKind.REBORROW: "reborrow",
    }
    if kind in arrows:
        return f"{arrows[kind]} {op.name} -> {op.to}"
    words = {OpKind.END_BORROW: "end", OpKind.READ: "read", OpKind.DROP: "drop"}
    return f"{words[kind]} {op.name}"


def format_log(ops: Iterable[Operation]) -> str:
    return "".join(format_operation(op) + "\n" for op in ops)
