"""
S-expression form of operation logs.

Each operation is one list headed by its op name, followed by
``:key value`` pairs::

    (Enter :label main)
    (Declare :name x :kind heap :size 3 :capacity 3)
    (BorrowExclusive :name x :to r)
    (Grow :address 1 :capacity 8)
    (Exit)

The keys are the record keys of :meth:`Operation.to_record`, so a form
converts to a record one-to-one.  ``t`` stands for true (``:uninit t``).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

import sexpdata
from sexpdata import Symbol

from borrowsim.errors import ErrorCodes, RecordError
from borrowsim.operations import Operation
from oplog.errors import OplogLoadError, SourceSpan


def _atom(obj: Any) -> Any:
    if isinstance(obj, Symbol):
        value = getattr(obj, "value", None)
        return str(value()) if callable(value) else str(obj)
    return obj


def _form_lines(text: str) -> List[int]:
    """Line on which each top-level list in *text* opens."""
    starts: List[int] = []
    depth, line = 0, 1
    in_string = escaped = in_comment = False
    for ch in text:
        if ch == "\n":
            line += 1
            in_comment = False
            continue
        if in_comment:
            continue
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == ";":
            in_comment = True
        elif ch == '"':
            in_string = True
        elif ch == "(":
            if depth == 0:
                starts.append(line)
            depth += 1
        elif ch == ")" and depth:
            depth -= 1
    return starts


def _form_to_record(form: Any, position: int, line: int, source: str) -> Dict[str, Any]:
    if not isinstance(form, list) or not form or not isinstance(form[0], Symbol):
        raise OplogLoadError(f"form {position}: expected (Op :key value ...)",
                             SourceSpan(source, line))
    record: Dict[str, Any] = {"op": _atom(form[0])}
    rest = form[1:]
    if len(rest) % 2:
        raise OplogLoadError(f"form {position}: keys and values must pair up",
                             SourceSpan(source, line))
    for key, value in zip(rest[::2], rest[1::2]):
        name = _atom(key)
        if not isinstance(key, Symbol) or not name.startswith(":"):
            raise OplogLoadError(f"form {position}: expected a :key, got {name!r}",
                                 SourceSpan(source, line))
        value = _atom(value)
        if name == ":uninit":
            value = True if value == "t" else value
        record[name[1:]] = value
    return record


def loads_sexp(text: str, source: str = "") -> List[Operation]:
    """Parse a stream of operation forms."""
    # sexpdata reads a single form; wrap the stream in one outer list.
    try:
        forms = sexpdata.loads(f"({text}\n)")
    except Exception as exc:
        raise OplogLoadError(f"invalid S-expression: {exc}",
                             SourceSpan(source, 0)) from exc
    starts = _form_lines(text)
    if len(starts) != len(forms):
        # A bare atom at top level; fall back to numbering forms.
        starts = list(range(1, len(forms) + 1))
    ops: List[Operation] = []
    for number, (form, line) in enumerate(zip(forms, starts), start=1):
        try:
            op = Operation.from_record(_form_to_record(form, number, line, source))
        except RecordError as exc:
            raise OplogLoadError(f"form {number}: {exc.message}",
                                 SourceSpan(source, line), ErrorCodes.BAD_RECORD) from None
        ops.append(op if op.line else op.with_line(line))
    return ops


def dumps_sexp(ops: Iterable[Operation]) -> str:
    """Render *ops* one form per line."""
    lines = []
    for op in ops:
        record = op.to_record()
        form: List[Any] = [Symbol(record.pop("op"))]
        record.pop("line", None)
        for key, value in record.items():
            form.append(Symbol(f":{key}"))
            if value is True:
                form.append(Symbol("t"))
            elif key in ("name", "to", "kind", "label") and str(value).isidentifier():
                form.append(Symbol(str(value)))
            else:
                form.append(value)
        lines.append(sexpdata.dumps(form))
    return "".join(line + "\n" for line in lines)
