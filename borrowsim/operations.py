# borrowsim/operations.py
"""
Operation records fed to the simulator, and the per-record outcome.

The wire form of an operation is a flat mapping::

    {"op": "Declare", "name": "x", "kind": "heap", "size": 3, "capacity": 3}
    {"op": "Move", "name": "x", "to": "y"}
    {"op": "BorrowExclusive", "name": "x", "to": "r"}
    {"op": "Grow", "address": 1, "capacity": 8}

``from`` / ``dest`` / ``len`` / ``cap`` are accepted as aliases of
``name`` / ``to`` / ``size`` / ``capacity``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from borrowsim.bindings import ValueKind
from borrowsim.errors import RecordError, Violation


class OpKind(enum.Enum):
    ENTER = "Enter"
    EXIT = "Exit"
    DECLARE = "Declare"
    MOVE = "Move"
    COPY = "Copy"
    ALLOCATE = "Allocate"
    GROW = "Grow"
    BORROW_SHARED = "BorrowShared"
    BORROW_EXCLUSIVE = "BorrowExclusive"
    REBORROW = "Reborrow"
    END_BORROW = "EndBorrow"
    READ = "Read"
    WRITE = "Write"
    DROP = "Drop"


# Which record fields each operation accepts / requires.
_FIELDS: Dict[OpKind, FrozenSet[str]] = {
    OpKind.ENTER: frozenset({"label"}),
    OpKind.EXIT: frozenset({"label"}),
    OpKind.DECLARE: frozenset({"name", "kind", "size", "capacity", "value",
                               "uninit", "address"}),
    OpKind.MOVE: frozenset({"name", "to"}),
    OpKind.COPY: frozenset({"name", "to"}),
    OpKind.ALLOCATE: frozenset({"size", "capacity"}),
    OpKind.GROW: frozenset({"name", "address", "capacity"}),
    OpKind.BORROW_SHARED: frozenset({"name", "to"}),
    OpKind.BORROW_EXCLUSIVE: frozenset({"name", "to"}),
    OpKind.REBORROW: frozenset({"name", "to"}),
    OpKind.END_BORROW: frozenset({"name"}),
    OpKind.READ: frozenset({"name"}),
    OpKind.WRITE: frozenset({"name", "value"}),
    OpKind.DROP: frozenset({"name"}),
}

_REQUIRED: Dict[OpKind, FrozenSet[str]] = {
    OpKind.DECLARE: frozenset({"name", "kind"}),
    OpKind.MOVE: frozenset({"name", "to"}),
    OpKind.COPY: frozenset({"name", "to"}),
    OpKind.ALLOCATE: frozenset({"size"}),
    OpKind.GROW: frozenset({"capacity"}),
    OpKind.BORROW_SHARED: frozenset({"name", "to"}),
    OpKind.BORROW_EXCLUSIVE: frozenset({"name", "to"}),
    OpKind.REBORROW: frozenset({"name", "to"}),
    OpKind.END_BORROW: frozenset({"name"}),
    OpKind.READ: frozenset({"name"}),
    OpKind.WRITE: frozenset({"name"}),
    OpKind.DROP: frozenset({"name"}),
}

# Options a declaration accepts, per value kind.
DECLARE_OPTIONS: Dict[ValueKind, FrozenSet[str]] = {
    ValueKind.SCALAR: frozenset({"value", "uninit"}),
    ValueKind.BOX: frozenset({"size", "value", "uninit", "address"}),
    ValueKind.HEAP: frozenset({"size", "capacity", "value", "uninit", "address"}),
    ValueKind.REFERENCE: frozenset({"uninit"}),
}

_ALIASES = {"from": "name", "dest": "to", "len": "size", "cap": "capacity",
            "adopt": "address"}
_INT_FIELDS = ("size", "capacity", "value", "address")


@dataclass(frozen=True)
class Operation:
    """One simulator command.  ``line`` is its position in the source log."""

    kind: OpKind
    name: Optional[str] = None
    to: Optional[str] = None
    value_kind: Optional[ValueKind] = None
    size: Optional[int] = None
    capacity: Optional[int] = None
    value: Optional[int] = None
    address: Optional[int] = None
    uninit: bool = False
    label: str = ""
    line: int = 0

    # -- Constructors ------------------------------------------------------

    @classmethod
    def enter(cls, label: str = "") -> "Operation":
        return cls(OpKind.ENTER, label=label)

    @classmethod
    def exit(cls, label: str = "") -> "Operation":
        return cls(OpKind.EXIT, label=label)

    @classmethod
    def declare(cls, name: str, kind: Union[ValueKind, str], *,
                size: Optional[int] = None, capacity: Optional[int] = None,
                value: Optional[int] = None, uninit: bool = False,
                adopt: Optional[int] = None) -> "Operation":
        return cls(OpKind.DECLARE, name=name, value_kind=ValueKind(kind),
                   size=size, capacity=capacity, value=value, uninit=uninit,
                   address=adopt)

    @classmethod
    def move(cls, src: str, dest: str) -> "Operation":
        return cls(OpKind.MOVE, name=src, to=dest)

    @classmethod
    def copy(cls, src: str, dest: str) -> "Operation":
        return cls(OpKind.COPY, name=src, to=dest)

    @classmethod
    def allocate(cls, size: int, capacity: Optional[int] = None) -> "Operation":
        return cls(OpKind.ALLOCATE, size=size, capacity=capacity)

    @classmethod
    def grow(cls, target: Union[str, int], capacity: int) -> "Operation":
        """*target* is a binding name or a raw allocation address."""
        if isinstance(target, int):
            return cls(OpKind.GROW, address=target, capacity=capacity)
        return cls(OpKind.GROW, name=target, capacity=capacity)

    @classmethod
    def borrow_shared(cls, owner: str, ref: str) -> "Operation":
        return cls(OpKind.BORROW_SHARED, name=owner, to=ref)

    @classmethod
    def borrow_exclusive(cls, owner: str, ref: str) -> "Operation":
        return cls(OpKind.BORROW_EXCLUSIVE, name=owner, to=ref)

    @classmethod
    def reborrow(cls, ref: str, new_ref: str) -> "Operation":
        return cls(OpKind.REBORROW, name=ref, to=new_ref)

    @classmethod
    def end_borrow(cls, ref: str) -> "Operation":
        return cls(OpKind.END_BORROW, name=ref)

    @classmethod
    def read(cls, name: str) -> "Operation":
        return cls(OpKind.READ, name=name)

    @classmethod
    def write(cls, name: str, value: Optional[int] = None) -> "Operation":
        return cls(OpKind.WRITE, name=name, value=value)

    @classmethod
    def drop(cls, name: str) -> "Operation":
        return cls(OpKind.DROP, name=name)

    def with_line(self, line: int) -> "Operation":
        return replace(self, line=line)

    # -- Validation --------------------------------------------------------

    def validate(self) -> "Operation":
        """Raise :class:`RecordError` when fields do not fit the op kind."""
        present = self._present_fields()
        unknown = present - _FIELDS[self.kind]
        if unknown:
            raise RecordError(
                f"{self.kind.value} does not take {', '.join(sorted(unknown))}")
        missing = _REQUIRED.get(self.kind, frozenset()) - present
        if missing:
            raise RecordError(
                f"{self.kind.value} requires {', '.join(sorted(missing))}")
        if self.kind is OpKind.GROW and (self.name is None) == (self.address is None):
            raise RecordError("Grow takes exactly one of name or address")
        if self.kind is OpKind.DECLARE and self.value_kind is not None:
            extra = (present - {"name", "kind"}) - DECLARE_OPTIONS[self.value_kind]
            if extra:
                raise RecordError(
                    f"a {self.value_kind.value} declaration does not take "
                    f"{', '.join(sorted(extra))}")
            if self.value_kind is ValueKind.REFERENCE and not self.uninit:
                raise RecordError("a ref declaration must be uninit")
        return self

    def _present_fields(self) -> FrozenSet[str]:
        present = {
            key for key in ("name", "to", "size", "capacity", "value", "address")
            if getattr(self, key) is not None
        }
        if self.value_kind is not None:
            present.add("kind")
        if self.uninit:
            present.add("uninit")
        if self.label:
            present.add("label")
        return frozenset(present)

    # -- Wire form ---------------------------------------------------------

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"op": self.kind.value}
        for key in ("name", "to", "size", "capacity", "value", "address"):
            val = getattr(self, key)
            if val is not None:
                record[key] = val
        if self.value_kind is not None:
            record["kind"] = self.value_kind.value
        if self.uninit:
            record["uninit"] = True
        if self.label:
            record["label"] = self.label
        if self.line:
            record["line"] = self.line
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Operation":
        if not isinstance(record, Mapping):
            raise RecordError(f"operation record must be an object, got {type(record).__name__}")
        fields = {_ALIASES.get(k, k): v for k, v in record.items()}
        raw_op = fields.pop("op", None)
        try:
            kind = OpKind(raw_op)
        except ValueError:
            raise RecordError(f"unknown op {raw_op!r}") from None

        kwargs: Dict[str, Any] = {"kind": kind}
        for key in ("name", "to", "label"):
            if key in fields:
                val = fields.pop(key)
                if not isinstance(val, str):
                    raise RecordError(f"{kind.value}.{key} must be a string")
                kwargs[key] = val
        for key in _INT_FIELDS:
            if key in fields:
                val = fields.pop(key)
                if isinstance(val, str) and val[:1] == "@" and val[1:].isdigit():
                    val = int(val[1:])
                if isinstance(val, bool) or not isinstance(val, int):
                    raise RecordError(f"{kind.value}.{key} must be an integer")
                kwargs[key] = val
        if "kind" in fields:
            try:
                kwargs["value_kind"] = ValueKind(fields.pop("kind"))
            except ValueError as exc:
                raise RecordError(f"{kind.value}: {exc}") from None
        if "uninit" in fields:
            val = fields.pop("uninit")
            if not isinstance(val, bool):
                raise RecordError(f"{kind.value}.uninit must be true or false")
            kwargs["uninit"] = val
        if "line" in fields:
            val = fields.pop("line")
            if isinstance(val, bool) or not isinstance(val, int) or val < 0:
                raise RecordError(f"{kind.value}.line must be a non-negative integer")
            kwargs["line"] = val
        if fields:
            raise RecordError(
                f"{kind.value} does not take {', '.join(sorted(fields))}")
        return cls(**kwargs).validate()

    def __str__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.to_record().items()
                         if k not in ("op", "line"))
        return f"{self.kind.value}({args})"


@dataclass
class Outcome:
    """Result of applying one operation: ``Ok`` or ``Err(kind, binding)``."""

    op: Operation
    index: int
    violation: Optional[Violation] = None
    value: Any = None
    related: List[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.violation is None

    def __str__(self) -> str:
        if self.violation is None:
            return "Ok"
        return f"Err({self.violation.kind.value}, {self.violation.binding or '-'})"
