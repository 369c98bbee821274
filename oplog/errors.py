# oplog/errors.py
"""
Errors raised while reading operation logs.

Both carry a :class:`SourceSpan` and render GCC-style, the same way
simulator violations do, so the CLI can print every diagnostic through
one path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from borrowsim.errors import ErrorCode, ErrorCodes


@dataclass(frozen=True)
class SourceSpan:
    """A position in an operation log (1-based line and column)."""

    file: str = ""
    line: int = 0
    column: int = 0

    @classmethod
    def from_offset(cls, text: str, offset: int, file: str = "") -> "SourceSpan":
        line = text.count("\n", 0, offset) + 1
        column = offset - (text.rfind("\n", 0, offset) + 1) + 1
        return cls(file=file, line=line, column=column)

    def __str__(self) -> str:
        if not self.file and self.line == 0:
            return "<unknown location>"
        parts = [self.file or "<oplog>"]
        if self.line > 0:
            parts.append(str(self.line))
            if self.column > 0:
                parts.append(str(self.column))
        return ":".join(parts)


class OplogError(Exception):
    """Base class for operation-log errors."""

    default_code: ErrorCode = ErrorCodes.OPLOG_LOAD

    def __init__(self, message: str, span: Optional[SourceSpan] = None,
                 code: Optional[ErrorCode] = None, source_line: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.span = span or SourceSpan()
        self.code = code or self.default_code
        self.source_line = source_line

    def to_gcc_format(self) -> str:
        lines = [f"{self.span}: error: {self.message} [{self.code}]"]
        if self.source_line:
            lines.append(f"    {self.source_line}")
            if self.span.column > 0:
                lines.append(f"    {' ' * (self.span.column - 1)}^")
        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code.code,
            "message": self.message,
            "severity": "error",
            "location": {
                "file": self.span.file,
                "line": self.span.line,
                "column": self.span.column,
            },
        }

    def __str__(self) -> str:
        return self.to_gcc_format()


class OplogSyntaxError(OplogError):
    """Text that does not match the oplog grammar, or an ill-formed statement."""

    default_code = ErrorCodes.OPLOG_SYNTAX


class OplogLoadError(OplogError):
    """A log file that cannot be read, or a JSON record that is malformed."""

    default_code = ErrorCodes.OPLOG_LOAD
