"""
oplog — operation-log front end for borrowsim.

Reads the oplog text format (a parsimonious PEG grammar), JSON / JSON-lines
record replays and S-expression logs, and hosts the ``borrowsim`` CLI.
"""

from oplog.errors import OplogError, OplogLoadError, OplogSyntaxError, SourceSpan
from oplog.parser import (
    format_log,
    format_operation,
    load,
    loads_json,
    loads_jsonl,
    parse,
    parse_records,
)
from oplog.sexp import dumps_sexp, loads_sexp

__all__ = [
    "OplogError",
    "OplogLoadError",
    "OplogSyntaxError",
    "SourceSpan",
    "parse",
    "parse_records",
    "load",
    "loads_json",
    "loads_jsonl",
    "loads_sexp",
    "dumps_sexp",
    "format_operation",
    "format_log",
]
