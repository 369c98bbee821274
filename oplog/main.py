#!/usr/bin/env python3
"""oplog/main.py — CLI entry-point for the borrowsim permission simulator.

Usage examples
--------------
    # Replay an operation log and print one outcome per operation
    borrowsim run session.oplog

    # Pure validation pass: print violations only
    borrowsim check session.oplog -f json

    # Normalise a log into JSON records (or back into oplog text)
    borrowsim parse session.oplog -f json
    borrowsim parse session.jsonl -f text
    borrowsim parse session.oplog -f sexp

    # Permission table of every live binding after each step
    borrowsim trace session.oplog

    # List error codes, or describe one
    borrowsim explain
    borrowsim explain BSIM-1003

Exit codes
----------
    0   Success (no violations).
    1   The operation log could not be read or parsed.
    2   Infrastructure failure, or a protocol error aborted the run.
    3   One or more violations were found.

The module doubles as ``python -m oplog`` via ``oplog/__main__.py``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, List, Optional, Sequence, TextIO

from termcolor import colored

from borrowsim import __version__
from borrowsim.errors import ErrorCodes, Violation
from borrowsim.operations import Operation
from borrowsim.simulator import SimulationResult, Simulator, SimulatorConfig, validate
from oplog.errors import OplogError
from oplog.parser import format_log, format_operation, load
from oplog.sexp import dumps_sexp

_log = logging.getLogger("oplog")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2
EXIT_VIOLATION: int = 3

_LOGGERS = ("borrowsim", "oplog")


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``borrowsim`` and ``oplog`` loggers.

    0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler.set_name("oplog-cli")
    for name in _LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # Repeated main() calls in one process replace the handler.
        for old in [h for h in logger.handlers if h.get_name() == "oplog-cli"]:
            logger.removeHandler(old)
        logger.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _close_output(out: TextIO) -> None:
    if out is not sys.stdout:
        out.close()


_SEVERITY_COLORS = {"fatal": "magenta", "error": "red", "info": "cyan"}


def _use_color(args: argparse.Namespace, stream: TextIO) -> bool:
    choice = getattr(args, "color", "auto")
    if choice == "auto":
        return hasattr(stream, "isatty") and stream.isatty()
    return choice == "always"


def _colorize(line: str) -> str:
    """Highlight the severity word of a GCC-style diagnostic line."""
    for severity, color in _SEVERITY_COLORS.items():
        marker = f": {severity}: "
        if marker in line:
            painted = colored(severity, color, attrs=["bold"], force_color=True)
            return line.replace(marker, f": {painted}: ", 1)
    return line


def _emit_diagnostics(
    diagnostics: List[Any],
    fmt: str,
    stream: TextIO,
    color: bool = False,
) -> int:
    """Write *diagnostics* to *stream* in the chosen format.

    Returns the count of error-severity diagnostics (leaks are info).
    """
    error_count = 0
    for diag in diagnostics:
        if isinstance(diag, Violation) and diag.severity.is_error():
            error_count += 1
        elif isinstance(diag, OplogError):
            error_count += 1

        if fmt == "json":
            stream.write(json.dumps(diag.to_json()) + "\n")
        else:
            text = diag.to_gcc_format()
            stream.write((_colorize(text) if color else text) + "\n")

    if fmt == "summary":
        stream.write(f"\n--- {len(diagnostics)} diagnostic(s), "
                     f"{error_count} error(s) ---\n")
    return error_count


def _load_operations(args: argparse.Namespace) -> Optional[List[Operation]]:
    """Read ``args.log``; report problems on stderr and return ``None``."""
    path = _resolve_path(args.log, "operation log")
    try:
        return load(path)
    except OplogError as exc:
        _emit_diagnostics([exc], "gcc", sys.stderr, _use_color(args, sys.stderr))
        return None


def _config_from_args(args: argparse.Namespace, source: str) -> SimulatorConfig:
    return SimulatorConfig(
        stop_on_violation=getattr(args, "stop_on_violation", False),
        check_invariants=not getattr(args, "no_invariants", False),
        unwind_at_end=getattr(args, "unwind", False),
        implicit_root_frame=getattr(args, "implicit_frame", False),
        max_operations=getattr(args, "max_operations", 0) or 0,
        source=source,
    )


def _exit_code(aborted: bool, violations: List[Violation]) -> int:
    if aborted or any(v.kind.is_protocol for v in violations):
        return EXIT_INFRA
    if violations:
        return EXIT_VIOLATION
    return EXIT_OK


# ===========================================================================
# Sub-command implementations
# ===========================================================================

# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

def _write_outcomes(result: SimulationResult, out: TextIO) -> None:
    for outcome in result.outcomes:
        where = f"line {outcome.op.line}" if outcome.op.line else f"op {outcome.index}"
        text = format_operation(outcome.op)
        out.write(f"{where:>9}  {text:<36} {outcome}\n")


def cmd_run(args: argparse.Namespace) -> int:
    """Replay an operation log and print each operation's outcome.

    Violations are listed after the outcomes, followed by informational
    leak records for allocations still live at the end of the run.
    """
    ops = _load_operations(args)
    if ops is None:
        return EXIT_ERROR

    config = _config_from_args(args, args.log)
    _log.info("running %d operation(s) from %s", len(ops), args.log)
    result = Simulator(config).run(ops)

    out = _open_output(args.output)
    try:
        if args.format == "json":
            out.write(json.dumps(result.to_dict(), indent=2) + "\n")
        else:
            _write_outcomes(result, out)
            diagnostics: List[Any] = list(result.violations) + list(result.leaks)
            if diagnostics:
                out.write("\n")
                _emit_diagnostics(diagnostics, args.format, out, _use_color(args, out))
            if args.format == "summary":
                out.write(result.summary() + "\n")
    finally:
        _close_output(out)

    return _exit_code(result.aborted, result.violations)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

def cmd_check(args: argparse.Namespace) -> int:
    """Validate an operation log and print only the violations found."""
    ops = _load_operations(args)
    if ops is None:
        return EXIT_ERROR

    violations = validate(ops, _config_from_args(args, args.log))
    out = _open_output(args.output)
    try:
        _emit_diagnostics(violations, args.format, out, _use_color(args, out))
    finally:
        _close_output(out)

    _log.info("%s: %d violation(s)", args.log, len(violations))
    return _exit_code(False, violations)


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------

def cmd_parse(args: argparse.Namespace) -> int:
    """Print the normalised operation records, or re-render them as oplog text."""
    ops = _load_operations(args)
    if ops is None:
        return EXIT_ERROR

    out = _open_output(args.output)
    try:
        if args.format == "json":
            out.write(json.dumps([op.to_record() for op in ops], indent=2) + "\n")
        elif args.format == "sexp":
            out.write(dumps_sexp(ops))
        else:
            out.write(format_log(ops))
    finally:
        _close_output(out)
    return EXIT_OK


# ---------------------------------------------------------------------------
# trace
# ---------------------------------------------------------------------------

def _write_trace(result: SimulationResult, out: TextIO) -> None:
    for step in result.trace:
        where = f"line {step.op.line}: " if step.op.line else ""
        out.write(f"[{step.index}] {where}{format_operation(step.op)} => {step.outcome}\n")
        for frame in step.state["frames"]:
            out.write(f"    frame {frame['index']} {frame['label']}\n")
            for b in frame["bindings"]:
                view = b["view"] or "-"
                out.write(
                    f"      {b['name']:<10} {b['kind']:<6} {b['permissions']}"
                    f"  view {view:<3}  {b['state']:<18} {b['slot']}\n"
                )
        for block in step.state["heap"]:
            owner = block["owner"] or "-"
            out.write(
                f"    heap @{block['address']} len={block['size']} "
                f"cap={block['capacity']} {block['status']} owner={owner}\n"
            )


def cmd_trace(args: argparse.Namespace) -> int:
    """Replay a log and print the permission table after every step."""
    ops = _load_operations(args)
    if ops is None:
        return EXIT_ERROR

    result = Simulator(_config_from_args(args, args.log)).run(ops)
    out = _open_output(args.output)
    try:
        if args.format == "json":
            steps = [
                {
                    "index": step.index,
                    "op": step.op.to_record(),
                    "outcome": step.outcome,
                    "state": step.state,
                }
                for step in result.trace
            ]
            out.write(json.dumps(steps, indent=2) + "\n")
        else:
            _write_trace(result, out)
    finally:
        _close_output(out)
    return _exit_code(result.aborted, result.violations)


# ---------------------------------------------------------------------------
# explain
# ---------------------------------------------------------------------------

def cmd_explain(args: argparse.Namespace) -> int:
    """List every error code, or describe the one named."""
    out = _open_output(args.output)
    try:
        if not args.code:
            for code in ErrorCodes.all():
                out.write(f"  {code.code}  {code.title}\n")
            out.write(f"\n{len(ErrorCodes.all())} code(s).\n")
            return EXIT_OK

        code = ErrorCodes.lookup(args.code)
        if code is None:
            _log.error("Unknown error code: %s", args.code)
            return EXIT_ERROR
        out.write(f"{code.code} {code.title} "
                  f"({code.category.value}, {code.default_severity.value})\n")
        out.write(textwrap.indent(textwrap.fill(code.summary, 70), "  ") + "\n")
    finally:
        _close_output(out)
    return EXIT_OK


# ===========================================================================
# Argument parser construction
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    # --- Top-level parser --------------------------------------------------
    parser = argparse.ArgumentParser(
        prog="borrowsim",
        description=(
            "borrowsim — memory-model permission simulator.\n\n"
            "Replays operation logs over a model of stack frames and heap\n"
            "allocations and reports use-after-move, double free,\n"
            "conflicting borrows and dangling references."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              borrowsim run   session.oplog --unwind
              borrowsim check session.jsonl -f json
              borrowsim trace session.oplog
              borrowsim explain ConflictingBorrow
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "--color",
        choices=["auto", "always", "never"],
        default="auto",
        help="Colour diagnostic severities (default: auto, on a terminal).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # Shared argument groups (reusable) ------------------------------------

    def _add_log_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "log",
            metavar="LOG",
            help="Operation log (.oplog text, .json or .jsonl records, .sexp forms).",
        )

    def _add_output_args(p: argparse.ArgumentParser,
                         choices: Sequence[str] = ("json", "gcc", "summary"),
                         default: str = "gcc") -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )
        p.add_argument(
            "-f", "--format",
            choices=list(choices),
            default=default,
            help=f"Output format (default: {default}).",
        )

    def _add_simulation_args(p: argparse.ArgumentParser) -> None:
        g = p.add_argument_group("simulation")
        g.add_argument(
            "--stop-on-violation",
            action="store_true",
            help="Stop at the first violation.",
        )
        g.add_argument(
            "--unwind",
            action="store_true",
            help="Exit every frame still open at the end of the log.",
        )
        g.add_argument(
            "--implicit-frame",
            action="store_true",
            help="Start with one frame already entered.",
        )
        g.add_argument(
            "--max-operations",
            type=int,
            default=0,
            metavar="N",
            help="Apply at most N operations (default: unlimited).",
        )
        g.add_argument(
            "--no-invariants",
            action="store_true",
            help="Skip the safety-invariant check after each step.",
        )

    # --- run ---------------------------------------------------------------
    p_run = subparsers.add_parser(
        "run",
        help="Replay a log and print each outcome.",
        description="Apply every operation and print Ok or Err(kind, binding).",
    )
    _add_log_arg(p_run)
    _add_output_args(p_run)
    _add_simulation_args(p_run)
    p_run.set_defaults(func=cmd_run)

    # --- check -------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        help="Validate a log and print violations only.",
        description="Pure validation pass over a private simulator.",
    )
    _add_log_arg(p_check)
    _add_output_args(p_check)
    _add_simulation_args(p_check)
    p_check.set_defaults(func=cmd_check)

    # --- parse -------------------------------------------------------------
    p_parse = subparsers.add_parser(
        "parse",
        help="Print the normalised operation records.",
        description=(
            "Load a log and print it as JSON records, oplog text or "
            "S-expressions. "
            "Useful for converting between the input formats."
        ),
    )
    _add_log_arg(p_parse)
    _add_output_args(p_parse, choices=("json", "text", "sexp"), default="json")
    p_parse.set_defaults(func=cmd_parse)

    # --- trace -------------------------------------------------------------
    p_trace = subparsers.add_parser(
        "trace",
        help="Print the permission table after every step.",
        description=(
            "Replay a log and show frames, bindings (permissions, view, "
            "state, slot) and heap blocks after each operation."
        ),
    )
    _add_log_arg(p_trace)
    _add_output_args(p_trace, choices=("text", "json"), default="text")
    _add_simulation_args(p_trace)
    p_trace.set_defaults(func=cmd_trace)

    # --- explain -----------------------------------------------------------
    p_explain = subparsers.add_parser(
        "explain",
        help="List error codes or describe one.",
        description="Describe a BSIM-NNNN code, or a kind such as DoubleFree.",
    )
    p_explain.add_argument(
        "code",
        nargs="?",
        default=None,
        metavar="CODE",
        help="Code (BSIM-1002) or title (DoubleFree).",
    )
    p_explain.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout).',
    )
    p_explain.set_defaults(func=cmd_explain)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the borrowsim CLI and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
