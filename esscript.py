"""ESScript entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import DEFAULT_PROMPT, Interpreter, TracebackFormatter
from lexer import ESParseError
from memory import DEFAULT_CHAR_VARIABLES, DEFAULT_VARIABLES, ESRuntimeError


USAGE = "Usage: esscript [--debug=debugLevel] [--cvar=CVarAmount] [--var=VarAmount] <script>"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ESScript interpreter", usage=USAGE)
    parser.add_argument("script", nargs="?", help="Path to the script file")
    parser.add_argument("-debug", "--debug", dest="debug", type=int, default=0, help="Debug level of the interpreter")
    parser.add_argument("-cvar", "--cvar", dest="cvars", type=int, default=DEFAULT_CHAR_VARIABLES, help="Character variable amount")
    parser.add_argument("-var", "--var", dest="vars", type=int, default=DEFAULT_VARIABLES, help="Variable amount")
    parser.add_argument(
        "--entry-line",
        type=int,
        default=1,
        help="Line execution starts at (lines are numbered from 1, so 0 runs nothing)",
    )
    parser.add_argument("--keep-going", action="store_true", help="Report load and runtime errors and continue")
    parser.add_argument("--no-prompt", action="store_true", help="Do not print '< ' before reading input")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit memory snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.script is None:
        print("No script supplied!")
        print(USAGE)
        return 0
    if args.vars < 0 or args.cvars < 0:
        print("Memory sizes must be non-negative", file=sys.stderr)
        return 1

    try:
        with open(args.script, "rb") as handle:
            # One character per byte; lines split on b"\n" only.
            source_text = handle.read().decode("latin-1")
    except OSError as exc:
        print(f"Failed to read {args.script}: {exc}", file=sys.stderr)
        return 1

    interpreter = Interpreter(
        source=source_text,
        filename=args.script,
        verbose=args.verbose,
        variables=args.vars,
        char_variables=args.cvars,
        debug_level=args.debug,
        entry_line=args.entry_line,
        strict=not args.keep_going,
        prompt="" if args.no_prompt else DEFAULT_PROMPT,
    )
    try:
        interpreter.run()
    except ESParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except ESRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    if interpreter.diagnostics or interpreter.runtime_errors:
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
