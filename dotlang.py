"""Dot entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Tuple

from interpreter import DotRuntimeError, Environment, ErrorValue, Interpreter, TracebackFormatter, TYPE_NULL, render
from lexer import DotParseError, Lexer
from parser import Parser, Program


PROMPT = "\x1b[38;2;153;221;255m>>\033[0m "  # light blue


def _parse_source(text: str, filename: str) -> Tuple[Program, List[str]]:
    lexer = Lexer(text, filename)
    parser = Parser(lexer, filename, text.splitlines())
    program = parser.parse()
    return program, parser.errors


def _report_parse_errors(errors: List[str]) -> None:
    for message in errors:
        print(f"ParseError: {message}", file=sys.stderr)


def run_repl(verbose: bool) -> int:
    print("\x1b[38;2;153;221;255mDot\033[0m REPL. Type .exit to quit.")
    interpreter = Interpreter(source="", filename="<repl>", verbose=verbose)
    global_env = Environment()
    global_frame = interpreter._new_frame("<repl>", global_env, None)
    interpreter.call_stack.append(global_frame)

    while True:
        try:
            line = input(PROMPT)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if stripped == ".exit":
            break
        if stripped == "":
            continue

        program, errors = _parse_source(line, "<repl>")
        if errors:
            _report_parse_errors(errors)
            continue
        try:
            result = interpreter.execute(program, global_env)
        except DotRuntimeError as error:
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)
            # reset call stack to the single top-level frame to keep the REPL usable
            interpreter.call_stack = [global_frame]
            continue
        if isinstance(result, ErrorValue) or result.type != TYPE_NULL:
            print(render(result))
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dot", description="Dot language interpreter")
    parser.add_argument("program", nargs="?", help="Source file path, 'repl', or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("-check", "--check", dest="check", action="store_true", help="Parse only and report syntax errors")
    parser.add_argument("-recursion-limit", "--recursion-limit", dest="recursion_limit", type=int, default=None, help="Raise the host recursion limit for deeply recursive programs")
    args = parser.parse_args(argv)

    if args.recursion_limit is not None:
        if args.recursion_limit < 100:
            print("-recursion-limit must be at least 100", file=sys.stderr)
            return 1
        sys.setrecursionlimit(args.recursion_limit)

    if args.program is None or (args.program == "repl" and not args.source_mode):
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose)
    if args.check:
        try:
            interpreter.parse(strict=True)
        except DotParseError as error:
            _report_parse_errors(error.errors)
            return 1
        return 0

    program = interpreter.parse()
    # Syntax errors are reported but do not stop evaluation of what did parse.
    _report_parse_errors(interpreter.parse_errors)
    try:
        result = interpreter.run(program)
    except DotRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    print(render(result))
    return 1 if isinstance(result, ErrorValue) else 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
