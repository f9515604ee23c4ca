"""Tin entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Any, List, Optional

from extensions import TinExtensionError, load_runtime_services
from interpreter import DiagnosticFormatter, ExitSignal, Interpreter
from lexer import TinError
from preprocessor import FileContentProvider


def parse_define(raw: str) -> Any:
    """Interpret the VALUE of ``-D NAME=VALUE`` as an int, a float or a string."""
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        pass
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    return raw


def _brace_balance(text: str) -> int:
    balance = 0
    in_string = False
    for ch in text:
        if ch == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif ch == ";":
            break
        elif ch == "{":
            balance += 1
        elif ch == "}":
            balance -= 1
    return balance


def run_repl(interpreter: Interpreter, verbose: bool) -> int:
    print("\x1b[38;2;153;221;255mTin\033[0m REPL. Statements run once their braces balance.") # "Tin" in light blue
    formatter = DiagnosticFormatter(interpreter)
    buffer: List[str] = []
    balance = 0

    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m " # light blue
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        if line.strip() or buffer:
            buffer.append(line)
        balance += _brace_balance(line)
        # Run once braces close, or on a blank line.
        if not buffer or (balance > 0 and line.strip()):
            continue

        source_text = "\n".join(buffer)
        buffer.clear()
        balance = 0
        try:
            interpreter.run(source_text, "<stdin>")
        except ExitSignal as sig:
            return sig.code
        except TinError as error:
            print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Tin script interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit recent steps and variables with errors")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit a JSON error report")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an extension (.py, .tinx or bundled name)")
    parser.add_argument("-I", "--include", action="append", default=[], metavar="DIR", help="Add a directory to the import search path")
    parser.add_argument("-D", "--define", action="append", default=[], metavar="NAME=VALUE", help="Seed a global variable before the run")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.ext)
    except TinExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.source_mode:
        if args.program is None:
            print("-source requires a program string", file=sys.stderr)
            return 1
        source_text = args.program
        filename = "<string>"
    elif args.program is not None:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f"ERROR: Can't read source file '{filename}': {exc}", file=sys.stderr)
            return 1
    else:
        filename = "<stdin>"
        source_text = ""

    try:
        interpreter = Interpreter(
            filename=filename,
            verbose=args.verbose,
            provider=FileContentProvider(args.include),
            services=services,
        )
        for definition in args.define:
            name, sep, raw = definition.partition("=")
            if not sep:
                raise TinExtensionError(f"-D expects NAME=VALUE, got '{definition}'")
            interpreter.set_global(name.strip(), parse_define(raw))
    except TinExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        return run_repl(interpreter, verbose=args.verbose)

    try:
        interpreter.run(source_text, filename)
    except ExitSignal as sig:
        return sig.code
    except TinError as error:
        formatter = DiagnosticFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
