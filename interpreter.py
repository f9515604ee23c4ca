from __future__ import annotations
import json
import math
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np

from extensions import HookRegistry, RuntimeServices, TinExtensionError, build_default_services
from lexer import (
    SENTINEL,
    Scanner,
    TinError,
    TinSyntaxError,
    is_add_op,
    is_alnum,
    is_alpha,
    is_digit,
    is_mul_op,
)
from preprocessor import ContentProvider, FileContentProvider, Preprocessor, SourceBuffer, SourceLocation, TinIOError


TYPE_STR = "STR"
TYPE_INT = "INT"
TYPE_FLT = "FLT"
TYPE_SUB = "SUB"

STEP_LOG_CAPACITY = 4096
IO_LOG_CAPACITY = 4096


@dataclass
class Value:
    type: str
    value: Any


@dataclass(frozen=True)
class Subroutine:
    name: str
    buffer: SourceBuffer
    offset: int


class TinNameError(TinError):
    """Raised for unknown variables and subroutines, or the wrong kind of either."""

    kind = "name"


class TinHostError(TinError):
    """Raised when a host function reports a failure."""

    kind = "host"


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


def number_value(number: Any) -> Value:
    x = float(number)
    if math.isfinite(x) and x.is_integer():
        return Value(TYPE_INT, int(x))
    return Value(TYPE_FLT, x)


def format_number(value: Value) -> str:
    if value.type == TYPE_INT:
        return str(value.value)
    return np.format_float_positional(np.float64(value.value), trim="-")


def to_text(value: Value) -> str:
    if value.type == TYPE_STR:
        return value.value
    if value.type in (TYPE_INT, TYPE_FLT):
        return format_number(value)
    return f"<subroutine {value.value.name}>"


def to_value(obj: Any) -> Value:
    if isinstance(obj, Value):
        return obj
    if isinstance(obj, Subroutine):
        return Value(TYPE_SUB, obj)
    if isinstance(obj, str):
        return Value(TYPE_STR, obj)
    if isinstance(obj, (bool, int, np.integer)):
        return Value(TYPE_INT, int(obj))
    if isinstance(obj, (float, np.floating)):
        return number_value(obj)
    raise TinExtensionError(f"Cannot convert {type(obj).__name__} to a Tin value")


def _arith(op: str, left: np.float64, right: np.float64) -> np.float64:
    # Division by zero and overflow follow IEEE-754 (inf/nan).
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        return left / right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if op == "<=":
        return left <= right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left > right


RELATIONAL_OPERATORS = ("==", "!=", "<=", "<", ">=", ">")


@dataclass
class StateEntry:
    step_index: int
    rule: str
    buffer: SourceBuffer
    position: int
    env_snapshot: Optional[Dict[str, str]]

    @property
    def location(self) -> SourceLocation:
        return self.buffer.locate(self.position)


class StateLogger:
    def __init__(self, verbose: bool, capacity: int = STEP_LOG_CAPACITY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=capacity)
        self.next_state_index = 0

    def record(
        self,
        *,
        rule: str,
        buffer: SourceBuffer,
        position: int,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        entry = StateEntry(
            step_index=self.next_state_index,
            rule=rule,
            buffer=buffer,
            position=position,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry


HostImpl = Callable[["Interpreter", List[Value]], None]


@dataclass
class HostFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: HostImpl
    doc: str = ""

    def validate(self, supplied: int) -> None:
        usage = f"; usage: {self.doc}" if self.doc else ""
        if supplied < self.min_args:
            raise TinExtensionError(f"{self.name} expects at least {self.min_args} arguments{usage}")
        if self.max_args is not None and supplied > self.max_args:
            raise TinExtensionError(f"{self.name} expects at most {self.max_args} arguments{usage}")


def _is_identifier(name: str) -> bool:
    return bool(name) and is_alpha(name[0]) and all(is_alnum(ch) for ch in name)


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        provider: Optional[ContentProvider] = None,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        install_defaults: bool = True,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.provider = provider or FileContentProvider()
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or input
        self.output_sink = output_sink or (lambda text: print(text, end="", flush=True))

        self.variables: Dict[str, Value] = {}
        self.host_functions: Dict[str, HostFunction] = {}
        # Per-run scratch space for extensions (random generators, handles, ...).
        self.extension_state: Dict[str, Any] = {}
        self.logger = StateLogger(verbose=verbose)
        self.io_log: Deque[Dict[str, Any]] = deque(maxlen=IO_LOG_CAPACITY)

        self.buffer = SourceBuffer(SENTINEL, [])
        self.scanner = Scanner(self.buffer.text)
        self.returning = False
        self._running = False
        self._statements: Dict[str, Callable[[bool], None]] = {
            "if": self._if,
            "while": self._while,
            "break": self._break,
            "call": self._call,
            "def": self._def,
            "return": self._return,
        }

        if install_defaults:
            from hostfuncs import install_default_host_functions

            install_default_host_functions(self)

        # Extension-provided host functions cannot override existing names.
        for name, min_args, max_args, impl, doc in self.services.functions:
            if name in self.host_functions:
                raise TinExtensionError(f"Cannot override existing host function '{name}'")
            self.register(name, impl, min_args=min_args, max_args=max_args, doc=doc)

    # ---- embedding API ----

    def register(
        self,
        name: str,
        impl: HostImpl,
        *,
        min_args: int = 0,
        max_args: Optional[int] = None,
        doc: str = "",
    ) -> None:
        if self._running:
            raise TinExtensionError(f"Cannot register host function '{name}' while a run is in progress")
        if not _is_identifier(name):
            raise TinExtensionError(f"Invalid host function name '{name}'")
        self.host_functions[name] = HostFunction(name=name, min_args=min_args, max_args=max_args, impl=impl, doc=doc)

    def set_global(self, name: str, value: Any) -> None:
        if not _is_identifier(name):
            raise TinExtensionError(f"Invalid variable name '{name}'")
        self.variables[name] = to_value(value)

    def get_global(self, name: str) -> Optional[Value]:
        return self.variables.get(name)

    def globals_snapshot(self) -> Dict[str, str]:
        return {name: to_text(value) for name, value in self.variables.items()}

    def preprocess(self, source: str, filename: Optional[str] = None) -> SourceBuffer:
        return Preprocessor(self.provider).process(source, filename or self.filename)

    def run_file(self, path: str) -> None:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                source = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise TinIOError(f"error reading file {path}: {exc}")
        self.run(source, path)

    def run(self, source: str, filename: Optional[str] = None) -> None:
        self._running = True
        self.returning = False
        try:
            buffer = self.preprocess(source, filename)
            self._load(buffer, 0)
            self._emit_event("program_start", self, buffer)
            self._execute()
        except ExitSignal as sig:
            self._emit_event("program_end", self, sig.code)
            raise
        except TinError as error:
            self._attach_location(error)
            self._emit_event("on_error", self, error)
            raise
        except RecursionError:
            wrapped = TinError("subroutine nesting too deep", position=self.scanner.index)
            self._attach_location(wrapped)
            self._emit_event("on_error", self, wrapped)
            raise wrapped
        else:
            self._emit_event("program_end", self, 0)
        finally:
            self._running = False
            self.returning = False

    # ---- executor ----

    def _load(self, buffer: SourceBuffer, index: int) -> None:
        self.buffer = buffer
        self.scanner.text = buffer.text
        self.scanner.index = index

    def _execute(self) -> None:
        scanner = self.scanner
        while scanner.skip_layout() != SENTINEL:
            self._block(True)
            if self.returning:
                # return at top level ends the run
                break

    def _block(self, active: bool) -> None:
        scanner = self.scanner
        if scanner.take_next("{"):
            while not scanner.take_next("}"):
                if self.returning:
                    return
                if scanner.at_end:
                    raise TinSyntaxError("missing '}'", position=scanner.index)
                self._statement(active)
        else:
            self._statement(active)

    def _statement(self, active: bool) -> None:
        scanner = self.scanner
        scanner.skip_layout()
        start = scanner.index
        ident = scanner.take_identifier()
        if not ident:
            raise TinSyntaxError("unknown statement", position=start)

        host = self.host_functions.get(ident)
        if host is not None:
            if active:
                self._log_step(rule=f"host:{ident}", position=start)
            self._host_call(host, active)
            return

        handler = self._statements.get(ident)
        if handler is not None:
            if active:
                self._log_step(rule=ident, position=start)
            handler(active)
            return

        scanner.index = start
        if active:
            self._log_step(rule="assign", position=start)
        self._assign(active)

    def _if(self, active: bool) -> None:
        taken = self._boolean_expression(active)
        self._block(active and taken)
        if self.scanner.match_keyword("else"):
            self._block(active and not taken)

    def _while(self, active: bool) -> None:
        scanner = self.scanner
        head = scanner.index
        while self._boolean_expression(active):
            self._block(active)
            if self.returning:
                return
            scanner.index = head
        # Scan over the body once more to leave the loop.
        self._block(False)

    def _break(self, active: bool) -> None:
        # break does not reach the enclosing loop; it only consumes its keyword.
        return

    def _return(self, active: bool) -> None:
        if active:
            self.returning = True

    def _call(self, active: bool) -> None:
        scanner = self.scanner
        scanner.skip_layout()
        start = scanner.index
        ident = scanner.take_identifier()
        value = self.variables.get(ident)
        if value is None or value.type != TYPE_SUB:
            raise TinNameError("unknown subroutine", position=start)
        if active:
            self._invoke(value.value, start)

    def _def(self, active: bool) -> None:
        scanner = self.scanner
        ident = scanner.take_identifier()
        if not ident:
            raise TinSyntaxError("missing subroutine identifier", position=scanner.index)
        self.variables[ident] = Value(TYPE_SUB, Subroutine(name=ident, buffer=self.buffer, offset=scanner.index))
        # The body is only scanned here; it runs on call.
        self._block(False)

    def _invoke(self, subroutine: Subroutine, call_position: int) -> None:
        caller_buffer, caller_index = self.buffer, self.scanner.index
        self._load(subroutine.buffer, subroutine.offset)
        try:
            self._block(True)
        except TinError as error:
            self._attach_location(error)
            error.call_trace.append((subroutine.name, caller_buffer.locate(call_position)))
            raise
        finally:
            self._load(caller_buffer, caller_index)
            self.returning = False

    def _assign(self, active: bool) -> None:
        scanner = self.scanner
        ident = scanner.take_identifier()
        if not ident or not scanner.take_next("="):
            raise TinSyntaxError("unknown statement", position=scanner.index)
        value = self._expression(active)
        # Suppressed assignments still initialize a variable that has never been set.
        if active or ident not in self.variables:
            self.variables[ident] = value

    def _host_call(self, host: HostFunction, active: bool) -> None:
        start = self.scanner.index
        args = self._collect_args(active)
        if not active:
            return
        try:
            host.validate(len(args))
            host.impl(self, args)
        except ExitSignal:
            raise
        except TinError as error:
            if error.position is None and error.location is None:
                error.position = start
            raise
        except Exception as exc:
            raise TinHostError(f"error in function '{host.name}': {exc}", position=start) from exc

    def _collect_args(self, active: bool) -> List[Value]:
        scanner = self.scanner
        args: List[Value] = []
        ch = scanner.skip_inline()
        if ch == "\n" or ch == "}" or ch == SENTINEL:
            return args
        while True:
            value = self._expression(active)
            if active:
                args.append(value)
            if not scanner.take_next(","):
                return args

    # ---- expressions ----

    def _boolean_expression(self, active: bool) -> bool:
        b = self._boolean_term(active)
        while self.scanner.match_keyword("or"):
            # Both sides are always scanned.
            other = self._boolean_term(active)
            b = b or other
        return b

    def _boolean_term(self, active: bool) -> bool:
        b = self._boolean_factor(active)
        while self.scanner.match_keyword("and"):
            other = self._boolean_factor(active)
            b = b and other
        return b

    def _boolean_factor(self, active: bool) -> bool:
        scanner = self.scanner
        invert = scanner.take_next("!")
        left = self._expression(active)
        scanner.skip_layout()
        if left.type == TYPE_STR:
            b = left.value != ""
            if scanner.match_literal("=="):
                b = left.value == self._string_expression(active)
            elif scanner.match_literal("!="):
                b = left.value != self._string_expression(active)
        else:
            b = left.value != 0
            for op in RELATIONAL_OPERATORS:
                if scanner.match_literal(op):
                    right = float(self._math_expression(active))
                    if left.type == TYPE_INT and math.isfinite(right):
                        # Integer comparisons drop the right side's fraction.
                        right = math.trunc(right)
                    b = _compare(op, left.value, right)
                    break
        # An inactive condition is always false.
        return active and (b != invert)

    def _expression(self, active: bool) -> Value:
        scanner = self.scanner
        start = scanner.index
        ident = scanner.take_identifier()
        scanner.index = start
        ch = scanner.skip_layout()
        if ch == '"' or ident == "str" or ident == "input":
            return Value(TYPE_STR, self._string_expression(active))
        held = self.variables.get(ident) if ident else None
        if held is not None and held.type == TYPE_STR:
            return Value(TYPE_STR, self._string_expression(active))
        return number_value(self._math_expression(active))

    def _math_expression(self, active: bool) -> np.float64:
        scanner = self.scanner
        sign = scanner.skip_layout()
        if is_add_op(sign):
            scanner.consume()
        m = self._math_term(active)
        if sign == "-":
            m = -m
        while is_add_op(scanner.skip_layout()):
            op = scanner.consume()
            m = _arith(op, m, self._math_term(active))
        return m

    def _math_term(self, active: bool) -> np.float64:
        scanner = self.scanner
        m = self._math_factor(active)
        while is_mul_op(scanner.skip_layout()):
            op = scanner.consume()
            m = _arith(op, m, self._math_factor(active))
        return m

    def _math_factor(self, active: bool) -> np.float64:
        scanner = self.scanner
        ch = scanner.skip_layout()
        start = scanner.index
        if scanner.take_next("("):
            m = self._math_expression(active)
            self._expect(")")
            return m
        if is_digit(ch):
            return self._number_literal()
        if scanner.match_literal("val("):
            text = self._string_expression(active)
            self._expect(")")
            if not active:
                return np.float64(0.0)
            try:
                return np.float64(float(text.strip()))
            except ValueError:
                return np.float64(0.0)
        ident = scanner.take_identifier()
        if not ident:
            raise TinSyntaxError("expected number or variable", position=start)
        value = self.variables.get(ident)
        if value is None or value.type not in (TYPE_INT, TYPE_FLT):
            raise TinNameError("unknown variable", position=start)
        return np.float64(value.value)

    def _number_literal(self) -> np.float64:
        scanner = self.scanner
        start = scanner.index
        text = scanner.take_number()
        try:
            return np.float64(float(text))
        except ValueError:
            raise TinSyntaxError("invalid number format", position=start)

    def _string_expression(self, active: bool) -> str:
        s = self._string_factor(active)
        while self.scanner.take_next("+"):
            s += self._string_factor(active)
        return s

    def _string_factor(self, active: bool) -> str:
        scanner = self.scanner
        ch = scanner.skip_layout()
        start = scanner.index
        if ch == '"':
            scanner.consume()
            return self._string_literal(start)
        if scanner.match_literal("str("):
            text = format_number(number_value(self._math_expression(active)))
            self._expect(")")
            return text
        if scanner.match_literal("input()"):
            if not active:
                return ""
            try:
                text = self.input_provider()
            except EOFError:
                # Exhausted input reads as an empty line.
                text = ""
            self.io_log.append({"event": "INPUT", "text": text})
            return text.strip()
        ident = scanner.take_identifier()
        if ident:
            value = self.variables.get(ident)
            if value is None:
                raise TinNameError("unknown variable", position=start)
            if value.type == TYPE_SUB:
                raise TinNameError("unknown variable type", position=start)
            return to_text(value)
        if is_digit(ch) or ch == "-":
            negative = ch == "-"
            if negative:
                scanner.consume()
            text = scanner.take_number()
            try:
                number = float(text)
            except ValueError:
                raise TinSyntaxError("invalid number format", position=start)
            return format_number(number_value(-number if negative else number))
        raise TinSyntaxError("expected string or number", position=start)

    def _string_literal(self, start: int) -> str:
        scanner = self.scanner
        chars: List[str] = []
        while True:
            ch = scanner.consume_raw()
            if ch == '"':
                return "".join(chars)
            if ch == SENTINEL:
                raise TinSyntaxError("unexpected EOF", position=start)
            if ch == "\\" and scanner.text[scanner.index] == "n":
                scanner.index += 1
                chars.append("\n")
                continue
            chars.append(ch)

    def _expect(self, ch: str) -> None:
        if not self.scanner.take_next(ch):
            raise TinSyntaxError(f"missing '{ch}'", position=self.scanner.index)

    # ---- diagnostics ----

    def _attach_location(self, error: TinError) -> None:
        if error.location is None and error.position is not None:
            error.location = self.buffer.locate(error.position)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except TinError:
            raise
        except Exception as exc:
            raise TinError(f"Extension hook '{event}' failed: {exc}", position=self.scanner.index)

    def _log_step(self, *, rule: str, position: int) -> None:
        env_snapshot = self.globals_snapshot() if self.verbose else None
        self.logger.record(rule=rule, buffer=self.buffer, position=position, env_snapshot=env_snapshot)
        if self.hook_registry.has_handlers("before_statement"):
            self._emit_event("before_statement", self, rule, position)


def format_error(error: TinError) -> str:
    loc = error.location
    if loc is None:
        return f"ERROR {error.message}"
    return f"ERROR {error.message} in '{loc.file}' on line {loc.line}: '{loc.before}_{loc.after}'"


class DiagnosticFormatter:
    def __init__(self, interpreter: Interpreter, recent_steps: int = 8) -> None:
        self.interpreter = interpreter
        self.recent_steps = recent_steps

    def recent(self) -> List[StateEntry]:
        entries = list(self.interpreter.logger.entries)
        return entries[-self.recent_steps:]

    def format_text(self, error: TinError, verbose: bool = False) -> str:
        lines = [format_error(error)]
        if not verbose:
            return "\n".join(lines)
        for name, loc in error.call_trace:
            lines.append(f"  in subroutine '{name}' called from '{loc.file}' on line {loc.line}")
        steps = self.recent()
        if steps:
            lines.append("Recent steps (most recent last):")
            for entry in steps:
                loc = entry.location
                lines.append(f"  #{entry.step_index} {entry.rule} in '{loc.file}' on line {loc.line}")
            snapshot = steps[-1].env_snapshot
            if snapshot is not None:
                rendered = ", ".join(f"{k}={v!r}" for k, v in snapshot.items())
                lines.append(f"  Variables: {rendered}")
        return "\n".join(lines)

    def to_json(self, error: TinError) -> str:
        loc = error.location
        data: Dict[str, Any] = {
            "error": {
                "type": error.__class__.__name__,
                "kind": error.kind,
                "message": error.message,
                "file": loc.file if loc else None,
                "line": loc.line if loc else None,
                "column": loc.column if loc else None,
                "context": [loc.before, loc.after] if loc else None,
            },
            "call_trace": [
                {"subroutine": name, "file": site.file, "line": site.line}
                for name, site in error.call_trace
            ],
            "recent_steps": [
                {
                    "step_index": entry.step_index,
                    "rule": entry.rule,
                    "file": entry.location.file,
                    "line": entry.location.line,
                }
                for entry in self.recent()
            ],
        }
        return json.dumps(data, indent=2)
