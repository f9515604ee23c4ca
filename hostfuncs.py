"""Default host functions: print, println, wait and exit."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, List

from extensions import TinExtensionError
from interpreter import TYPE_FLT, TYPE_INT, TYPE_STR, ExitSignal, Value, to_text

if TYPE_CHECKING:
    from interpreter import Interpreter


def _expect_number(value: Value, rule: str) -> float:
    if value.type not in (TYPE_INT, TYPE_FLT):
        raise TinExtensionError(f"{rule} expects a number, got {value.type}")
    return float(value.value)


def _expect_int(value: Value, rule: str) -> int:
    if value.type != TYPE_INT:
        raise TinExtensionError(f"{rule} expects an integer, got {value.type}")
    return int(value.value)


def _render(args: List[Value]) -> List[str]:
    rendered: List[str] = []
    for arg in args:
        if arg.type not in (TYPE_INT, TYPE_FLT, TYPE_STR):
            raise TinExtensionError("unsupported argument type")
        rendered.append(to_text(arg))
    return rendered


def _print(interpreter: "Interpreter", args: List[Value]) -> None:
    text = "".join(_render(args))
    interpreter.output_sink(text)
    interpreter.io_log.append({"event": "PRINT", "values": [arg.value for arg in args]})


def _println(interpreter: "Interpreter", args: List[Value]) -> None:
    rendered = _render(args)
    # Every argument gets its own line; no arguments prints an empty line.
    text = "".join(f"{part}\n" for part in rendered) if rendered else "\n"
    interpreter.output_sink(text)
    interpreter.io_log.append({"event": "PRINT", "values": [arg.value for arg in args]})


def _wait(interpreter: "Interpreter", args: List[Value]) -> None:
    millis = _expect_number(args[0], "wait")
    if millis < 0:
        raise TinExtensionError("wait expects a non-negative duration")
    time.sleep(millis / 1000.0)


def _exit(interpreter: "Interpreter", args: List[Value]) -> None:
    code = _expect_int(args[0], "exit") if args else 0
    interpreter.io_log.append({"event": "EXIT", "code": code})
    raise ExitSignal(code)


def install_default_host_functions(interpreter: "Interpreter") -> None:
    interpreter.register("print", _print, min_args=0, max_args=None, doc="print value, ...")
    interpreter.register("println", _println, min_args=0, max_args=None, doc="println value, ...")
    interpreter.register("wait", _wait, min_args=1, max_args=1, doc="wait milliseconds")
    interpreter.register("exit", _exit, min_args=0, max_args=1, doc="exit [code]")
