"""Tin extension: reading and writing text files.

    readfile "text", "notes.txt"
    writefile "out.txt", text
    appendfile "log.txt", "line\n"
"""

from __future__ import annotations

from typing import Any, List

from extensions import ExtensionAPI, TinExtensionError

TIN_EXTENSION_NAME = "fileio"
TIN_EXTENSION_API_VERSION = 1


def _expect_str(v: Any, rule: str) -> str:
    from interpreter import TYPE_STR

    if getattr(v, "type", None) != TYPE_STR:
        raise TinExtensionError(f"{rule} expects STR")
    return str(v.value)


def _readfile(interpreter: Any, args: List[Any]) -> None:
    target = _expect_str(args[0], "readfile")
    path = _expect_str(args[1], "readfile")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = handle.read()
    except OSError as exc:
        raise TinExtensionError(f"cannot read '{path}': {exc.strerror or exc}")
    interpreter.set_global(target, data)


def _write(path: str, text: str, mode: str) -> None:
    try:
        with open(path, mode, encoding="utf-8") as handle:
            handle.write(text)
    except OSError as exc:
        raise TinExtensionError(f"cannot write '{path}': {exc.strerror or exc}")


def _writefile(interpreter: Any, args: List[Any]) -> None:
    from interpreter import to_text

    _write(_expect_str(args[0], "writefile"), to_text(args[1]), "w")


def _appendfile(interpreter: Any, args: List[Any]) -> None:
    from interpreter import to_text

    _write(_expect_str(args[0], "appendfile"), to_text(args[1]), "a")


def tin_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="fileio", version="0.1.0")
    ext.register_function("readfile", 2, 2, _readfile, doc='readfile "var", path')
    ext.register_function("writefile", 2, 2, _writefile, doc="writefile path, value")
    ext.register_function("appendfile", 2, 2, _appendfile, doc="appendfile path, value")
