"""Tin extension: pseudo-random numbers backed by numpy's Generator.

Results are written into variables named by the first argument, since host
functions are statements and return nothing::

    seed 42
    randint "roll", 1, 6
    randfloat "p"
"""

from __future__ import annotations

from typing import Any, List

import numpy as np

from extensions import ExtensionAPI, TinExtensionError

TIN_EXTENSION_NAME = "rand"
TIN_EXTENSION_API_VERSION = 1


def _expect_int(v: Any, rule: str) -> int:
    from interpreter import TYPE_INT

    if getattr(v, "type", None) != TYPE_INT:
        raise TinExtensionError(f"{rule} expects INT")
    return int(v.value)


def _expect_str(v: Any, rule: str) -> str:
    from interpreter import TYPE_STR

    if getattr(v, "type", None) != TYPE_STR:
        raise TinExtensionError(f"{rule} expects STR")
    return str(v.value)


def _generator(interpreter: Any) -> np.random.Generator:
    state = interpreter.extension_state
    if "rand.rng" not in state:
        state["rand.rng"] = np.random.default_rng()
    return state["rand.rng"]


def _seed(interpreter: Any, args: List[Any]) -> None:
    seed = _expect_int(args[0], "seed")
    if seed < 0:
        raise TinExtensionError("seed expects a non-negative integer")
    interpreter.extension_state["rand.rng"] = np.random.default_rng(seed)


def _randint(interpreter: Any, args: List[Any]) -> None:
    target = _expect_str(args[0], "randint")
    low = _expect_int(args[1], "randint")
    high = _expect_int(args[2], "randint")
    if high < low:
        raise TinExtensionError(f"randint range is empty ({low} > {high})")
    interpreter.set_global(target, int(_generator(interpreter).integers(low, high, endpoint=True)))


def _randfloat(interpreter: Any, args: List[Any]) -> None:
    target = _expect_str(args[0], "randfloat")
    interpreter.set_global(target, float(_generator(interpreter).random()))


def tin_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="rand", version="0.1.0")
    ext.register_function("seed", 1, 1, _seed, doc="seed n")
    ext.register_function("randint", 3, 3, _randint, doc='randint "var", low, high (inclusive)')
    ext.register_function("randfloat", 1, 1, _randfloat, doc='randfloat "var" -> [0, 1)')
