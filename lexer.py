from __future__ import annotations
from typing import Any, List, Optional, Tuple


class TinError(Exception):
    """Base class for interpreter errors."""

    kind = "runtime"

    def __init__(
        self,
        message: str,
        *,
        position: Optional[int] = None,
        location: Any = None,  # SourceLocation | None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.position = position
        self.location = location
        # (subroutine name, call-site location), innermost call first
        self.call_trace: List[Tuple[str, Any]] = []


class TinSyntaxError(TinError):
    """Raised when an expected token, bracket or keyword is absent."""

    kind = "syntax"


SENTINEL = "\0"
COMMENT = ";"
MARKER = "#"
LAYOUT = " \t\n\r"


def is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def is_alpha(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def is_alnum(ch: str) -> bool:
    return is_digit(ch) or is_alpha(ch)


def is_add_op(ch: str) -> bool:
    return ch == "+" or ch == "-"


def is_mul_op(ch: str) -> bool:
    return ch == "*" or ch == "/"


class Scanner:
    """Cursor over a sentinel-terminated source buffer.

    There is no token stream: every routine reads characters at ``index``
    and moves it forward.  ``match_literal`` rewinds on failure, which is
    what lets callers try ``<=`` before ``<`` or a keyword before an
    identifier.
    """

    def __init__(self, text: str, index: int = 0) -> None:
        if not text.endswith(SENTINEL):
            text += SENTINEL
        self.text = text
        self.index = index

    def peek(self) -> str:
        text = self.text
        if text[self.index] == COMMENT:
            # Comments run up to (not including) the newline.
            index = self.index
            while text[index] != "\n" and text[index] != SENTINEL:
                index += 1
            self.index = index
        return text[self.index]

    def consume(self) -> str:
        ch = self.peek()
        if ch != SENTINEL:
            self.index += 1
        return ch

    def consume_raw(self) -> str:
        # Used inside string literals, where ';' is an ordinary character.
        ch = self.text[self.index]
        if ch != SENTINEL:
            self.index += 1
        return ch

    def match_literal(self, word: str) -> bool:
        start = self.index
        for expected in word:
            if self.consume() != expected:
                self.index = start
                return False
        return True

    def match_keyword(self, word: str) -> bool:
        """Match ``word`` after layout, only when it is not an identifier prefix."""
        self.skip_layout()
        start = self.index
        if not self.match_literal(word):
            return False
        if is_alnum(self.text[self.index]):
            self.index = start
            return False
        return True

    def skip_layout(self) -> str:
        text = self.text
        while True:
            ch = self.peek()
            if ch in LAYOUT:
                self.index += 1
                continue
            if ch == MARKER:
                # Marker lines (#file:line) carry no syntax.
                while text[self.index] != "\n" and text[self.index] != SENTINEL:
                    self.index += 1
                continue
            return ch

    def skip_inline(self) -> str:
        while True:
            ch = self.peek()
            if ch == " " or ch == "\t" or ch == "\r":
                self.index += 1
                continue
            return ch

    def take_next(self, ch: str) -> bool:
        if self.skip_layout() == ch:
            self.consume()
            return True
        return False

    def take_identifier(self) -> str:
        if not is_alpha(self.skip_layout()):
            return ""
        text = self.text
        start = self.index
        index = start
        while is_alnum(text[index]):
            index += 1
        self.index = index
        return text[start:index]

    def take_number(self) -> str:
        text = self.text
        start = self.index
        index = start
        while is_digit(text[index]) or text[index] == ".":
            index += 1
        self.index = index
        return text[start:index]

    @property
    def at_end(self) -> bool:
        return self.text[self.index] == SENTINEL
