"""Textual ``#import`` inclusion and position-to-source mapping.

The preprocessor flattens a script and everything it imports into one
buffer.  A marker line ``#<file>:<line>`` is written at the start of every
included file and again where the importing file resumes, and the same
information is kept as a sorted list of breakpoints so an error position can
be mapped back to the file and line it came from.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from lexer import MARKER, SENTINEL, TinError

IMPORT_DIRECTIVE = "#import "
SOURCE_EXTENSION = ".tin"


class TinIOError(TinError):
    """Raised when an imported file cannot be read."""

    kind = "io"


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    before: str
    after: str


@dataclass(frozen=True)
class Breakpoint:
    offset: int
    file: str
    line: int


class SourceBuffer:
    def __init__(self, text: str, breakpoints: List[Breakpoint]) -> None:
        if not text.endswith(SENTINEL):
            text += SENTINEL
        self.text = text
        self.breakpoints = breakpoints
        self._offsets = np.fromiter((bp.offset for bp in breakpoints), dtype=np.int64, count=len(breakpoints))
        # One uint32 per code point, so indices line up with str indices.
        # surrogatepass keeps lone surrogates (e.g. from argv) one unit wide.
        codepoints = np.frombuffer(text.encode("utf-32-le", "surrogatepass"), dtype=np.uint32)
        self._newlines = np.flatnonzero(codepoints == ord("\n"))

    def __len__(self) -> int:
        return len(self.text)

    def locate(self, position: int) -> SourceLocation:
        text = self.text
        position = max(0, min(position, len(text) - 1))
        slot = int(np.searchsorted(self._offsets, position, side="right")) - 1
        if slot < 0:
            filename, line = "unknown", 1
        else:
            bp = self.breakpoints[slot]
            crossed = int(np.searchsorted(self._newlines, position)) - int(np.searchsorted(self._newlines, bp.offset))
            filename, line = bp.file, bp.line + crossed
        start = text.rfind("\n", 0, position) + 1
        end = text.find("\n", position)
        if end == -1:
            end = len(text)
        return SourceLocation(
            file=filename,
            line=line,
            column=position - start + 1,
            before=text[start:position].replace(SENTINEL, ""),
            after=text[position:end].replace(SENTINEL, ""),
        )


class ContentProvider:
    """Resolves an import name to ``(display name, file contents)``."""

    def load(self, name: str, importer: str) -> Tuple[str, str]:
        raise NotImplementedError


class FileContentProvider(ContentProvider):
    def __init__(self, search_paths: Sequence[str] = ()) -> None:
        self.search_paths = list(search_paths)

    def candidates(self, name: str, importer: str) -> List[str]:
        filename = name + SOURCE_EXTENSION
        out: List[str] = []
        if not importer.startswith("<"):
            out.append(os.path.join(os.path.dirname(importer), filename))
        for path in self.search_paths:
            out.append(os.path.join(path, filename))
        out.append(filename)
        # Keep order, drop duplicates.
        return list(dict.fromkeys(out))

    def load(self, name: str, importer: str) -> Tuple[str, str]:
        last_error: Optional[OSError] = None
        for path in self.candidates(name, importer):
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    return path, handle.read()
            except UnicodeDecodeError as exc:
                raise TinIOError(f"error reading file {path}: {exc}")
            except OSError as exc:
                last_error = exc
        raise TinIOError(f"error reading file {name + SOURCE_EXTENSION}: {last_error}")


class DictContentProvider(ContentProvider):
    """In-memory provider keyed by file name (``"lib.tin"``)."""

    def __init__(self, files: Optional[Dict[str, str]] = None) -> None:
        self.files: Dict[str, str] = dict(files or {})

    def load(self, name: str, importer: str) -> Tuple[str, str]:
        filename = name + SOURCE_EXTENSION
        try:
            return filename, self.files[filename]
        except KeyError:
            raise TinIOError(f"error reading file {filename}: no such file")


class Preprocessor:
    def __init__(self, provider: ContentProvider) -> None:
        self.provider = provider
        self._parts: List[str] = []
        self._breakpoints: List[Breakpoint] = []
        self._length = 0

    def process(self, source: str, filename: str) -> SourceBuffer:
        self._parts = []
        self._breakpoints = []
        self._length = 0
        try:
            self._include(source, filename)
        except RecursionError:
            # Self-importing files recurse until the interpreter gives up.
            raise TinIOError(f"import nesting too deep while preprocessing '{filename}'")
        self._emit(SENTINEL)
        return SourceBuffer("".join(self._parts), self._breakpoints)

    def _emit(self, text: str) -> None:
        self._parts.append(text)
        self._length += len(text)

    def _marker(self, filename: str, line: int) -> None:
        self._emit(f"{MARKER}{filename}:{line}\n")
        self._breakpoints.append(Breakpoint(offset=self._length, file=filename, line=line))

    def _include(self, source: str, filename: str) -> None:
        self._marker(filename, 1)
        lines = source.split("\n")
        if lines[-1] == "":
            lines.pop()
        for number, raw in enumerate(lines, start=1):
            if raw.endswith("\r"):
                raw = raw[:-1]
            line = raw.strip()
            if not line.startswith(IMPORT_DIRECTIVE):
                self._emit(raw.replace(SENTINEL, "") + "\n")
                continue
            name = line[len(IMPORT_DIRECTIVE):].strip().strip('"')
            try:
                display, content = self.provider.load(name, filename)
            except TinIOError as error:
                if error.location is None:
                    error.location = SourceLocation(file=filename, line=number, column=1, before="", after=line)
                raise
            self._include(content, display)
            self._marker(filename, number + 1)


def preprocess(source: str, filename: str, provider: Optional[ContentProvider] = None) -> SourceBuffer:
    return Preprocessor(provider or FileContentProvider()).process(source, filename)
