import os
import tempfile
import unittest

from lexer import SENTINEL
from preprocessor import (
    Breakpoint,
    DictContentProvider,
    FileContentProvider,
    TinIOError,
    preprocess,
)


class TestPreprocessor(unittest.TestCase):
    def test_plain_source_gets_leading_marker(self):
        buffer = preprocess("a = 1\n", "main.tin", DictContentProvider())
        self.assertEqual(buffer.text, "#main.tin:1\na = 1\n" + SENTINEL)
        self.assertEqual(buffer.breakpoints, [Breakpoint(offset=12, file="main.tin", line=1)])

    def test_import_is_inlined_with_resume_marker(self):
        provider = DictContentProvider({"lib.tin": "z = 3"})
        buffer = preprocess('x = 1\n#import "lib"\ny = 2', "main.tin", provider)
        expected = "#main.tin:1\nx = 1\n#lib.tin:1\nz = 3\n#main.tin:3\ny = 2\n" + SENTINEL
        self.assertEqual(buffer.text, expected)
        self.assertEqual(
            [(bp.file, bp.line) for bp in buffer.breakpoints],
            [("main.tin", 1), ("lib.tin", 1), ("main.tin", 3)],
        )

    def test_locate_maps_back_to_source_lines(self):
        provider = DictContentProvider({"lib.tin": "z = 3\n\nw = 4"})
        buffer = preprocess('x = 1\n#import "lib"\n\ny = 2', "main.tin", provider)
        text = buffer.text

        loc = buffer.locate(text.index("y = 2"))
        self.assertEqual((loc.file, loc.line), ("main.tin", 4))
        self.assertEqual(loc.after, "y = 2")

        loc = buffer.locate(text.index("4"))
        self.assertEqual((loc.file, loc.line), ("lib.tin", 3))
        self.assertEqual(loc.before, "w = ")
        self.assertEqual(loc.after, "4")
        self.assertEqual(loc.column, 5)

    def test_nested_imports_keep_their_own_line_numbers(self):
        provider = DictContentProvider({
            "middle.tin": 'm = 1\n#import "inner"\nm = 2',
            "inner.tin": "i = 1\ni = 2",
        })
        buffer = preprocess('#import "middle"\nmain = 1', "main.tin", provider)
        text = buffer.text
        self.assertEqual(buffer.locate(text.index("i = 2")).line, 2)
        self.assertEqual(buffer.locate(text.index("m = 2")).file, "middle.tin")
        self.assertEqual(buffer.locate(text.index("m = 2")).line, 3)
        self.assertEqual(buffer.locate(text.index("main = 1")).line, 2)

    def test_missing_import_reports_importing_line(self):
        with self.assertRaises(TinIOError) as ctx:
            preprocess('x = 1\n  #import "nope"', "main.tin", DictContentProvider())
        error = ctx.exception
        self.assertEqual(error.kind, "io")
        self.assertIn("nope.tin", error.message)
        self.assertEqual((error.location.file, error.location.line), ("main.tin", 2))

    def test_self_import_is_reported_not_hung(self):
        provider = DictContentProvider({"loop.tin": '#import "loop"'})
        with self.assertRaises(TinIOError) as ctx:
            preprocess('#import "loop"', "main.tin", provider)
        self.assertIn("import nesting too deep", ctx.exception.message)


class TestFileContentProvider(unittest.TestCase):
    def test_resolves_relative_to_importer_then_search_path(self):
        with tempfile.TemporaryDirectory() as root:
            scripts = os.path.join(root, "scripts")
            shared = os.path.join(root, "shared")
            os.makedirs(scripts)
            os.makedirs(shared)
            with open(os.path.join(scripts, "local.tin"), "w", encoding="utf-8") as handle:
                handle.write("a = 1")
            with open(os.path.join(shared, "common.tin"), "w", encoding="utf-8") as handle:
                handle.write("b = 2")

            provider = FileContentProvider([shared])
            importer = os.path.join(scripts, "main.tin")
            path, text = provider.load("local", importer)
            self.assertEqual(path, os.path.join(scripts, "local.tin"))
            self.assertEqual(text, "a = 1")
            path, text = provider.load("common", importer)
            self.assertEqual(path, os.path.join(shared, "common.tin"))

            with self.assertRaises(TinIOError):
                provider.load("absent", importer)


if __name__ == "__main__":
    unittest.main()
