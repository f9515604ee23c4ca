import contextlib
import io
import json
import os
import tempfile
import unittest

from tin import _brace_balance, parse_define, run_cli


def invoke(argv):
    stdout = io.StringIO()
    stderr = io.StringIO()
    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
        code = run_cli(argv)
    return code, stdout.getvalue(), stderr.getvalue()


class TestRunCli(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, name, text):
        path = os.path.join(self.root, name)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(text)
        return path

    def test_runs_file(self):
        path = self.write("main.tin", "x = 1 + 2\nprintln x\n")
        code, out, err = invoke([path])
        self.assertEqual(code, 0)
        self.assertEqual(out, "3\n")
        self.assertEqual(err, "")

    def test_imports_resolve_next_to_the_script(self):
        self.write("lib.tin", 'def hello { println "from lib" }\n')
        path = self.write("main.tin", '#import "lib"\ncall hello\n')
        code, out, _ = invoke([path])
        self.assertEqual(code, 0)
        self.assertEqual(out, "from lib\n")

    def test_include_directory(self):
        shared = os.path.join(self.root, "shared")
        os.makedirs(shared)
        with open(os.path.join(shared, "common.tin"), "w", encoding="utf-8") as handle:
            handle.write("answer = 42\n")
        code, out, _ = invoke(["-I", shared, "-source", '#import "common"\nprintln answer'])
        self.assertEqual(code, 0)
        self.assertEqual(out, "42\n")

    def test_error_goes_to_stderr(self):
        path = self.write("bad.tin", "x = 1\ny = nothing + 1\n")
        code, out, err = invoke([path])
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertTrue(err.startswith(f"ERROR unknown variable in '{path}' on line 2: 'y = _nothing + 1'"))

    def test_traceback_json(self):
        code, _, err = invoke(["--traceback-json", "-source", "call missing"])
        self.assertEqual(code, 1)
        first, _, rest = err.partition("\n")
        self.assertTrue(first.startswith("ERROR unknown subroutine"))
        report = json.loads(rest)
        self.assertEqual(report["error"]["kind"], "name")
        self.assertEqual(report["error"]["file"], "<string>")

    def test_verbose_lists_recent_steps(self):
        code, _, err = invoke(["-verbose", "-source", "a = 1\nb = a / zero"])
        self.assertEqual(code, 1)
        self.assertIn("Recent steps", err)
        self.assertIn("a='1'", err)

    def test_unreadable_source(self):
        code, _, err = invoke([os.path.join(self.root, "absent.tin")])
        self.assertEqual(code, 1)
        self.assertIn("Can't read source file", err)

    def test_undecodable_source(self):
        path = os.path.join(self.root, "latin1.tin")
        with open(path, "wb") as handle:
            handle.write(b'println "caf\xe9"\n')
        code, out, err = invoke([path])
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Can't read source file", err)

    def test_float_define_with_integral_value(self):
        code, _, _ = invoke(["-D", "code=3.0", "-source", "exit code"])
        self.assertEqual(code, 3)

    def test_defines_seed_globals(self):
        code, out, _ = invoke(["-D", "greeting=hi", "-D", "n=3", "-source", 'println greeting + " " + n'])
        self.assertEqual(code, 0)
        self.assertEqual(out, "hi 3\n")

    def test_malformed_define(self):
        code, _, err = invoke(["-D", "oops", "-source", "x = 1"])
        self.assertEqual(code, 1)
        self.assertIn("NAME=VALUE", err)

    def test_exit_code(self):
        code, out, _ = invoke(["-source", 'println "bye"\nexit 3\nprintln "never"'])
        self.assertEqual(code, 3)
        self.assertEqual(out, "bye\n")

    def test_bundled_extension_by_name(self):
        code, out, _ = invoke(["--ext", "rand", "-source", 'seed 7\nrandint "r", 1, 6\nprintln r'])
        self.assertEqual(code, 0)
        self.assertIn(int(out.strip()), range(1, 7))

    def test_unknown_extension(self):
        code, _, err = invoke(["--ext", os.path.join(self.root, "missing.py"), "-source", "x = 1"])
        self.assertEqual(code, 1)
        self.assertIn("ExtensionError", err)


class TestHelpers(unittest.TestCase):
    def test_parse_define(self):
        self.assertEqual(parse_define("12"), 12)
        self.assertEqual(parse_define("1.5"), 1.5)
        self.assertEqual(parse_define('"7"'), "7")
        self.assertEqual(parse_define("word"), "word")

    def test_brace_balance_ignores_strings_and_comments(self):
        self.assertEqual(_brace_balance("while 1 {"), 1)
        self.assertEqual(_brace_balance('println "{" ; }'), 0)
        self.assertEqual(_brace_balance("} else {"), 0)


if __name__ == "__main__":
    unittest.main()
