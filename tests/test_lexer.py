import unittest

from lexer import SENTINEL, Scanner, is_add_op, is_alnum, is_alpha, is_digit, is_mul_op


class TestScanner(unittest.TestCase):
    def test_sentinel_is_appended(self):
        scanner = Scanner("x")
        self.assertEqual(scanner.text, "x" + SENTINEL)

    def test_peek_elides_comments(self):
        scanner = Scanner("; a comment\nx")
        self.assertEqual(scanner.peek(), "\n")
        self.assertEqual(scanner.index, len("; a comment"))

    def test_consume_stops_at_sentinel(self):
        scanner = Scanner("a")
        self.assertEqual(scanner.consume(), "a")
        self.assertEqual(scanner.consume(), SENTINEL)
        self.assertEqual(scanner.consume(), SENTINEL)
        self.assertTrue(scanner.at_end)

    def test_match_literal_rewinds_on_mismatch(self):
        scanner = Scanner("<5")
        self.assertFalse(scanner.match_literal("<="))
        self.assertEqual(scanner.index, 0)
        self.assertTrue(scanner.match_literal("<"))
        self.assertEqual(scanner.index, 1)

    def test_match_keyword_requires_whole_word(self):
        scanner = Scanner("andy")
        self.assertFalse(scanner.match_keyword("and"))
        self.assertEqual(scanner.index, 0)
        scanner = Scanner("  and x")
        self.assertTrue(scanner.match_keyword("and"))
        self.assertEqual(scanner.skip_layout(), "x")

    def test_skip_layout_skips_comments_and_markers(self):
        scanner = Scanner("#main.tin:1\n  ; note\n\t\r\nvalue")
        self.assertEqual(scanner.skip_layout(), "v")

    def test_skip_inline_stops_at_newline(self):
        scanner = Scanner("  ; trailing\nnext")
        self.assertEqual(scanner.skip_inline(), "\n")

    def test_take_identifier(self):
        scanner = Scanner("  foo12+bar")
        self.assertEqual(scanner.take_identifier(), "foo12")
        self.assertEqual(scanner.peek(), "+")

    def test_take_identifier_probe_on_non_word(self):
        scanner = Scanner("12")
        self.assertEqual(scanner.take_identifier(), "")
        self.assertEqual(scanner.take_number(), "12")

    def test_take_next(self):
        scanner = Scanner("\n  {")
        self.assertFalse(scanner.take_next("}"))
        self.assertTrue(scanner.take_next("{"))
        self.assertTrue(scanner.at_end)

    def test_string_characters_are_raw(self):
        scanner = Scanner('a;b"')
        chars = [scanner.consume_raw() for _ in range(4)]
        self.assertEqual(chars, ["a", ";", "b", '"'])


class TestPredicates(unittest.TestCase):
    def test_classification(self):
        self.assertTrue(is_digit("7"))
        self.assertFalse(is_digit("x"))
        self.assertTrue(is_alpha("Q"))
        self.assertFalse(is_alpha("_"))
        self.assertTrue(is_alnum("9"))
        self.assertFalse(is_alnum("é"))
        self.assertTrue(is_add_op("-"))
        self.assertFalse(is_add_op("*"))
        self.assertTrue(is_mul_op("/"))
        self.assertFalse(is_mul_op("+"))


if __name__ == "__main__":
    unittest.main()
