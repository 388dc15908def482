"""Tests for text utilities (F1)."""

import pytest

from clevercard.utils.text_utils import normalize_whitespace, parse_score, strip_think


class TestStripThink:
    def test_removes_think_block(self):
        assert strip_think('<think>hmm</think>{"a": 1}') == '{"a": 1}'

    def test_multiline_and_case(self):
        text = "<THINKING>\nstep 1\nstep 2\n</THINKING>\nAnswer"
        assert strip_think(text) == "Answer"

    def test_plain_text_untouched(self):
        assert strip_think("  hello ") == "hello"


class TestNormalizeWhitespace:
    def test_collapses_runs(self):
        assert normalize_whitespace("  John \t  Doe\n") == "John Doe"


class TestParseScore:
    @pytest.mark.parametrize(
        "raw,expected",
        [("85", 85.0), ("85%", 85.0), (" 72.5 ", 72.5), ("85,5", 85.5), ("-3", -3.0)],
    )
    def test_numbers(self, raw, expected):
        assert parse_score(raw) == expected

    @pytest.mark.parametrize("raw", ["", "A+", "85 points", "n/a"])
    def test_not_a_number(self, raw):
        assert parse_score(raw) is None
