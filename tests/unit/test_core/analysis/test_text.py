"""Tests for text helpers."""

from __future__ import annotations

from crash_analysis_mcp.core.analysis._text import (
    bounded_list,
    canonical_digest,
    normalize_key,
    truncate,
    truncate_head_tail,
)


class TestTruncate:
    """Tests for truncate and truncate_head_tail."""

    def test_short_text_unchanged(self):
        """Should return text within the bound unchanged."""
        assert truncate("abc", 3) == "abc"

    def test_marks_truncation(self):
        """Should end truncated text with an ellipsis within the bound."""
        assert truncate("abcdef", 4) == "abc…"
        assert truncate("abcdef", 1) == "…"
        assert truncate("abcdef", 0) == ""

    def test_head_tail_keeps_both_ends(self):
        """Should keep the head and tail around a marker."""
        text = "H" * 500 + "M" * 1000 + "T" * 500
        result = truncate_head_tail(text, 400)
        assert len(result) == 400
        assert result.startswith("H")
        assert result.endswith("T")
        assert "[truncated, total 2000 chars]" in result

    def test_head_tail_small_bound_cuts(self):
        """Should hard-cut when the bound is too small for a marker."""
        assert truncate_head_tail("x" * 200, 50) == "x" * 50


class TestKeys:
    """Tests for normalization and digests."""

    def test_normalize_key(self):
        """Should lower-case and collapse whitespace."""
        assert normalize_key("  Null\n  ORDER\t ") == "null order"

    def test_digest_ignores_key_order(self):
        """Should hash dicts independent of key order."""
        assert canonical_digest({"a": 1, "b": [1, 2]}) == canonical_digest({"b": [1, 2], "a": 1})
        assert len(canonical_digest({})) == 16

    def test_bounded_list(self):
        """Should drop blanks, truncate items and cap the length."""
        assert bounded_list(["  a ", "", "bcdef", "g"], 2, 3) == ["a", "bc…"]
