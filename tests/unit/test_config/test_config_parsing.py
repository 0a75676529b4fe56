"""Tests for configuration value parsing helpers."""

import logging

import pytest

from crash_analysis_mcp.config.parsing import (
    _normalize_audit_verbosity,
    _parse_bool,
    _parse_int,
    _parse_optional_float,
)


class TestParseBool:
    """Tests for _parse_bool."""

    @pytest.mark.parametrize("value", [True, "true", "1", " YES ", "on"])
    def test_truthy(self, value):
        """Should accept common truthy spellings."""
        assert _parse_bool(value) is True

    @pytest.mark.parametrize("value", [False, "false", "0", "off", ""])
    def test_falsy(self, value):
        """Should treat everything else as false."""
        assert _parse_bool(value) is False


class TestParseInt:
    """Tests for _parse_int."""

    def test_valid(self):
        """Should parse ints and numeric strings."""
        assert _parse_int("12", "max_iterations", 5) == 12
        assert _parse_int(7, "max_iterations", 5) == 7

    @pytest.mark.parametrize("value", ["abc", None, True])
    def test_invalid_falls_back(self, value, caplog):
        """Should warn and return the default for bad input."""
        with caplog.at_level(logging.WARNING):
            assert _parse_int(value, "max_iterations", 5) == 5
        assert "Invalid integer for max_iterations" in caplog.text


class TestParseOptionalFloat:
    """Tests for _parse_optional_float."""

    def test_positive(self):
        """Should parse positive numbers."""
        assert _parse_optional_float("2.5", "timeout_seconds") == 2.5

    @pytest.mark.parametrize("value", [None, "", "  ", 0, "-1", "soon"])
    def test_disabled_values(self, value):
        """Should return None for empty, non-positive or invalid values."""
        assert _parse_optional_float(value, "timeout_seconds") is None


class TestNormalizeAuditVerbosity:
    """Tests for _normalize_audit_verbosity."""

    def test_known_values(self):
        """Should normalize case and whitespace."""
        assert _normalize_audit_verbosity(" FULL ") == "full"

    def test_unknown_value(self, caplog):
        """Should fall back to minimal with a warning."""
        with caplog.at_level(logging.WARNING):
            assert _normalize_audit_verbosity("verbose") == "minimal"
        assert "Invalid audit verbosity" in caplog.text
