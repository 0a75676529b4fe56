"""Tests for section path parsing and resolution."""

import pytest

from crash_analysis_mcp.core.errors import SectionQueryError
from crash_analysis_mcp.core.report.paths import child_paths, parse_section_path, resolve_section

LIMITS = {"max_path_chars": 256, "max_slice_items": 5}

ROOT = {
    "analysis": {
        "Threads": {"all": [{"id": "a"}, {"id": "b"}, {"id": "c"}]},
        "summary": {"crashType": "NullReference"},
    },
    "metadata": {"dumpId": "dump-001"},
}


class TestParseSectionPath:
    """Tests for parse_section_path."""

    def test_index_and_slice_segments(self):
        """Should parse index and bounded slice suffixes."""
        segments = parse_section_path("analysis.threads.all[1:3]", **LIMITS)
        assert [s.name for s in segments] == ["analysis", "threads", "all"]
        assert segments[-1].is_slice is True
        assert (segments[-1].slice_start, segments[-1].slice_stop) == (1, 3)

        indexed = parse_section_path("analysis.threads.all[2].id", **LIMITS)
        assert indexed[2].index == 2
        assert indexed[2].is_slice is False

    def test_open_slice_defaults(self):
        """Should default a missing slice start to zero and stop to None."""
        segment = parse_section_path("analysis.items[:]", **LIMITS)[-1]
        assert (segment.slice_start, segment.slice_stop) == (0, None)

    @pytest.mark.parametrize(
        "path",
        [
            "",
            "analysis..threads",
            "analysis.threads[x]",
            "analysis.threads[3:1]",
            "analysis.threads[0:2].id",
            "analysis.threads[0:10]",
            "threads.all",
        ],
    )
    def test_invalid_paths(self, path):
        """Should reject malformed paths with invalid_path."""
        with pytest.raises(SectionQueryError) as exc_info:
            parse_section_path(path, **LIMITS)
        assert exc_info.value.code == "invalid_path"

    def test_too_long(self):
        """Should reject paths above the length limit."""
        with pytest.raises(SectionQueryError, match="maximum length"):
            parse_section_path("analysis." + "a" * 300, **LIMITS)

    def test_unrooted_suggests_roots(self):
        """Should suggest rooted alternatives for an unrooted path."""
        with pytest.raises(SectionQueryError) as exc_info:
            parse_section_path("summary", **LIMITS)
        assert exc_info.value.suggested_paths == ["analysis.summary", "analysis", "metadata"]


class TestResolveSection:
    """Tests for resolve_section."""

    def _resolve(self, path):
        return resolve_section(ROOT, parse_section_path(path, **LIMITS), max_slice_items=5)

    def test_case_insensitive_lookup(self):
        """Should match property names regardless of case."""
        resolved = self._resolve("analysis.threads.all[1].id")
        assert resolved.value == "b"
        assert resolved.is_indexed is False

    def test_indexed_and_sliced_flags(self):
        """Should flag index and slice results on the final segment."""
        assert self._resolve("analysis.threads.all[0]").is_indexed is True
        sliced = self._resolve("analysis.threads.all[1:]")
        assert sliced.is_slice is True
        assert sliced.value == [{"id": "b"}, {"id": "c"}]

    def test_missing_property_suggests_siblings(self):
        """Should suggest sibling paths when a property is missing."""
        with pytest.raises(SectionQueryError) as exc_info:
            self._resolve("analysis.nope")
        assert exc_info.value.suggested_paths == ["analysis.Threads", "analysis.summary"]

    def test_index_out_of_range(self):
        """Should reject an index past the end of the array."""
        with pytest.raises(SectionQueryError, match="out of range"):
            self._resolve("analysis.threads.all[3]")

    def test_index_on_object(self):
        """Should reject indexing a non-array value."""
        with pytest.raises(SectionQueryError, match="not an array"):
            self._resolve("analysis.summary[0]")

    def test_descend_into_scalar(self):
        """Should reject walking below a scalar."""
        with pytest.raises(SectionQueryError, match="not an object"):
            self._resolve("metadata.dumpId.length")


class TestChildPaths:
    """Tests for child_paths."""

    def test_limits_and_non_mapping(self):
        """Should cap suggestions and ignore non-object nodes."""
        assert child_paths("analysis", {"a": 1, "b": 2, "c": 3}, limit=2) == ["analysis.a", "analysis.b"]
        assert child_paths("analysis", [1, 2]) == []
