"""Tests for the on-disk analysis cache."""

from __future__ import annotations

import json

import pytest

from crash_analysis_mcp.core.analysis.disk_cache import (
    METADATA_FILE_NAME,
    REPORT_FILE_NAME,
    AnalysisDiskCache,
    LlmCacheKey,
    sanitize_id,
    sanitize_segment,
)

REPORT = {"metadata": {"dumpId": "dump-001"}, "analysis": {"aiAnalysis": {"rootCause": "Null order"}}}


@pytest.fixture
def cache(tmp_path):
    return AnalysisDiskCache(tmp_path / "cache")


@pytest.fixture
def key():
    return LlmCacheKey.create("OpenAI", "gpt-x")


class TestLlmCacheKey:
    """Tests for LlmCacheKey."""

    def test_normalizes(self):
        """Should lower-case the provider, keep model case and default the effort."""
        key = LlmCacheKey.create(" OpenAI ", " GPT-X ")
        assert key == LlmCacheKey(provider="openai", model="GPT-X", reasoning_effort="default")
        assert LlmCacheKey.create("p", "m", " HIGH ").reasoning_effort == "high"

    @pytest.mark.parametrize("provider,model", [(None, "m"), ("p", None), (" ", "m"), ("p", "")])
    def test_unknown_identity(self, provider, model):
        """Should return None when provider or model is missing."""
        assert LlmCacheKey.create(provider, model) is None

    def test_relative_dir(self, key):
        """Should lay out by-llm/<provider>/<model>/<effort>-<hash12>."""
        parts = key.relative_dir().parts
        assert parts[:3] == ("by-llm", "openai", "gpt-x")
        assert parts[3] == f"default-{key.digest}"
        assert len(key.digest) == 12

    def test_long_model_names_are_bounded(self):
        """Should bound long model segments and keep them distinct."""
        first = LlmCacheKey.create("p", "m" * 300 + "a")
        second = LlmCacheKey.create("p", "m" * 300 + "b")
        assert len(first.relative_dir().parts[2]) <= 110
        assert first.relative_dir() != second.relative_dir()


class TestSanitize:
    """Tests for identifier sanitizers."""

    def test_sanitize_id_strips_traversal(self):
        """Should keep only safe characters."""
        assert sanitize_id("../etc/passwd") == "..etcpasswd"
        assert sanitize_id("dump-001") == "dump-001"

    @pytest.mark.parametrize("value", ["", "  ", "..", "///"])
    def test_sanitize_id_rejects_empty(self, value):
        """Should reject identifiers with nothing usable."""
        with pytest.raises(ValueError):
            sanitize_id(value)

    def test_sanitize_segment(self):
        """Should replace reserved characters and dot segments."""
        assert sanitize_segment("a/b:c", 30) == "a_b_c"
        assert sanitize_segment("..", 30) == "__"
        assert sanitize_segment(None, 30) == "unknown"
        assert sanitize_segment("abcdef", 3) == "abc"


class TestAnalysisDiskCache:
    """Tests for AnalysisDiskCache."""

    def test_write_then_read(self, cache, key):
        """Should serve a written entry for the same key."""
        path = cache.write("default", "dump-001", key, REPORT)
        assert path.name == REPORT_FILE_NAME
        assert "by-llm" in path.parts

        entry = cache.read("default", "dump-001", key)
        assert entry.report == REPORT
        assert entry.metadata.llm_provider == "openai"
        assert entry.metadata.includes_ai_analysis is True

    def test_other_model_misses(self, cache, key):
        """Should not serve an entry written for another model."""
        cache.write("default", "dump-001", key, REPORT)
        assert cache.read("default", "dump-001", LlmCacheKey.create("openai", "gpt-y")) is None

    def test_latest_entry_serves_any_model(self, cache, key):
        """Should refresh the unkeyed latest entry on keyed writes."""
        cache.write("default", "dump-001", key, REPORT)
        entry = cache.read("default", "dump-001", None)
        assert entry.report == REPORT

    def test_unkeyed_write(self, cache):
        """Should write only the latest entry when the key is unknown."""
        path = cache.write("default", "dump-001", None, REPORT)
        assert "by-llm" not in path.parts
        assert cache.read("default", "dump-001", None).metadata.llm_model is None

    def test_users_are_isolated(self, cache, key):
        """Should not serve one user's entry to another."""
        cache.write("alice", "dump-001", key, REPORT)
        assert cache.read("bob", "dump-001", key) is None

    def test_watches_and_security_requirements(self, cache, key):
        """Should miss when the cached entry lacks required sections."""
        cache.write("default", "dump-001", key, REPORT, includes_watches=True)
        assert cache.read("default", "dump-001", key, require_watches=True) is not None
        assert cache.read("default", "dump-001", key, require_security=True) is None

    def test_corrupt_metadata_is_a_miss(self, cache, key):
        """Should treat unreadable metadata as a miss."""
        path = cache.write("default", "dump-001", key, REPORT)
        (path.parent / METADATA_FILE_NAME).write_text("{not json", encoding="utf-8")
        assert cache.read("default", "dump-001", key) is None

    def test_mismatched_metadata_is_a_miss(self, cache, key):
        """Should treat metadata for another dump as a miss."""
        path = cache.write("default", "dump-001", key, REPORT)
        meta_path = path.parent / METADATA_FILE_NAME
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        meta["dumpId"] = "dump-002"
        meta_path.write_text(json.dumps(meta), encoding="utf-8")
        assert cache.read("default", "dump-001", key) is None

    def test_schema_version_mismatch_is_a_miss(self, cache, key):
        """Should treat entries from another schema version as a miss."""
        path = cache.write("default", "dump-001", key, REPORT)
        meta_path = path.parent / METADATA_FILE_NAME
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        meta["schemaVersion"] = 99
        meta_path.write_text(json.dumps(meta), encoding="utf-8")
        assert cache.read("default", "dump-001", key) is None

    def test_missing_entry(self, cache, key):
        """Should return None when nothing is cached."""
        assert cache.read("default", "dump-001", key) is None

    def test_no_temp_files_left(self, cache, key):
        """Should leave only report and metadata files behind."""
        path = cache.write("default", "dump-001", key, REPORT)
        assert sorted(p.name for p in path.parent.iterdir()) == sorted([REPORT_FILE_NAME, METADATA_FILE_NAME])

    def test_metadata_uses_camel_case(self, cache, key):
        """Should write camelCase metadata."""
        path = cache.write("default", "dump-001", key, REPORT)
        meta = json.loads((path.parent / METADATA_FILE_NAME).read_text(encoding="utf-8"))
        assert meta["dumpId"] == "dump-001"
        assert meta["llmProvider"] == "openai"
        assert meta["schemaVersion"] == 1
