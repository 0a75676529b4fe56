"""Analysis workflow configuration.

Contains AnalysisConfig, the configuration dataclass for AI crash analysis
runs: phase budgets, checkpoint cadence, evidence bounds, section query
limits, cache and audit settings.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional

from crash_analysis_mcp.config.parsing import (
    _normalize_audit_verbosity,
    _parse_bool,
    _parse_int,
    _parse_optional_float,
)
from crash_analysis_mcp.core.analysis.budget import BudgetLimits
from crash_analysis_mcp.core.report.section_query import QueryLimits

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    """Configuration for AI crash analysis runs.

    Attributes:
        max_iterations: Investigation model turns
        max_tokens: Output token ceiling per model turn
        max_tool_calls: Investigation evidence tool calls in total
        max_tool_calls_per_iteration: Evidence tool calls per model turn
        max_consecutive_no_progress: No-progress turns tolerated before forced finalization
        pass_max_iterations: Model turns for the judge, summary and narrative passes
        pass_max_tool_calls: Evidence tool calls for each of those passes
        checkpoint_every_iterations: Checkpoint cadence in investigation turns
        checkpoint_max_transcript_chars: Transcript size that forces a checkpoint
        evidence_provenance: Record evidence only from real tool outputs
        evidence_excerpt_max_chars: Stored excerpt bound
        evidence_max_items: Evidence ledger capacity
        max_hypotheses: Hypotheses allowed per run
        max_hypotheses_per_call: Hypotheses accepted per register call
        tool_output_max_chars: Tool output bound returned to the model
        query_default_limit: Section query default page size
        query_max_limit: Section query maximum page size
        query_default_max_chars: Section query default response ceiling
        include_watches: Seed baseline evidence from watch expressions
        include_security: Seed baseline evidence from the security section
        enable_judge: Run the judge pass
        enable_summary_rewrite: Run the summary-rewrite pass
        enable_thread_narrative: Run the thread-narrative pass
        timeout: Wall-clock limit for one run in seconds (None disables)
        cache_enabled: Use the on-disk analysis cache
        cache_dir: Root of the on-disk analysis cache
        audit_artifacts: Write a JSONL audit trail per run
        audit_verbosity: ``full`` or ``minimal`` audit payloads
        audit_dir: Directory for audit trails
    """

    max_iterations: int = 100
    max_tokens: int = 4096
    max_tool_calls: int = 50
    max_tool_calls_per_iteration: int = 8
    max_consecutive_no_progress: int = 6
    pass_max_iterations: int = 3
    pass_max_tool_calls: int = 6
    checkpoint_every_iterations: int = 4
    checkpoint_max_transcript_chars: int = 120_000
    evidence_provenance: bool = True
    evidence_excerpt_max_chars: int = 2048
    evidence_max_items: int = 100
    max_hypotheses: int = 10
    max_hypotheses_per_call: int = 5
    tool_output_max_chars: int = 50_000
    query_default_limit: int = 50
    query_max_limit: int = 200
    query_default_max_chars: int = 20_000
    include_watches: bool = False
    include_security: bool = False
    enable_judge: bool = True
    enable_summary_rewrite: bool = True
    enable_thread_narrative: bool = True
    timeout: Optional[float] = 1800.0
    cache_enabled: bool = True
    cache_dir: Optional[Path] = None
    audit_artifacts: bool = False
    audit_verbosity: str = "minimal"
    audit_dir: Optional[Path] = None

    _MAX_ITERATIONS: ClassVar[int] = 1000
    _MAX_EVIDENCE_ITEMS: ClassVar[int] = 500
    _MIN_EXCERPT_CHARS: ClassVar[int] = 256
    _MIN_TOOL_OUTPUT_CHARS: ClassVar[int] = 1_000

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "AnalysisConfig":
        """Create config from TOML dict (typically the [analysis] section).

        Args:
            data: Dict from TOML parsing

        Returns:
            AnalysisConfig instance
        """
        defaults = cls()

        def _int(key: str) -> int:
            return _parse_int(data.get(key, getattr(defaults, key)), key, getattr(defaults, key))

        def _bool(key: str) -> bool:
            return _parse_bool(data.get(key, getattr(defaults, key)))

        cache_dir = data.get("cache_dir")
        audit_dir = data.get("audit_dir")
        return cls(
            max_iterations=_int("max_iterations"),
            max_tokens=_int("max_tokens"),
            max_tool_calls=_int("max_tool_calls"),
            max_tool_calls_per_iteration=_int("max_tool_calls_per_iteration"),
            max_consecutive_no_progress=_int("max_consecutive_no_progress"),
            pass_max_iterations=_int("pass_max_iterations"),
            pass_max_tool_calls=_int("pass_max_tool_calls"),
            checkpoint_every_iterations=_int("checkpoint_every_iterations"),
            checkpoint_max_transcript_chars=_int("checkpoint_max_transcript_chars"),
            evidence_provenance=_bool("evidence_provenance"),
            evidence_excerpt_max_chars=_int("evidence_excerpt_max_chars"),
            evidence_max_items=_int("evidence_max_items"),
            max_hypotheses=_int("max_hypotheses"),
            max_hypotheses_per_call=_int("max_hypotheses_per_call"),
            tool_output_max_chars=_int("tool_output_max_chars"),
            query_default_limit=_int("query_default_limit"),
            query_max_limit=_int("query_max_limit"),
            query_default_max_chars=_int("query_default_max_chars"),
            include_watches=_bool("include_watches"),
            include_security=_bool("include_security"),
            enable_judge=_bool("enable_judge"),
            enable_summary_rewrite=_bool("enable_summary_rewrite"),
            enable_thread_narrative=_bool("enable_thread_narrative"),
            timeout=_parse_optional_float(data.get("timeout", defaults.timeout), "timeout"),
            cache_enabled=_bool("cache_enabled"),
            cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
            audit_artifacts=_bool("audit_artifacts"),
            audit_verbosity=str(data.get("audit_verbosity", defaults.audit_verbosity)),
            audit_dir=Path(audit_dir).expanduser() if audit_dir else None,
        )

    def __post_init__(self) -> None:
        """Validate configuration fields after initialization."""
        self._validate_budget_config()
        self._validate_evidence_config()
        self._validate_query_config()
        self.audit_verbosity = _normalize_audit_verbosity(self.audit_verbosity)

    def _validate_budget_config(self) -> None:
        """Clamp budget ceilings to sane bounds (warns on clamp); raise on non-positive values."""
        for name in (
            "max_iterations",
            "max_tokens",
            "max_tool_calls",
            "max_tool_calls_per_iteration",
            "max_consecutive_no_progress",
            "pass_max_iterations",
            "pass_max_tool_calls",
            "checkpoint_every_iterations",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"Invalid {name}: {value!r}. Must be >= 1.")

        if self.max_iterations > self._MAX_ITERATIONS:
            warnings.warn(
                f"max_iterations={self.max_iterations} exceeds maximum ({self._MAX_ITERATIONS}); "
                f"clamping to {self._MAX_ITERATIONS}.",
                stacklevel=2,
            )
            self.max_iterations = self._MAX_ITERATIONS

    def _validate_evidence_config(self) -> None:
        if not 1 <= self.evidence_max_items <= self._MAX_EVIDENCE_ITEMS:
            clamped = max(1, min(self._MAX_EVIDENCE_ITEMS, self.evidence_max_items))
            warnings.warn(
                f"evidence_max_items={self.evidence_max_items} is outside [1, {self._MAX_EVIDENCE_ITEMS}]; "
                f"clamping to {clamped}.",
                stacklevel=2,
            )
            self.evidence_max_items = clamped
        self.evidence_excerpt_max_chars = max(self._MIN_EXCERPT_CHARS, self.evidence_excerpt_max_chars)
        self.tool_output_max_chars = max(self._MIN_TOOL_OUTPUT_CHARS, self.tool_output_max_chars)
        self.max_hypotheses = max(1, self.max_hypotheses)
        self.max_hypotheses_per_call = max(1, min(self.max_hypotheses, self.max_hypotheses_per_call))
        self.checkpoint_max_transcript_chars = max(1_000, self.checkpoint_max_transcript_chars)

    def _validate_query_config(self) -> None:
        defaults = QueryLimits()
        self.query_max_limit = max(1, self.query_max_limit)
        self.query_default_limit = max(1, min(self.query_max_limit, self.query_default_limit))
        self.query_default_max_chars = max(
            defaults.min_max_chars, min(defaults.max_max_chars, self.query_default_max_chars)
        )

    def get_query_limits(self) -> QueryLimits:
        """Section query bounds for this configuration."""
        return QueryLimits(
            default_limit=self.query_default_limit,
            max_limit=self.query_max_limit,
            default_max_chars=self.query_default_max_chars,
        )

    def get_phase_limits(self, phase: str) -> BudgetLimits:
        """Budget limits for an analysis phase.

        Args:
            phase: Phase name (``investigation``, ``judge``, ``summary_rewrite``,
                ``thread_narrative``)

        Returns:
            BudgetLimits for the phase; unknown phases get the bounded-pass limits
        """
        if phase.lower() == "investigation":
            return BudgetLimits(
                max_iterations=self.max_iterations,
                max_tool_calls_total=self.max_tool_calls,
                max_tool_calls_per_iteration=self.max_tool_calls_per_iteration,
                max_consecutive_no_progress=self.max_consecutive_no_progress,
            )
        return BudgetLimits(
            max_iterations=self.pass_max_iterations,
            max_tool_calls_total=self.pass_max_tool_calls,
            max_tool_calls_per_iteration=min(self.max_tool_calls_per_iteration, self.pass_max_tool_calls),
            max_consecutive_no_progress=self.pass_max_iterations,
        )
