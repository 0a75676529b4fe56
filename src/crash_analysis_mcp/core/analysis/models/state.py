"""Run state for one analysis: phase machine, counters, and partial results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from crash_analysis_mcp.core.analysis.models.results import (
    ExecutedCommand,
    SummaryRewrite,
    ThreadNarrative,
)

if TYPE_CHECKING:
    from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager
    from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
    from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
    from crash_analysis_mcp.core.analysis.models.hypotheses import JudgeResult
    from crash_analysis_mcp.core.analysis.models.tool_calls import AnalysisCompleteCall
    from crash_analysis_mcp.core.report.document import ReportDocument

logger = logging.getLogger(__name__)


class AnalysisPhase(str, Enum):
    """Pipeline phases, in execution order.

    Transitions are strictly forward; a later phase never revisits or
    invalidates an earlier phase's result.
    """

    BASELINE = "baseline"
    INVESTIGATION = "investigation"
    JUDGE = "judge"
    SUMMARY_REWRITE = "summary_rewrite"
    THREAD_NARRATIVE = "thread_narrative"
    DONE = "done"


class FinalizationReason(str, Enum):
    """Why the investigation ended."""

    MODEL = "model"
    BUDGET_EXHAUSTED = "budget_exhausted"
    NO_PROGRESS = "no_progress"
    CANCELLED = "cancelled"
    NO_CONCLUSION = "no_conclusion"


@dataclass
class AnalysisRunState:
    """Mutable state owned by exactly one run.

    Attributes:
        report: Immutable report snapshot under analysis.
        ledger: Evidence ledger for the run.
        hypotheses: Hypothesis registry for the run.
        checkpoints: Checkpoint manager (transcript compaction).
        phase: Current pipeline phase.
        iteration: Investigation iteration counter (1-based once started).
        conclusion: Accepted ``analysis_complete`` payload, if any.
        finalization_reason: How the investigation ended.
        judge: Judge decision (model or default).
        summary: Rewritten summary, set only when that pass succeeds.
        thread_narrative: Thread narrative, set only when that pass succeeds.
        commands_executed: Evidence tool calls with their outputs.
        last_assistant_text: Most recent non-empty assistant text.
        last_turn_had_tool_calls: Whether the latest model turn requested tools.
        model: Model identity reported by the transport.
        cancelled_reason: Set once cancellation has been observed.
        error: Fatal error message, if the run failed.
        metadata: Free-form diagnostics.
    """

    report: ReportDocument
    ledger: EvidenceLedger
    hypotheses: HypothesisRegistry
    checkpoints: CheckpointManager
    id: str = field(default_factory=lambda: f"analysis-{uuid4().hex[:12]}")
    phase: AnalysisPhase = AnalysisPhase.BASELINE
    iteration: int = 0
    conclusion: Optional[AnalysisCompleteCall] = None
    finalization_reason: FinalizationReason = FinalizationReason.NO_CONCLUSION
    judge: Optional[JudgeResult] = None
    summary: Optional[SummaryRewrite] = None
    thread_narrative: Optional[ThreadNarrative] = None
    commands_executed: list[ExecutedCommand] = field(default_factory=list)
    last_assistant_text: Optional[str] = None
    last_turn_had_tool_calls: bool = False
    model: Optional[str] = None
    cancelled_reason: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def advance_phase(self) -> AnalysisPhase:
        """Move to the next phase in order; DONE is terminal."""
        phases = list(AnalysisPhase)
        index = phases.index(self.phase)
        if index < len(phases) - 1:
            self.phase = phases[index + 1]
        return self.phase

    def mark_failed(self, error: str) -> None:
        self.error = error
        self.metadata["failed"] = True
        self.metadata["failed_phase"] = self.phase.value
        self.phase = AnalysisPhase.DONE

    def mark_cancelled(self, reason: str) -> None:
        if self.cancelled_reason is None:
            logger.info("Analysis %s cancelled during %s: %s", self.id, self.phase.value, reason)
            self.cancelled_reason = reason
            self.metadata["cancelled_phase"] = self.phase.value

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_reason is not None
