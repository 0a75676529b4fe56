"""Finalization: turn run state into an ``AnalysisResult`` and merge it into the report.

Forced finalization (budget exhaustion, lack of progress, cancellation)
uses the same path as a model conclusion, so no run ends with a partial
or corrupt result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from crash_analysis_mcp.core.analysis.models.hypotheses import Hypothesis, confidence_rank
from crash_analysis_mcp.core.analysis.models.results import AnalysisResult
from crash_analysis_mcp.core.analysis.models.state import AnalysisRunState, FinalizationReason
from crash_analysis_mcp.core.report.document import DocumentLike, ReportDocument, as_root

logger = logging.getLogger(__name__)

ANSWER_WITHOUT_COMPLETION = "AI returned an answer but did not call analysis_complete."
MAX_ITERATIONS_REACHED = "Analysis incomplete - maximum iterations reached."
TOOL_BUDGET_EXCEEDED = "Analysis incomplete - tool call budget exceeded."
NO_PROGRESS = "Analysis incomplete - investigation stopped making progress."
CANCELLED = "Analysis incomplete - the run was cancelled before a conclusion."

# Forced finalization never claims more than this.
FORCED_CONFIDENCE_CAP = "medium"


@dataclass
class Conclusion:
    """Resolved root cause, whatever its origin.

    Attributes:
        root_cause: Root-cause statement.
        confidence: ``high|medium|low|unknown``.
        reasoning: Supporting explanation.
        evidence: Cited evidence IDs.
        recommendations: Suggested follow-ups.
        additional_findings: Secondary observations.
        source: ``model``, ``judge``, ``hypothesis`` or ``fallback``.
    """

    root_cause: str
    confidence: str
    reasoning: Optional[str] = None
    evidence: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    additional_findings: list[str] = field(default_factory=list)
    source: str = "fallback"


def _cap_confidence(confidence: str) -> str:
    if confidence_rank(confidence) > confidence_rank(FORCED_CONFIDENCE_CAP):
        return FORCED_CONFIDENCE_CAP
    return confidence


def _from_hypothesis(hypothesis: Hypothesis, reasoning: str, source: str) -> Conclusion:
    return Conclusion(
        root_cause=hypothesis.statement,
        confidence=_cap_confidence(hypothesis.confidence),
        reasoning=reasoning,
        evidence=list(hypothesis.linked_evidence_ids),
        recommendations=list(hypothesis.tests_to_run),
        source=source,
    )


def resolve_conclusion(state: AnalysisRunState, max_iterations: int) -> Conclusion:
    """Resolve the run's root cause.

    Order of preference: a hypothesis selected by a model judge pass, the
    model's ``analysis_complete`` payload, a default judge selection, the
    best active hypothesis, then a fixed fallback message describing why the
    investigation ended. When a model judge overrides ``analysis_complete``,
    the payload still supplies reasoning, recommendations and findings.

    Args:
        state: Run state.
        max_iterations: Configured investigation iteration ceiling, quoted in
            the fallback reasoning.
    """
    registry = state.hypotheses
    judge = state.judge or registry.judge
    selected = None
    if judge is not None and judge.selected_hypothesis_id:
        selected = registry.get(judge.selected_hypothesis_id)

    if state.conclusion is not None:
        payload = state.conclusion
        if selected is not None and judge.source == "model":
            return Conclusion(
                root_cause=selected.statement,
                confidence=judge.confidence if judge.confidence != "unknown" else selected.confidence,
                reasoning=payload.reasoning or judge.rationale or None,
                evidence=list(selected.linked_evidence_ids) or list(payload.evidence),
                recommendations=list(payload.recommendations) or list(selected.tests_to_run),
                additional_findings=list(payload.additional_findings),
                source="judge",
            )
        return Conclusion(
            root_cause=payload.root_cause,
            confidence=payload.confidence,
            reasoning=payload.reasoning or None,
            evidence=list(payload.evidence),
            recommendations=list(payload.recommendations),
            additional_findings=list(payload.additional_findings),
            source="model",
        )

    if selected is not None:
        return _from_hypothesis(selected, judge.rationale or selected.statement, "judge")

    best = registry.best_active()
    if best is not None:
        return _from_hypothesis(
            best,
            f"Investigation ended ({state.finalization_reason.value}) before analysis_complete; "
            f"reporting the best-supported hypothesis {best.id}.",
            "hypothesis",
        )

    if not state.last_turn_had_tool_calls and state.last_assistant_text:
        return Conclusion(
            root_cause=ANSWER_WITHOUT_COMPLETION,
            confidence="low",
            reasoning=state.last_assistant_text,
        )

    reason = state.finalization_reason
    if reason == FinalizationReason.CANCELLED:
        return Conclusion(
            root_cause=CANCELLED,
            confidence="low",
            reasoning=f"The run was cancelled ({state.cancelled_reason or 'cancelled'}).",
        )
    if reason == FinalizationReason.NO_PROGRESS:
        return Conclusion(
            root_cause=NO_PROGRESS,
            confidence="low",
            reasoning="Consecutive iterations repeated earlier tool calls without new evidence.",
        )
    if state.metadata.get("exhausted_limit") == "max_tool_calls_total":
        return Conclusion(
            root_cause=TOOL_BUDGET_EXCEEDED,
            confidence="low",
            reasoning="The AI used its whole tool call budget without calling analysis_complete.",
        )
    return Conclusion(
        root_cause=MAX_ITERATIONS_REACHED,
        confidence="low",
        reasoning=f"The AI did not call analysis_complete within {max_iterations} iterations.",
    )


def build_analysis_result(state: AnalysisRunState, max_iterations: int) -> AnalysisResult:
    """Assemble the final ``AnalysisResult`` from run state."""
    conclusion = resolve_conclusion(state, max_iterations)
    if state.conclusion is None:
        logger.warning(
            "Analysis %s finalized without a model conclusion (%s, source=%s)",
            state.id,
            state.finalization_reason.value,
            conclusion.source,
        )
    return AnalysisResult(
        root_cause=conclusion.root_cause,
        confidence=conclusion.confidence,
        reasoning=conclusion.reasoning,
        evidence=conclusion.evidence,
        recommendations=conclusion.recommendations,
        additional_findings=conclusion.additional_findings,
        evidence_ledger=state.ledger.snapshot(),
        hypotheses=state.hypotheses.snapshot(),
        judge=state.judge or state.hypotheses.judge,
        summary=state.summary,
        thread_narrative=state.thread_narrative,
        iterations=state.iteration,
        commands_executed=list(state.commands_executed),
        model=state.model,
        finalization_reason=state.finalization_reason.value,
    )


def merge_analysis_into_report(report: DocumentLike, result: AnalysisResult) -> dict[str, Any]:
    """Return a copy of *report* with the analysis merged in.

    ``analysis.aiAnalysis`` is always populated. ``analysis.summary`` and
    ``analysis.threads.summary`` descriptions are overwritten only when the
    corresponding pass produced a result.
    """
    if isinstance(report, ReportDocument):
        merged = report.to_dict()
    else:
        merged = ReportDocument.from_mapping(as_root(report)).to_dict()

    analysis = merged.get("analysis")
    if not isinstance(analysis, dict):
        analysis = {}
        merged["analysis"] = analysis
    analysis["aiAnalysis"] = result.to_report_dict()

    if result.summary is not None:
        summary = analysis.get("summary")
        if not isinstance(summary, dict):
            summary = {}
            analysis["summary"] = summary
        summary["description"] = result.summary.description
        if result.summary.recommendations:
            summary["recommendations"] = list(result.summary.recommendations)

    if result.thread_narrative is not None:
        threads = analysis.get("threads")
        if not isinstance(threads, dict):
            threads = {}
            analysis["threads"] = threads
        thread_summary = threads.get("summary")
        if not isinstance(thread_summary, dict):
            thread_summary = {}
            threads["summary"] = thread_summary
        thread_summary["description"] = result.thread_narrative.description

    return merged
