"""Tests for analysis finalization and report merging."""

from __future__ import annotations

import pytest

from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
from crash_analysis_mcp.core.analysis.models.hypotheses import JudgeResult
from crash_analysis_mcp.core.analysis.models.results import (
    AnalysisResult,
    SummaryRewrite,
    ThreadNarrative,
)
from crash_analysis_mcp.core.analysis.models.state import (
    AnalysisPhase,
    AnalysisRunState,
    FinalizationReason,
)
from crash_analysis_mcp.core.analysis.models.tool_calls import AnalysisCompleteCall, HypothesisInput
from crash_analysis_mcp.core.analysis.workflow.finalize import (
    ANSWER_WITHOUT_COMPLETION,
    CANCELLED,
    MAX_ITERATIONS_REACHED,
    NO_PROGRESS,
    TOOL_BUDGET_EXCEEDED,
    build_analysis_result,
    merge_analysis_into_report,
    resolve_conclusion,
)


@pytest.fixture
def state(report_document) -> AnalysisRunState:
    ledger = EvidenceLedger(max_items=20)
    ledger.add_auto_evidence(
        "report_get",
        {"path": "analysis.exception"},
        '{"type": "System.NullReferenceException"}',
        source="report_get(path=analysis.exception)",
        iteration=0,
    )
    return AnalysisRunState(
        report=report_document,
        ledger=ledger,
        hypotheses=HypothesisRegistry(ledger),
        checkpoints=CheckpointManager(),
    )


def _register(state: AnalysisRunState, *entries: tuple[str, str]) -> None:
    state.hypotheses.register(
        [
            HypothesisInput(hypothesis=statement, confidence=confidence, supports_evidence_ids=["E1"])
            for statement, confidence in entries
        ]
    )


class TestResolveConclusion:
    """Tests for resolve_conclusion."""

    def test_model_conclusion_wins(self, state):
        """Should prefer the accepted analysis_complete payload."""
        _register(state, ("Heap corruption", "high"))
        state.conclusion = AnalysisCompleteCall(
            root_cause="Null order",
            confidence="high",
            reasoning="E1",
            evidence=["E1"],
            additional_findings=["Symbols missing"],
        )

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.source == "model"
        assert conclusion.root_cause == "Null order"
        assert conclusion.confidence == "high"
        assert conclusion.additional_findings == ["Symbols missing"]

    def test_model_judge_overrides_conclusion(self, state):
        """Should report the judge's pick while keeping the payload's reasoning and findings."""
        _register(state, ("Null order", "high"), ("Heap corruption", "low"))
        state.conclusion = AnalysisCompleteCall(
            root_cause="Null order",
            confidence="high",
            reasoning="E1 shows the faulting frame.",
            evidence=["E1"],
            recommendations=["Capture a full dump"],
            additional_findings=["Symbols missing"],
        )
        state.judge = JudgeResult(
            selected_hypothesis_id="H2",
            confidence="medium",
            rationale="Native frames on the stack.",
            source="model",
        )

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.source == "judge"
        assert conclusion.root_cause == "Heap corruption"
        assert conclusion.confidence == "medium"
        assert conclusion.reasoning == "E1 shows the faulting frame."
        assert conclusion.evidence == ["E1"]
        assert conclusion.recommendations == ["Capture a full dump"]
        assert conclusion.additional_findings == ["Symbols missing"]

    def test_default_judge_keeps_conclusion(self, state):
        """Should keep analysis_complete when the judge selected without a model pass."""
        _register(state, ("Heap corruption", "high"))
        state.conclusion = AnalysisCompleteCall(root_cause="Null order", confidence="low", evidence=["E1"])
        state.judge = JudgeResult(selected_hypothesis_id="H1", rationale="Only one hypothesis.", source="default")

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.source == "model"
        assert conclusion.root_cause == "Null order"

    def test_judge_selection(self, state):
        """Should use the judge's selected hypothesis with its rationale."""
        _register(state, ("Null order", "high"), ("Heap corruption", "low"))
        state.judge = JudgeResult(selected_hypothesis_id="H2", rationale="Native frames on the stack.")

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.source == "judge"
        assert conclusion.root_cause == "Heap corruption"
        assert conclusion.reasoning == "Native frames on the stack."
        assert conclusion.evidence == ["E1"]

    def test_best_hypothesis_is_capped(self, state):
        """Should cap forced-finalization confidence at medium."""
        _register(state, ("Null order", "high"))
        state.finalization_reason = FinalizationReason.BUDGET_EXHAUSTED

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.source == "hypothesis"
        assert conclusion.confidence == "medium"
        assert "budget_exhausted" in conclusion.reasoning
        assert "H1" in conclusion.reasoning

    def test_low_confidence_is_not_raised(self, state):
        """Should keep confidence below the cap unchanged."""
        _register(state, ("Null order", "low"))

        assert resolve_conclusion(state, 10).confidence == "low"

    def test_text_answer_without_completion(self, state):
        """Should report the last assistant text when the model answered without tools."""
        state.last_turn_had_tool_calls = False
        state.last_assistant_text = "It's a null reference."

        conclusion = resolve_conclusion(state, 10)

        assert conclusion.root_cause == ANSWER_WITHOUT_COMPLETION
        assert conclusion.confidence == "low"
        assert conclusion.reasoning == "It's a null reference."

    @pytest.mark.parametrize(
        "reason,limit,expected",
        [
            (FinalizationReason.CANCELLED, None, CANCELLED),
            (FinalizationReason.NO_PROGRESS, "max_consecutive_no_progress", NO_PROGRESS),
            (FinalizationReason.BUDGET_EXHAUSTED, "max_tool_calls_total", TOOL_BUDGET_EXCEEDED),
            (FinalizationReason.BUDGET_EXHAUSTED, "max_iterations", MAX_ITERATIONS_REACHED),
        ],
    )
    def test_fallback_messages(self, state, reason, limit, expected):
        """Should describe why the investigation ended when nothing else is available."""
        state.last_turn_had_tool_calls = True
        state.finalization_reason = reason
        state.metadata["exhausted_limit"] = limit

        conclusion = resolve_conclusion(state, 12)

        assert conclusion.root_cause == expected
        assert conclusion.confidence == "low"
        assert conclusion.source == "fallback"

    def test_max_iterations_reasoning_quotes_the_limit(self, state):
        """Should quote the configured iteration ceiling."""
        state.finalization_reason = FinalizationReason.BUDGET_EXHAUSTED

        assert "within 12 iterations" in resolve_conclusion(state, 12).reasoning

    def test_cancel_reason_is_quoted(self, state):
        """Should include the cancellation reason."""
        state.mark_cancelled("timeout")
        state.finalization_reason = FinalizationReason.CANCELLED

        assert "timeout" in resolve_conclusion(state, 10).reasoning


class TestBuildAnalysisResult:
    """Tests for build_analysis_result."""

    def test_collects_run_state(self, state):
        """Should copy ledger, hypotheses, judge and counters into the result."""
        _register(state, ("Null order", "medium"))
        state.conclusion = AnalysisCompleteCall(root_cause="Null order", confidence="medium", evidence=["E1"])
        state.finalization_reason = FinalizationReason.MODEL
        state.iteration = 3
        state.model = "m1"
        state.judge = state.hypotheses.default_judge("only one")

        result = build_analysis_result(state, 10)

        assert result.root_cause == "Null order"
        assert [item.id for item in result.evidence_ledger] == ["E1"]
        assert [h.id for h in result.hypotheses] == ["H1"]
        assert result.judge.selected_hypothesis_id == "H1"
        assert result.iterations == 3
        assert result.model == "m1"
        assert result.finalization_reason == "model"

    def test_snapshots_are_detached(self, state):
        """Should not change when the registry changes afterwards."""
        _register(state, ("Null order", "low"))
        result = build_analysis_result(state, 10)

        state.hypotheses.get("H1").confidence = "high"

        assert result.hypotheses[0].confidence == "low"

    def test_report_dict_uses_camel_case(self, state):
        """Should serialize with camelCase keys and omit unset passes."""
        state.phase = AnalysisPhase.DONE
        data = build_analysis_result(state, 10).to_report_dict()

        assert "rootCause" in data
        assert "evidenceLedger" in data
        assert "finalizationReason" in data
        assert "analyzedAt" in data
        assert "summary" not in data
        assert "threadNarrative" not in data


class TestMergeAnalysisIntoReport:
    """Tests for merge_analysis_into_report."""

    def test_sets_ai_analysis(self, report_document):
        """Should add analysis.aiAnalysis without touching the rest."""
        result = AnalysisResult(root_cause="Null order", confidence="high")

        merged = merge_analysis_into_report(report_document, result)

        assert merged["analysis"]["aiAnalysis"]["rootCause"] == "Null order"
        assert merged["analysis"]["summary"]["description"] == report_document.analysis["summary"]["description"]
        assert merged["metadata"]["dumpId"] == "dump-001"

    def test_does_not_mutate_input(self, report_dict):
        """Should leave the input report untouched."""
        result = AnalysisResult(
            root_cause="x",
            summary=SummaryRewrite(description="New summary"),
        )

        merge_analysis_into_report(report_dict, result)

        assert "aiAnalysis" not in report_dict["analysis"]
        assert report_dict["analysis"]["summary"]["description"].startswith("A NullReferenceException")

    def test_summary_rewrite_overwrites_description(self, report_document):
        """Should overwrite the summary description and recommendations."""
        result = AnalysisResult(
            root_cause="x",
            summary=SummaryRewrite(description="New summary", recommendations=["Fix it"]),
        )

        merged = merge_analysis_into_report(report_document, result)

        summary = merged["analysis"]["summary"]
        assert summary["description"] == "New summary"
        assert summary["recommendations"] == ["Fix it"]
        assert summary["crashType"] == "Managed Exception"

    def test_thread_narrative_creates_missing_sections(self, report_factory):
        """Should create threads.summary when the report lacks it."""
        result = AnalysisResult(root_cause="x", thread_narrative=ThreadNarrative(description="Main thread crashed."))

        merged = merge_analysis_into_report(report_factory(threads=None), result)

        assert merged["analysis"]["threads"]["summary"]["description"] == "Main thread crashed."

    def test_narrative_keeps_thread_counts(self, report_document):
        """Should keep the existing thread summary fields."""
        result = AnalysisResult(root_cause="x", thread_narrative=ThreadNarrative(description="Busy."))

        merged = merge_analysis_into_report(report_document, result)

        thread_summary = merged["analysis"]["threads"]["summary"]
        assert thread_summary["description"] == "Busy."
        assert thread_summary["total"] == 3
