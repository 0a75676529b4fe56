"""Tests for the tool dispatcher."""

from __future__ import annotations

import json

import pytest

from crash_analysis_mcp.core.analysis.backend import DebuggerBackend, ReportOnlyBackend
from crash_analysis_mcp.core.analysis.budget import BudgetGuard, BudgetLimits
from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager
from crash_analysis_mcp.core.analysis.dispatcher import PHASE_TOOLS, ToolDispatcher, find_thread
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
from crash_analysis_mcp.core.analysis.models.checkpoint import Checkpoint
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase
from crash_analysis_mcp.core.analysis.models.tool_calls import AnalysisCompleteCall
from crash_analysis_mcp.core.analysis.transport import ToolCall

INVESTIGATION_TOOLS = PHASE_TOOLS[AnalysisPhase.INVESTIGATION]


class FakeDebugger(DebuggerBackend):
    """Debugger backend returning canned output."""

    name = "fake"

    def __init__(self, output="ok", inspected=None):
        super().__init__()
        self.output = output
        self.inspected = inspected
        self.commands = []

    async def execute_command(self, command):
        self.commands.append(command)
        return self.output

    async def inspect_object(self, address, max_depth=3):
        return self.inspected


def _call(name, **arguments):
    return ToolCall(id=f"call_{name}", name=name, arguments=arguments)


def _make_dispatcher(report, *, backend=None, provenance=True, **kwargs):
    ledger = EvidenceLedger(provenance_mode=provenance)
    return ToolDispatcher(
        report=report,
        ledger=ledger,
        registry=HypothesisRegistry(ledger),
        checkpoints=CheckpointManager(),
        backend=backend or ReportOnlyBackend(),
        **kwargs,
    )


@pytest.fixture
def dispatcher(report_document):
    return _make_dispatcher(report_document)


@pytest.fixture
def budget():
    guard = BudgetGuard(BudgetLimits(max_iterations=10, max_tool_calls_total=10, max_tool_calls_per_iteration=2))
    guard.begin_iteration()
    return guard


async def _dispatch(dispatcher, call, budget, phase=AnalysisPhase.INVESTIGATION, iteration=1):
    return await dispatcher.dispatch(
        call,
        phase=phase,
        allowed_tools=PHASE_TOOLS[phase],
        budget=budget,
        iteration=iteration,
    )


class TestEvidenceTools:
    """Tests for evidence tool dispatch."""

    @pytest.mark.asyncio
    async def test_report_get_records_evidence(self, dispatcher, budget):
        """Should return the section with its evidence ID and record it."""
        outcome = await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)

        assert not outcome.is_error
        assert outcome.progress
        assert outcome.evidence_id == "E1"
        header, body = outcome.content.split("\n", 1)
        assert header == "[E1]"
        assert json.loads(body)["value"]["type"] == "System.NullReferenceException"
        assert dispatcher.ledger.get("E1").tool_name == "report_get"
        assert dispatcher.commands_executed[0].input == {"path": "analysis.exception"}
        assert budget.state.tool_calls_total == 1

    @pytest.mark.asyncio
    async def test_repeated_call_is_duplicate(self, dispatcher, budget):
        """Should flag a repeated call and make no progress."""
        await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        outcome = await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)

        assert outcome.duplicate
        assert not outcome.progress
        assert outcome.evidence_id == "E1"
        assert "repeat of an earlier call" in outcome.content
        assert len(dispatcher.ledger) == 1
        assert dispatcher.signatures == ["report_get(path=analysis.exception)"]

    @pytest.mark.asyncio
    async def test_section_error_is_tool_error(self, dispatcher, budget):
        """Should return query errors as retryable tool errors without recording evidence."""
        outcome = await _dispatch(dispatcher, _call("report_get", path="analysis.missing"), budget)
        assert outcome.is_error
        assert json.loads(outcome.content)["error"]["code"] == "invalid_path"
        assert len(dispatcher.ledger) == 0

    @pytest.mark.asyncio
    async def test_tool_not_in_phase(self, dispatcher, budget):
        """Should refuse tools outside the phase's tool set without charging the budget."""
        outcome = await _dispatch(
            dispatcher,
            _call("exec", command="!pe"),
            budget,
            phase=AnalysisPhase.SUMMARY_REWRITE,
        )
        assert outcome.is_error
        assert "not available in the summary_rewrite phase" in outcome.content
        assert budget.state.tool_calls_total == 0

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, dispatcher, budget):
        """Should return validation errors to the model."""
        outcome = await _dispatch(dispatcher, _call("report_get"), budget)
        assert outcome.is_error
        assert "Invalid arguments for 'report_get'" in outcome.content
        assert budget.state.tool_calls_total == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", [".shell ls", "!threads; .shell rm -rf /", "command script import x", "a\nb"])
    async def test_unsafe_commands_blocked_before_charge(self, report_document, budget, command):
        """Should block shell escapes and multi-line commands without running or charging them."""
        backend = FakeDebugger()
        dispatcher = _make_dispatcher(report_document, backend=backend)
        outcome = await _dispatch(dispatcher, _call("exec", command=command), budget)
        assert outcome.is_error
        assert backend.commands == []
        assert budget.state.tool_calls_total == 0

    @pytest.mark.asyncio
    async def test_exec_without_debugger(self, dispatcher, budget):
        """Should report that no debugger is attached."""
        outcome = await _dispatch(dispatcher, _call("exec", command="!clrstack"), budget)
        assert outcome.is_error
        assert "No debugger session is attached" in outcome.content

    @pytest.mark.asyncio
    async def test_inspect_without_debugger(self, dispatcher, budget):
        """Should report that inspection is unavailable."""
        outcome = await _dispatch(dispatcher, _call("inspect", address="0x10"), budget)
        assert outcome.is_error
        assert "inspection is not available" in outcome.content

    @pytest.mark.asyncio
    async def test_exec_with_debugger(self, report_document, budget):
        """Should run the trimmed command and record its output."""
        backend = FakeDebugger(output="Exception object: 0000")
        dispatcher = _make_dispatcher(report_document, backend=backend)
        outcome = await _dispatch(dispatcher, _call("exec", command="   !pe"), budget)
        assert backend.commands == ["!pe"]
        assert outcome.content == "[E1]\nException object: 0000"

    @pytest.mark.asyncio
    async def test_inspect_with_debugger(self, report_document, budget):
        """Should return the inspected object as JSON."""
        backend = FakeDebugger(inspected={"type": "MyApp.Order", "fields": []})
        dispatcher = _make_dispatcher(report_document, backend=backend)
        outcome = await _dispatch(dispatcher, _call("inspect", address=16), budget)
        assert json.loads(outcome.content.split("\n", 1)[1])["type"] == "MyApp.Order"
        assert dispatcher.commands_executed[0].input == {"address": "0x10", "maxDepth": 3}

    @pytest.mark.asyncio
    async def test_inspect_unresolved_address(self, report_document, budget):
        """Should report unresolved addresses as errors."""
        dispatcher = _make_dispatcher(report_document, backend=FakeDebugger(inspected=None))
        outcome = await _dispatch(dispatcher, _call("inspect", address="0x10"), budget)
        assert outcome.is_error
        assert "Failed to inspect object" in outcome.content

    @pytest.mark.asyncio
    async def test_output_is_bounded(self, report_document, budget):
        """Should truncate long tool output."""
        dispatcher = _make_dispatcher(
            report_document,
            backend=FakeDebugger(output="x" * 5000),
            tool_output_max_chars=1000,
        )
        outcome = await _dispatch(dispatcher, _call("exec", command="!dumpheap"), budget)
        assert len(outcome.content) <= 1000 + len("[E1]\n")
        assert "truncated, total 5000 chars" in outcome.content

    @pytest.mark.asyncio
    async def test_budget_refusal(self, dispatcher, budget):
        """Should refuse calls past the per-iteration limit."""
        await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        await _dispatch(dispatcher, _call("report_get", path="analysis.summary"), budget)
        outcome = await _dispatch(dispatcher, _call("report_get", path="analysis.environment"), budget)
        assert outcome.is_error
        assert outcome.budget_exceeded
        assert "Budget exceeded: max_tool_calls_per_iteration" in outcome.content
        assert len(dispatcher.ledger) == 2

    @pytest.mark.asyncio
    async def test_provenance_off_records_nothing(self, report_document, budget):
        """Should return raw output without ledger entries when provenance mode is off."""
        dispatcher = _make_dispatcher(report_document, provenance=False)
        first = await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        second = await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        assert first.progress and not first.duplicate
        assert second.duplicate and not second.progress
        assert len(dispatcher.ledger) == 0
        assert first.content.startswith("{")


class TestGetThreadStack:
    """Tests for thread lookup."""

    @pytest.mark.parametrize(
        "thread_id,expected",
        [("1", "1"), ("0x1a2b", "1"), ("1A2B", "1"), ("2", "2"), ("7", "3"), ("6701", "3"), ("0x1a2d", "3")],
    )
    def test_find_thread_by_any_identifier(self, report_dict, thread_id, expected):
        """Should match threadId, managedThreadId, OS thread id and decimal OS id."""
        assert find_thread(report_dict, thread_id)["threadId"] == expected

    def test_find_thread_missing(self, report_dict, report_factory):
        """Should return None for unknown threads or reports without threads."""
        assert find_thread(report_dict, "99") is None
        assert find_thread(report_factory(threads=None), "1") is None

    @pytest.mark.asyncio
    async def test_dispatch(self, dispatcher, budget):
        """Should return the thread as JSON evidence."""
        outcome = await _dispatch(dispatcher, _call("get_thread_stack", threadId="0x1a2c"), budget)
        thread = json.loads(outcome.content.split("\n", 1)[1])
        assert thread["state"] == "Waiting"
        assert outcome.evidence_id == "E1"

    @pytest.mark.asyncio
    async def test_dispatch_missing_thread(self, dispatcher, budget):
        """Should return an error for unknown threads."""
        outcome = await _dispatch(dispatcher, _call("get_thread_stack", threadId="42"), budget)
        assert outcome.is_error
        assert "Thread not found" in outcome.content


class TestMetaTools:
    """Tests for meta tool dispatch."""

    @pytest.mark.asyncio
    async def test_high_confidence_requires_evidence(self, dispatcher, budget):
        """Should refuse a high-confidence conclusion citing no evidence."""
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_complete", rootCause="Null order", confidence="high"),
            budget,
        )
        assert outcome.is_error
        assert not outcome.completed
        assert "High confidence requires" in outcome.content

    @pytest.mark.asyncio
    async def test_unknown_evidence_is_refused(self, dispatcher, budget):
        """Should refuse conclusions citing unknown evidence."""
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_complete", rootCause="Null order", confidence="low", evidence=["E9"]),
            budget,
        )
        assert outcome.is_error
        assert "unknown evidence IDs: E9" in outcome.content

    @pytest.mark.asyncio
    async def test_completion_with_known_evidence(self, dispatcher, budget):
        """Should accept a conclusion citing recorded evidence, also inside prose."""
        await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_complete", rootCause="Null order", confidence="high", evidence=["see e1"]),
            budget,
        )
        assert outcome.completed
        assert isinstance(outcome.payload, AnalysisCompleteCall)
        assert budget.state.tool_calls_total == 1

    @pytest.mark.asyncio
    async def test_checkpoint(self, dispatcher, budget):
        """Should store checkpoints without completing the phase."""
        outcome = await _dispatch(
            dispatcher,
            _call("checkpoint_complete", facts=["fact"], nextSteps=["step"]),
            budget,
            iteration=4,
        )
        assert isinstance(outcome.payload, Checkpoint)
        assert not outcome.completed
        assert dispatcher.checkpoints.latest.iteration == 4

    @pytest.mark.asyncio
    async def test_hypothesis_register_and_score(self, dispatcher, budget):
        """Should register and score hypotheses, reporting the change."""
        registered = await _dispatch(
            dispatcher,
            _call("analysis_hypothesis_register", hypotheses=[{"hypothesis": "order is null", "confidence": "low"}]),
            budget,
        )
        scored = await _dispatch(
            dispatcher,
            _call("analysis_hypothesis_score", updates=[{"id": "H1", "confidence": "medium"}]),
            budget,
        )
        unchanged = await _dispatch(
            dispatcher,
            _call("analysis_hypothesis_score", updates=[{"id": "H1", "confidence": "medium"}]),
            budget,
        )
        assert json.loads(registered.content)["added"] == ["H1"]
        assert registered.progress and scored.progress
        assert not unchanged.progress
        assert budget.state.tool_calls_total == 0

    @pytest.mark.asyncio
    async def test_evidence_add_annotates(self, dispatcher, budget):
        """Should annotate recorded evidence."""
        await _dispatch(dispatcher, _call("report_get", path="analysis.exception"), budget)
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_evidence_add", items=[{"id": "E1", "whyItMatters": "Thrown type"}]),
            budget,
        )
        assert outcome.progress
        assert dispatcher.ledger.get("E1").why_it_matters == "Thrown type"

    @pytest.mark.asyncio
    async def test_judge_validation_error_is_tool_error(self, dispatcher, budget):
        """Should return judge validation failures to the model."""
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_judge_complete", selectedHypothesisId="H1", rationale="x"),
            budget,
            phase=AnalysisPhase.JUDGE,
        )
        assert outcome.is_error
        assert "not found" in outcome.content

    @pytest.mark.asyncio
    async def test_summary_rewrite(self, dispatcher, budget):
        """Should accept the summary rewrite payload as a completion."""
        outcome = await _dispatch(
            dispatcher,
            _call("analysis_summary_rewrite_complete", description="Null order.", recommendations=["Fix"]),
            budget,
            phase=AnalysisPhase.SUMMARY_REWRITE,
        )
        assert outcome.completed
        assert outcome.to_result().is_error is False
