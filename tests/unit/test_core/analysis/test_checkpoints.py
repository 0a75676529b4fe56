"""Tests for checkpoint cadence and message building."""

from __future__ import annotations

from crash_analysis_mcp.core.analysis.checkpoints import (
    CheckpointManager,
    flatten_turn,
    latest_turn,
    transcript_chars,
)
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
from crash_analysis_mcp.core.analysis.models.tool_calls import CheckpointCompleteCall, HypothesisInput
from crash_analysis_mcp.core.analysis.transport import ChatMessage, ChatRole, ToolCall, ToolResult


def _ledger():
    ledger = EvidenceLedger()
    ledger.add_auto_evidence("report_get", {"path": "analysis.exception"}, "NullReferenceException")
    return ledger


def _turn():
    return [
        ChatMessage(role=ChatRole.USER, content="old prompt"),
        ChatMessage(
            role=ChatRole.ASSISTANT,
            content="Checking the exception.",
            tool_calls=[ToolCall(id="c1", name="report_get", arguments={"path": "analysis.exception"})],
        ),
        ChatMessage(role=ChatRole.TOOL, tool_results=[ToolResult(tool_call_id="c1", content="E1: exception")]),
    ]


class TestCadence:
    """Tests for is_due."""

    def test_due_every_n_iterations(self):
        """Should request a checkpoint once N iterations have completed."""
        manager = CheckpointManager(every_iterations=4)
        assert not manager.is_due(4, 0)
        assert manager.is_due(5, 0)

    def test_due_relative_to_last_checkpoint(self):
        """Should count from the last stored checkpoint."""
        manager = CheckpointManager(every_iterations=4)
        manager.synthesize(5, _ledger(), HypothesisRegistry(_ledger()), [])
        assert not manager.is_due(5, 10**9)
        assert not manager.is_due(8, 0)
        assert manager.is_due(9, 0)

    def test_regular_gap_between_checkpoints(self):
        """Should keep the same gap between every pair of checkpoints."""
        manager = CheckpointManager(every_iterations=2)
        ledger = _ledger()
        registry = HypothesisRegistry(ledger)
        due = []
        for iteration in range(1, 12):
            if manager.is_due(iteration, 0):
                manager.synthesize(iteration, ledger, registry, [])
                due.append(iteration)
        assert due == [3, 5, 7, 9, 11]

    def test_due_on_transcript_pressure(self):
        """Should request a checkpoint when the transcript grows too large."""
        manager = CheckpointManager(every_iterations=50, max_transcript_chars=2000)
        assert not manager.is_due(2, 1999)
        assert manager.is_due(2, 2000)

    def test_transcript_ceiling_is_clamped(self):
        """Should not accept transcript ceilings below 1000 chars."""
        assert CheckpointManager(max_transcript_chars=10).max_transcript_chars == 1000


class TestAcceptAndSynthesize:
    """Tests for accept and synthesize."""

    def test_accept_filters_unknown_evidence(self):
        """Should keep only evidence IDs that exist in the ledger."""
        manager = CheckpointManager()
        call = CheckpointCompleteCall(
            facts=["E1 shows a NullReferenceException"],
            evidence_ids=["e1", "E5"],
            do_not_repeat=["report_get(path=analysis.exception)"],
            next_steps=["Inspect the order object"],
        )
        checkpoint = manager.accept(call, 3, _ledger())
        assert checkpoint.evidence_snapshot_ids == ["E1"]
        assert checkpoint.synthesized is False
        assert manager.latest is checkpoint

    def test_synthesize_from_run_state(self):
        """Should build a checkpoint from ledger, hypotheses and call signatures."""
        ledger = _ledger()
        registry = HypothesisRegistry(ledger)
        registry.register([HypothesisInput(hypothesis="order is null", confidence="high", tests_to_run=["inspect order"])])
        manager = CheckpointManager()

        checkpoint = manager.synthesize(4, ledger, registry, ["a()", "b()", "a()"])

        assert checkpoint.synthesized is True
        assert checkpoint.evidence_snapshot_ids == ["E1"]
        assert checkpoint.facts[0].startswith("E1 (report_get(path=analysis.exception))")
        assert checkpoint.hypotheses_snapshot == [{"id": "H1", "statement": "order is null", "confidence": "high"}]
        assert checkpoint.do_not_repeat == ["a()", "b()"]
        assert checkpoint.next_steps[0] == "inspect order"

    def test_synthesize_without_hypotheses(self):
        """Should suggest registering hypotheses when none exist."""
        ledger = _ledger()
        checkpoint = CheckpointManager().synthesize(1, ledger, HypothesisRegistry(ledger), [])
        assert "Register hypotheses" in checkpoint.next_steps[0]

    def test_render(self):
        """Should render every populated section."""
        manager = CheckpointManager()
        call = CheckpointCompleteCall(facts=["fact one"], evidence_ids=["E1"], next_steps=["step"])
        rendered = manager.accept(call, 2, _ledger()).render()
        assert rendered.startswith("CHECKPOINT (iteration 2)")
        assert "- fact one" in rendered
        assert "Evidence on record: E1" in rendered
        assert "1. step" in rendered


class TestBuildMessages:
    """Tests for build_messages."""

    def test_full_history_mode(self):
        """Should lead with the opening prompt and keep the transcript."""
        manager = CheckpointManager()
        transcript = _turn()[1:]
        messages = manager.build_messages("Investigate.", transcript)
        assert messages[0].role == ChatRole.USER
        assert messages[0].content == "Investigate."
        assert messages[1:] == transcript

    def test_checkpoint_is_standing_context(self):
        """Should include the latest checkpoint in the opening message."""
        manager = CheckpointManager()
        manager.accept(CheckpointCompleteCall(facts=["fact"]), 2, _ledger())
        messages = manager.build_messages("Investigate.", [])
        assert "CHECKPOINT (iteration 2)" in messages[0].content

    def test_checkpoint_only_mode_flattens_latest_turn(self):
        """Should send a single text message without tool history."""
        manager = CheckpointManager()
        manager.enable_checkpoint_only()
        messages = manager.build_messages("Investigate.", _turn())
        assert len(messages) == 1
        assert not messages[0].has_tool_history
        assert "MOST RECENT TURN:" in messages[0].content
        assert "Tool call report_get" in messages[0].content
        assert "old prompt" not in messages[0].content


class TestTranscriptHelpers:
    """Tests for transcript helpers."""

    def test_latest_turn_starts_at_last_assistant(self):
        """Should return messages from the last assistant message."""
        turn = _turn()
        assert latest_turn(turn) == turn[1:]

    def test_latest_turn_without_assistant(self):
        """Should fall back to the last message."""
        only_user = [ChatMessage(role=ChatRole.USER, content="a"), ChatMessage(role=ChatRole.USER, content="b")]
        assert latest_turn(only_user) == only_user[-1:]

    def test_flatten_turn(self):
        """Should render text, calls and results as lines."""
        text = flatten_turn(_turn()[1:])
        assert text.splitlines() == [
            "Assistant: Checking the exception.",
            "Tool call report_get: {'path': 'analysis.exception'}",
            "Tool result: E1: exception",
        ]

    def test_transcript_chars(self):
        """Should sum message sizes."""
        assert transcript_chars([ChatMessage(role=ChatRole.USER, content="abcd")]) == 4
