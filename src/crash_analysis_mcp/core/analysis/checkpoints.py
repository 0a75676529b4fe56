"""Checkpoint manager: periodic compaction of investigation state.

A checkpoint replaces pruned raw transcript as standing context. In
checkpoint-only mode (transports that cannot carry tool-call history) the
latest checkpoint plus the most recent turn, flattened to text, are the only
state sent to the model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from crash_analysis_mcp.core.analysis._text import bounded_list, truncate
from crash_analysis_mcp.core.analysis.models.checkpoint import Checkpoint
from crash_analysis_mcp.core.analysis.models.tool_calls import CheckpointCompleteCall
from crash_analysis_mcp.core.analysis.transport import ChatMessage, ChatRole

if TYPE_CHECKING:
    from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
    from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry

logger = logging.getLogger(__name__)

MAX_FACTS = 30
MAX_DO_NOT_REPEAT = 20
MAX_NEXT_STEPS = 10
MAX_ENTRY_CHARS = 512

# Tool results inside a flattened turn are cut to this size.
FLATTENED_RESULT_CHARS = 4000


class CheckpointManager:
    """Tracks checkpoint cadence and builds the messages sent to the model.

    Args:
        every_iterations: Request a checkpoint every N iterations.
        max_transcript_chars: Request a checkpoint once the transcript grows past this size.
    """

    def __init__(self, *, every_iterations: int = 4, max_transcript_chars: int = 120_000) -> None:
        self.every_iterations = max(1, every_iterations)
        self.max_transcript_chars = max(1_000, max_transcript_chars)
        self.checkpoint_only = False
        self._history: list[Checkpoint] = []
        self._last_checkpoint_iteration = 0
        # Iterations completed when the latest checkpoint was taken.
        self._completed_at_checkpoint = 0

    @property
    def latest(self) -> Optional[Checkpoint]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[Checkpoint]:
        return list(self._history)

    def enable_checkpoint_only(self) -> None:
        if not self.checkpoint_only:
            logger.warning("Transport rejected tool-call history; switching to checkpoint-only mode")
        self.checkpoint_only = True

    def is_due(self, iteration: int, transcript_chars: int) -> bool:
        """Whether a checkpoint should be requested before *iteration* runs."""
        if iteration <= self._last_checkpoint_iteration:
            return False
        if transcript_chars >= self.max_transcript_chars:
            return True
        return (iteration - 1) - self._completed_at_checkpoint >= self.every_iterations

    def accept(
        self,
        call: CheckpointCompleteCall,
        iteration: int,
        ledger: "EvidenceLedger",
    ) -> Checkpoint:
        """Bound and store a model-submitted checkpoint.

        Evidence references are filtered to IDs that exist in the ledger.
        """
        known_ids, _ = ledger.partition_known(call.evidence_ids)
        checkpoint = Checkpoint(
            iteration=iteration,
            facts=bounded_list(call.facts, MAX_FACTS, MAX_ENTRY_CHARS),
            hypotheses_snapshot=[
                {
                    "id": h.id,
                    "statement": truncate(h.statement, MAX_ENTRY_CHARS),
                    "confidence": h.confidence,
                }
                for h in call.hypotheses[:MAX_NEXT_STEPS]
            ],
            evidence_snapshot_ids=known_ids,
            do_not_repeat=bounded_list(call.do_not_repeat, MAX_DO_NOT_REPEAT, MAX_ENTRY_CHARS),
            next_steps=bounded_list(call.next_steps, MAX_NEXT_STEPS, MAX_ENTRY_CHARS),
        )
        return self._store(checkpoint)

    def synthesize(
        self,
        iteration: int,
        ledger: "EvidenceLedger",
        registry: "HypothesisRegistry",
        signatures: Iterable[str],
    ) -> Checkpoint:
        """Build and store a deterministic checkpoint from run state."""
        facts = [
            f"{item.id} ({item.source}): {item.why_it_matters or item.excerpt}"
            for item in ledger.items()[-MAX_FACTS:]
        ]
        hypotheses = [
            {"id": h.id, "statement": truncate(h.statement, MAX_ENTRY_CHARS), "confidence": h.confidence}
            for h in registry.active()
        ]
        next_steps: list[str] = []
        best = registry.best_active()
        if best is not None:
            next_steps.extend(best.tests_to_run)
            next_steps.append(f"Confirm or refute {best.id} with new evidence, then call analysis_complete.")
        else:
            next_steps.append("Register hypotheses that explain the crash, citing evidence IDs.")

        recent_signatures = list(dict.fromkeys(signatures))[-MAX_DO_NOT_REPEAT:]
        checkpoint = Checkpoint(
            iteration=iteration,
            facts=bounded_list(facts, MAX_FACTS, MAX_ENTRY_CHARS),
            hypotheses_snapshot=hypotheses,
            evidence_snapshot_ids=ledger.ids(),
            do_not_repeat=bounded_list(recent_signatures, MAX_DO_NOT_REPEAT, MAX_ENTRY_CHARS),
            next_steps=bounded_list(next_steps, MAX_NEXT_STEPS, MAX_ENTRY_CHARS),
            synthesized=True,
        )
        logger.info("Synthesized checkpoint at iteration %d", iteration)
        return self._store(checkpoint)

    def _store(self, checkpoint: Checkpoint) -> Checkpoint:
        self._history.append(checkpoint)
        self._last_checkpoint_iteration = checkpoint.iteration
        self._completed_at_checkpoint = checkpoint.iteration - 1
        return checkpoint

    def build_messages(self, opening: str, transcript: list[ChatMessage]) -> list[ChatMessage]:
        """Messages for the next model turn.

        Args:
            opening: Phase prompt that always leads the conversation.
            transcript: Raw messages since the latest checkpoint.
        """
        parts = [opening]
        if self.latest is not None:
            parts.append(self.latest.render())

        if not self.checkpoint_only:
            return [ChatMessage(role=ChatRole.USER, content="\n\n".join(parts)), *transcript]

        recent = flatten_turn(latest_turn(transcript))
        if recent:
            parts.append("MOST RECENT TURN:\n" + recent)
        return [ChatMessage(role=ChatRole.USER, content="\n\n".join(parts))]


def transcript_chars(messages: Iterable[ChatMessage]) -> int:
    return sum(message.char_count() for message in messages)


def latest_turn(transcript: list[ChatMessage]) -> list[ChatMessage]:
    """Messages from the last assistant message onward."""
    for index in range(len(transcript) - 1, -1, -1):
        if transcript[index].role == ChatRole.ASSISTANT:
            return transcript[index:]
    return list(transcript[-1:])


def flatten_turn(messages: Iterable[ChatMessage]) -> str:
    """Render messages as plain text with no structured tool history."""
    lines: list[str] = []
    for message in messages:
        if message.content:
            label = "Assistant" if message.role == ChatRole.ASSISTANT else "User"
            lines.append(f"{label}: {message.content}")
        for call in message.tool_calls:
            lines.append(f"Tool call {call.name}: {call.arguments}")
        for result in message.tool_results:
            status = "error" if result.is_error else "result"
            lines.append(f"Tool {status}: {truncate(result.content, FLATTENED_RESULT_CHARS)}")
    return "\n".join(lines)
