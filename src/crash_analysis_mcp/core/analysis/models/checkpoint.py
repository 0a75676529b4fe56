"""Checkpoint model: compacted run state that replaces pruned transcript."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Checkpoint(BaseModel):
    """Snapshot carried forward as standing context after transcript pruning."""

    model_config = ConfigDict(populate_by_name=True)

    iteration: int
    facts: list[str] = Field(default_factory=list)
    hypotheses_snapshot: list[dict[str, Any]] = Field(default_factory=list, alias="hypothesesSnapshot")
    evidence_snapshot_ids: list[str] = Field(default_factory=list, alias="evidenceSnapshotIds")
    do_not_repeat: list[str] = Field(default_factory=list, alias="doNotRepeat")
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    synthesized: bool = Field(
        default=False,
        description="True when built from run state because the model did not supply one",
    )

    def render(self) -> str:
        """Render the checkpoint as standing context for the next turn."""
        lines = [f"CHECKPOINT (iteration {self.iteration})"]
        if self.facts:
            lines.append("Facts:")
            lines.extend(f"- {fact}" for fact in self.facts)
        if self.hypotheses_snapshot:
            lines.append("Hypotheses:")
            for hypothesis in self.hypotheses_snapshot:
                hid = hypothesis.get("id", "?")
                confidence = hypothesis.get("confidence", "unknown")
                statement = hypothesis.get("statement") or hypothesis.get("hypothesis") or ""
                lines.append(f"- {hid} [{confidence}] {statement}")
        if self.evidence_snapshot_ids:
            lines.append("Evidence on record: " + ", ".join(self.evidence_snapshot_ids))
        if self.do_not_repeat:
            lines.append("Do NOT repeat these tool calls:")
            lines.extend(f"- {signature}" for signature in self.do_not_repeat)
        if self.next_steps:
            lines.append("Next steps:")
            lines.extend(f"{i}. {step}" for i, step in enumerate(self.next_steps, start=1))
        return "\n".join(lines)
