"""Analysis result models merged into the report under ``analysis.aiAnalysis``."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from crash_analysis_mcp.core.analysis.models.evidence import EvidenceItem
from crash_analysis_mcp.core.analysis.models.hypotheses import Hypothesis, JudgeResult


class ExecutedCommand(BaseModel):
    """One evidence tool call made during the run."""

    model_config = ConfigDict(populate_by_name=True)

    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str = ""
    iteration: int = 0
    duration_ms: Optional[float] = Field(default=None, alias="durationMs")


class SummaryRewrite(BaseModel):
    """Human-facing summary produced by the summary-rewrite pass."""

    description: str
    recommendations: list[str] = Field(default_factory=list)


class ThreadNarrative(BaseModel):
    """Narrative of process/thread activity."""

    description: str


class AnalysisResult(BaseModel):
    """Outcome of one analysis run."""

    model_config = ConfigDict(populate_by_name=True)

    root_cause: str = Field(default="", alias="rootCause")
    confidence: str = "unknown"
    reasoning: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    additional_findings: list[str] = Field(default_factory=list, alias="additionalFindings")
    evidence_ledger: list[EvidenceItem] = Field(default_factory=list, alias="evidenceLedger")
    hypotheses: list[Hypothesis] = Field(default_factory=list)
    judge: Optional[JudgeResult] = None
    summary: Optional[SummaryRewrite] = None
    thread_narrative: Optional[ThreadNarrative] = Field(default=None, alias="threadNarrative")
    iterations: int = 0
    commands_executed: list[ExecutedCommand] = Field(default_factory=list, alias="commandsExecuted")
    model: Optional[str] = None
    finalization_reason: str = Field(default="model", alias="finalizationReason")
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="analyzedAt")

    def to_report_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting empty optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
