"""Pydantic models for analysis runs."""

from crash_analysis_mcp.core.analysis.models.checkpoint import Checkpoint
from crash_analysis_mcp.core.analysis.models.evidence import EvidenceItem, normalize_evidence_id
from crash_analysis_mcp.core.analysis.models.hypotheses import (
    Hypothesis,
    JudgeResult,
    RejectedHypothesis,
    normalize_confidence,
)
from crash_analysis_mcp.core.analysis.models.results import (
    AnalysisResult,
    ExecutedCommand,
    SummaryRewrite,
    ThreadNarrative,
)
from crash_analysis_mcp.core.analysis.models.state import (
    AnalysisPhase,
    AnalysisRunState,
    FinalizationReason,
)

__all__ = [
    "AnalysisPhase",
    "AnalysisResult",
    "AnalysisRunState",
    "Checkpoint",
    "EvidenceItem",
    "ExecutedCommand",
    "FinalizationReason",
    "Hypothesis",
    "JudgeResult",
    "RejectedHypothesis",
    "SummaryRewrite",
    "ThreadNarrative",
    "normalize_confidence",
    "normalize_evidence_id",
]
