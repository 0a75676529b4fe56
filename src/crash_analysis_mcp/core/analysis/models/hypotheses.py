"""Hypothesis and judge models."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CONFIDENCE_LEVELS = ("high", "medium", "low", "unknown")

_CONFIDENCE_ALIASES = {
    "h": "high",
    "hi": "high",
    "strong": "high",
    "med": "medium",
    "moderate": "medium",
    "m": "medium",
    "l": "low",
    "lo": "low",
    "weak": "low",
}


def normalize_confidence(value: object) -> str:
    """Normalize a confidence label to ``high|medium|low|unknown``."""
    if not isinstance(value, str):
        return "unknown"
    label = value.strip().lower()
    label = _CONFIDENCE_ALIASES.get(label, label)
    return label if label in CONFIDENCE_LEVELS else "unknown"


def confidence_rank(value: str) -> int:
    """Sort key: higher is more confident."""
    return {"high": 3, "medium": 2, "low": 1}.get(value, 0)


class Hypothesis(BaseModel):
    """A candidate root-cause explanation linked to evidence."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Stable hypothesis ID (H<n>)")
    statement: str
    confidence: str = "unknown"
    linked_evidence_ids: list[str] = Field(default_factory=list, alias="linkedEvidenceIds")
    contradicting_evidence_ids: list[str] = Field(default_factory=list, alias="contradictingEvidenceIds")
    status: Literal["active", "rejected"] = "active"
    unknowns: list[str] = Field(default_factory=list)
    tests_to_run: list[str] = Field(default_factory=list, alias="testsToRun")
    notes: list[str] = Field(default_factory=list)


class RejectedHypothesis(BaseModel):
    """A hypothesis the judge rejected, with cited contradictions."""

    model_config = ConfigDict(populate_by_name=True)

    hypothesis_id: str = Field(..., alias="hypothesisId")
    reason: str
    contradicting_evidence_ids: list[str] = Field(default_factory=list, alias="contradictingEvidenceIds")


class JudgeResult(BaseModel):
    """Final hypothesis selection."""

    model_config = ConfigDict(populate_by_name=True)

    selected_hypothesis_id: Optional[str] = Field(default=None, alias="selectedHypothesisId")
    confidence: str = "unknown"
    rationale: str = ""
    rejected: list[RejectedHypothesis] = Field(default_factory=list)
    source: Literal["model", "default"] = Field(
        default="model",
        description="'default' when selected without a model pass",
    )
