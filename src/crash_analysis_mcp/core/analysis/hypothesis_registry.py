"""Hypothesis registry: bounded set of competing root-cause explanations.

Hypotheses link only to evidence that exists in the ledger. Once the judge
selection is recorded the registry is closed and rejects further changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from crash_analysis_mcp.core.analysis._text import bounded_list, normalize_key, truncate
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
from crash_analysis_mcp.core.analysis.models.hypotheses import (
    Hypothesis,
    JudgeResult,
    RejectedHypothesis,
    confidence_rank,
    normalize_confidence,
)
from crash_analysis_mcp.core.errors.analysis import ValidationFailedError

logger = logging.getLogger(__name__)

MAX_STATEMENT_CHARS = 2048
MAX_LIST_ITEMS = 50
MAX_LIST_ITEM_CHARS = 512


@dataclass
class HypothesisChangeResult:
    """Outcome of a register or score call."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    dropped: int = 0
    unknown_evidence_ids: list[str] = field(default_factory=list)
    unknown_hypothesis_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"added": self.added, "updated": self.updated}
        if self.duplicates:
            data["duplicates"] = self.duplicates
        if self.dropped:
            data["dropped"] = self.dropped
        if self.unknown_evidence_ids:
            data["unknownEvidenceIds"] = self.unknown_evidence_ids
        if self.unknown_hypothesis_ids:
            data["unknownHypothesisIds"] = self.unknown_hypothesis_ids
        return data


class HypothesisRegistry:
    """Competing hypotheses for one analysis run.

    Args:
        ledger: Evidence ledger used to validate evidence links.
        max_total: Run-wide hypothesis cap.
        max_per_call: Cap on new hypotheses per register call.
    """

    def __init__(self, ledger: EvidenceLedger, *, max_total: int = 10, max_per_call: int = 5) -> None:
        self.ledger = ledger
        self.max_total = max(1, max_total)
        self.max_per_call = max(1, max_per_call)
        self._hypotheses: dict[str, Hypothesis] = {}
        self._next_number = 1
        self._judge: Optional[JudgeResult] = None

    def __len__(self) -> int:
        return len(self._hypotheses)

    @property
    def closed(self) -> bool:
        return self._judge is not None

    @property
    def judge(self) -> Optional[JudgeResult]:
        return self._judge

    def get(self, hypothesis_id: str) -> Optional[Hypothesis]:
        return self._hypotheses.get(_normalize_hypothesis_id(hypothesis_id))

    def all(self) -> list[Hypothesis]:
        return list(self._hypotheses.values())

    def active(self) -> list[Hypothesis]:
        return [h for h in self._hypotheses.values() if h.status == "active"]

    def best_active(self) -> Optional[Hypothesis]:
        """Highest-confidence active hypothesis; ties go to more linked evidence, then age."""
        candidates = self.active()
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda h: (confidence_rank(h.confidence), len(h.linked_evidence_ids), -_id_number(h.id)),
        )

    def snapshot(self) -> list[Hypothesis]:
        return [h.model_copy(deep=True) for h in self._hypotheses.values()]

    def render(self) -> str:
        if not self._hypotheses:
            return "(no hypotheses registered)"
        lines = []
        for h in self._hypotheses.values():
            links = ", ".join(h.linked_evidence_ids) or "none"
            status = "" if h.status == "active" else " (rejected)"
            lines.append(f"{h.id} [{h.confidence}]{status} {h.statement} | evidence: {links}")
        return "\n".join(lines)

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValidationFailedError("Hypotheses are closed after the judge decision.")

    def _known_evidence(self, ids: Iterable[str], result: HypothesisChangeResult) -> list[str]:
        known, unknown = self.ledger.partition_known(ids)
        for raw in unknown:
            if raw not in result.unknown_evidence_ids:
                result.unknown_evidence_ids.append(raw)
        return known

    def register(self, inputs: Iterable[Any]) -> HypothesisChangeResult:
        """Register new hypotheses.

        Entries beyond the per-call or run-wide cap are dropped; statements
        that duplicate an existing hypothesis are ignored.

        Raises:
            ValidationFailedError: If the registry is closed.
        """
        self._ensure_open()
        result = HypothesisChangeResult()
        existing = {normalize_key(h.statement): h.id for h in self._hypotheses.values()}

        for index, entry in enumerate(inputs):
            if index >= self.max_per_call or len(self._hypotheses) >= self.max_total:
                result.dropped += 1
                continue
            statement = truncate(entry.hypothesis.strip(), MAX_STATEMENT_CHARS)
            key = normalize_key(statement)
            if key in existing:
                result.duplicates.append(existing[key])
                continue

            hypothesis = Hypothesis(
                id=f"H{self._next_number}",
                statement=statement,
                confidence=normalize_confidence(entry.confidence),
                linked_evidence_ids=self._known_evidence(entry.supports_evidence_ids, result),
                contradicting_evidence_ids=self._known_evidence(entry.contradicts_evidence_ids, result),
                unknowns=bounded_list(entry.unknowns, MAX_LIST_ITEMS, MAX_LIST_ITEM_CHARS),
                tests_to_run=bounded_list(entry.tests_to_run, MAX_LIST_ITEMS, MAX_LIST_ITEM_CHARS),
            )
            self._next_number += 1
            self._hypotheses[hypothesis.id] = hypothesis
            existing[key] = hypothesis.id
            result.added.append(hypothesis.id)

        if result.dropped:
            logger.warning("Dropped %d hypotheses over the registry caps", result.dropped)
        return result

    def score(self, updates: Iterable[Any]) -> HypothesisChangeResult:
        """Update confidence, status and evidence links of existing hypotheses.

        Raises:
            ValidationFailedError: If the registry is closed.
        """
        self._ensure_open()
        result = HypothesisChangeResult()
        for update in updates:
            hypothesis = self.get(update.id)
            if hypothesis is None:
                result.unknown_hypothesis_ids.append(update.id)
                continue

            changed = False
            if update.confidence is not None and update.confidence != hypothesis.confidence:
                hypothesis.confidence = update.confidence
                changed = True
            if update.status is not None and update.status != hypothesis.status:
                hypothesis.status = update.status
                changed = True
            for evidence_id in self._known_evidence(update.supports_evidence_ids, result):
                if evidence_id not in hypothesis.linked_evidence_ids:
                    hypothesis.linked_evidence_ids.append(evidence_id)
                    changed = True
            for evidence_id in self._known_evidence(update.contradicts_evidence_ids, result):
                if evidence_id not in hypothesis.contradicting_evidence_ids:
                    hypothesis.contradicting_evidence_ids.append(evidence_id)
                    changed = True
            if update.notes and update.notes.strip() and len(hypothesis.notes) < MAX_LIST_ITEMS:
                hypothesis.notes.append(truncate(update.notes.strip(), MAX_LIST_ITEM_CHARS))
                changed = True

            if changed:
                result.updated.append(hypothesis.id)
        return result

    def judge_select(
        self,
        selected_id: str,
        confidence: str,
        rationale: str,
        rejected: Iterable[Any],
    ) -> JudgeResult:
        """Record the final selection.

        Every other active hypothesis must be rejected with at least one
        known contradicting evidence ID. The hypothesis set itself is not
        modified.

        Raises:
            ValidationFailedError: Closed registry, unknown selection, or
                incomplete rejections.
        """
        self._ensure_open()
        selected = self.get(selected_id)
        if selected is None:
            raise ValidationFailedError(f"Hypothesis '{selected_id}' not found.", tool_name="analysis_judge_complete")

        rejections: dict[str, RejectedHypothesis] = {}
        for entry in rejected:
            hypothesis = self.get(entry.hypothesis_id)
            if hypothesis is None:
                raise ValidationFailedError(
                    f"Rejected hypothesis '{entry.hypothesis_id}' not found.",
                    tool_name="analysis_judge_complete",
                )
            if hypothesis.id == selected.id:
                raise ValidationFailedError(
                    "The selected hypothesis cannot also be rejected.",
                    tool_name="analysis_judge_complete",
                )
            known, _ = self.ledger.partition_known(entry.contradicts_evidence_ids)
            if not known:
                raise ValidationFailedError(
                    f"Rejection of {hypothesis.id} must cite at least one known evidence ID.",
                    tool_name="analysis_judge_complete",
                )
            rejections[hypothesis.id] = RejectedHypothesis(
                hypothesis_id=hypothesis.id,
                reason=truncate(entry.reason.strip(), MAX_STATEMENT_CHARS),
                contradicting_evidence_ids=known,
            )

        missing = [h.id for h in self.active() if h.id != selected.id and h.id not in rejections]
        if missing:
            raise ValidationFailedError(
                "Every alternative hypothesis must be rejected with cited evidence; missing: " + ", ".join(missing),
                tool_name="analysis_judge_complete",
            )

        self._judge = JudgeResult(
            selected_hypothesis_id=selected.id,
            confidence=normalize_confidence(confidence),
            rationale=truncate(rationale.strip(), MAX_STATEMENT_CHARS),
            rejected=list(rejections.values()),
            source="model",
        )
        logger.info("Judge selected %s (%d alternatives rejected)", selected.id, len(rejections))
        return self._judge

    def default_judge(self, rationale: str) -> JudgeResult:
        """Close the registry selecting the best active hypothesis without a model pass."""
        best = self.best_active()
        self._judge = JudgeResult(
            selected_hypothesis_id=best.id if best else None,
            confidence=best.confidence if best else "unknown",
            rationale=rationale,
            source="default",
        )
        return self._judge


def _normalize_hypothesis_id(value: str) -> str:
    text = (value or "").strip()
    if len(text) > 1 and text[0] in "hH" and text[1:].isdigit():
        return f"H{int(text[1:])}"
    return text


def _id_number(hypothesis_id: str) -> int:
    digits = hypothesis_id[1:]
    return int(digits) if digits.isdigit() else 0
