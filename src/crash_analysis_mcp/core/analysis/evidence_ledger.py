"""Evidence ledger: append-only store of cited findings with stable IDs.

Evidence IDs (``E1``, ``E2``, ...) are allocated from a monotonic counter and
never reused. After creation only annotation fields (tags, whyItMatters) may
change. In provenance mode (the default) new entries are created only from
real tool outputs via ``add_auto_evidence``; the model can annotate but never
invent evidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from crash_analysis_mcp.core.analysis._text import (
    bounded_list,
    canonical_json,
    canonical_digest,
    normalize_key,
    truncate,
)
from crash_analysis_mcp.core.analysis.models.evidence import EvidenceItem, normalize_evidence_id
from crash_analysis_mcp.core.errors.analysis import EvidenceNotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)

MAX_SOURCE_CHARS = 512
MAX_WHY_CHARS = 2048
MAX_TAG_CHARS = 64
MAX_TAGS = 16


def compute_provenance_hash(tool_name: str, arguments: Optional[dict[str, Any]]) -> str:
    """Digest of ``(tool, arguments)`` identifying repeated tool calls."""
    return canonical_digest({"tool": tool_name, "arguments": arguments or {}})


@dataclass
class EvidenceAddResult:
    """Outcome of a batch evidence add/annotate call."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    invalid: int = 0
    ignored_at_capacity: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "notFound": self.not_found,
            "invalid": self.invalid,
            "ignoredAtCapacity": self.ignored_at_capacity,
        }


class EvidenceLedger:
    """Append-only evidence store for a single analysis run.

    Args:
        max_items: Capacity (clamped to 1..500).
        excerpt_max_chars: Bound for stored excerpts.
        provenance_mode: When True, free-form evidence creation is refused.
    """

    def __init__(
        self,
        *,
        max_items: int = 100,
        excerpt_max_chars: int = 2048,
        provenance_mode: bool = True,
    ) -> None:
        self.max_items = max(1, min(500, max_items))
        self.excerpt_max_chars = max(64, excerpt_max_chars)
        self.provenance_mode = provenance_mode
        self._items: dict[str, EvidenceItem] = {}
        self._next_number = 1
        self._by_provenance: dict[str, str] = {}
        self._by_content: dict[str, str] = {}
        self.ignored_at_capacity = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, evidence_id: object) -> bool:
        normalized = normalize_evidence_id(evidence_id)
        return normalized is not None and normalized in self._items

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.max_items

    def get(self, evidence_id: str) -> EvidenceItem:
        normalized = normalize_evidence_id(evidence_id)
        if normalized is None or normalized not in self._items:
            raise EvidenceNotFoundError(str(evidence_id))
        return self._items[normalized]

    def ids(self) -> list[str]:
        return list(self._items)

    def items(self) -> list[EvidenceItem]:
        return list(self._items.values())

    def find_by_provenance(self, provenance_hash: str) -> Optional[EvidenceItem]:
        evidence_id = self._by_provenance.get(provenance_hash)
        return self._items.get(evidence_id) if evidence_id else None

    def partition_known(self, evidence_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split IDs into ``(known normalized IDs, unknown raw IDs)`` preserving order."""
        known: list[str] = []
        unknown: list[str] = []
        for raw in evidence_ids:
            normalized = normalize_evidence_id(raw)
            if normalized is not None and normalized in self._items:
                if normalized not in known:
                    known.append(normalized)
            else:
                unknown.append(str(raw))
        return known, unknown

    def snapshot(self) -> list[EvidenceItem]:
        """Deep copies of all items, in ID order."""
        return [item.model_copy(deep=True) for item in self._items.values()]

    def render(self, max_items: Optional[int] = None, excerpt_chars: int = 300) -> str:
        """Render the ledger as compact prompt text."""
        items = self.items()
        if max_items is not None:
            items = items[-max_items:]
        if not items:
            return "(evidence ledger is empty)"
        lines = []
        for item in items:
            tags = f" [{', '.join(item.tags)}]" if item.tags else ""
            lines.append(f"{item.id} ({item.source}){tags}: {truncate(item.excerpt, excerpt_chars)}")
            if item.why_it_matters:
                lines.append(f"    why: {truncate(item.why_it_matters, excerpt_chars)}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _allocate_id(self) -> str:
        evidence_id = f"E{self._next_number}"
        self._next_number += 1
        return evidence_id

    def _store(self, item: EvidenceItem) -> EvidenceItem:
        self._items[item.id] = item
        self._by_content.setdefault(normalize_key(item.source + "\n" + item.excerpt), item.id)
        if item.provenance_hash:
            self._by_provenance[item.provenance_hash] = item.id
        return item

    def add_auto_evidence(
        self,
        tool_name: str,
        arguments: Optional[dict[str, Any]],
        output_excerpt: str,
        *,
        source: Optional[str] = None,
        iteration: Optional[int] = None,
    ) -> tuple[Optional[EvidenceItem], bool]:
        """Record a tool output as evidence.

        Args:
            tool_name: Evidence tool that produced the output.
            arguments: Tool arguments (part of the provenance hash).
            output_excerpt: Tool output; stored truncated.
            source: Human-readable origin; defaults to ``tool(args)``.
            iteration: Iteration that produced the output.

        Returns:
            ``(item, is_duplicate)``. A repeated ``(tool, arguments)`` returns
            the existing item with ``is_duplicate=True``. When the ledger is
            full, returns ``(None, False)``.
        """
        provenance_hash = compute_provenance_hash(tool_name, arguments)
        existing = self.find_by_provenance(provenance_hash)
        if existing is not None:
            logger.debug("Duplicate %s call maps to %s", tool_name, existing.id)
            return existing, True

        if self.is_full:
            self.ignored_at_capacity += 1
            logger.warning(
                "Evidence ledger full (%d items); not recording %s output",
                self.max_items,
                tool_name,
            )
            return None, False

        item = EvidenceItem(
            id=self._allocate_id(),
            source=truncate(source or describe_tool_call(tool_name, arguments), MAX_SOURCE_CHARS),
            excerpt=truncate(output_excerpt or "", self.excerpt_max_chars),
            provenance_hash=provenance_hash,
            tool_name=tool_name,
            iteration=iteration,
        )
        logger.debug("Recorded %s from %s", item.id, tool_name)
        return self._store(item), False

    def annotate(
        self,
        evidence_id: str,
        tags: Optional[Iterable[str]] = None,
        why_it_matters: Optional[str] = None,
    ) -> EvidenceItem:
        """Update annotation fields of an existing item.

        Never creates entries.

        Raises:
            EvidenceNotFoundError: If *evidence_id* is unknown.
        """
        item = self.get(evidence_id)
        if tags:
            merged = list(item.tags)
            seen = {tag.lower() for tag in merged}
            for tag in bounded_list(tags, MAX_TAGS, MAX_TAG_CHARS):
                if tag.lower() not in seen and len(merged) < MAX_TAGS:
                    merged.append(tag)
                    seen.add(tag.lower())
            item.tags = merged
        if why_it_matters and why_it_matters.strip():
            item.why_it_matters = truncate(why_it_matters.strip(), MAX_WHY_CHARS)
        return item

    def add_free_form(
        self,
        source: str,
        finding: str,
        tags: Optional[Iterable[str]] = None,
        why_it_matters: Optional[str] = None,
        *,
        iteration: Optional[int] = None,
    ) -> tuple[Optional[EvidenceItem], bool]:
        """Add model-asserted evidence (provenance mode off only).

        Returns:
            ``(item, is_duplicate)``; ``(None, False)`` when full.

        Raises:
            ValidationFailedError: If provenance mode is on.
        """
        if self.provenance_mode:
            raise ValidationFailedError(
                "Free-form evidence is disabled in provenance mode; annotate existing evidence IDs instead.",
                tool_name="analysis_evidence_add",
            )

        source_text = truncate(source.strip(), MAX_SOURCE_CHARS)
        finding_text = truncate(finding.strip(), self.excerpt_max_chars)
        key = normalize_key(source_text + "\n" + finding_text)
        existing_id = self._by_content.get(key)
        if existing_id is not None:
            self.annotate(existing_id, tags=tags, why_it_matters=why_it_matters)
            return self._items[existing_id], True

        if self.is_full:
            self.ignored_at_capacity += 1
            return None, False

        item = EvidenceItem(
            id=self._allocate_id(),
            source=source_text,
            excerpt=finding_text,
            iteration=iteration,
        )
        self._store(item)
        if tags or why_it_matters:
            self.annotate(item.id, tags=tags, why_it_matters=why_it_matters)
        return item, False

    def apply_items(self, items: Iterable[Any], *, iteration: Optional[int] = None) -> EvidenceAddResult:
        """Apply ``analysis_evidence_add`` items.

        Items with an ``id`` annotate; items without one create free-form
        evidence when provenance mode is off and count as invalid otherwise.
        """
        result = EvidenceAddResult()
        for entry in items:
            if entry.id:
                try:
                    item = self.annotate(entry.id, tags=entry.tags, why_it_matters=entry.why_it_matters)
                except EvidenceNotFoundError:
                    result.not_found.append(entry.id)
                    continue
                result.updated.append(item.id)
                continue

            if self.provenance_mode or not (entry.source and entry.finding):
                result.invalid += 1
                continue

            before = self.ignored_at_capacity
            item, duplicate = self.add_free_form(
                entry.source,
                entry.finding,
                tags=entry.tags,
                why_it_matters=entry.why_it_matters,
                iteration=iteration,
            )
            if item is None:
                result.ignored_at_capacity += self.ignored_at_capacity - before
            elif duplicate:
                result.duplicates.append(item.id)
            else:
                result.added.append(item.id)
        return result


def describe_tool_call(tool_name: str, arguments: Optional[dict[str, Any]]) -> str:
    """Compact ``tool(key=value, ...)`` signature used as source and do-not-repeat text."""
    if not arguments:
        return f"{tool_name}()"
    parts = []
    for key, value in arguments.items():
        if value is None:
            continue
        text = value if isinstance(value, str) else canonical_json(value)
        parts.append(f"{key}={text}")
    return f"{tool_name}({', '.join(parts)})"
