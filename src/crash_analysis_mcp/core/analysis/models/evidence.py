"""Evidence ledger item model."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EVIDENCE_ID_RE = re.compile(r"^E(\d+)$", re.IGNORECASE)
EVIDENCE_ID_TOKEN_RE = re.compile(r"\bE(\d+)\b", re.IGNORECASE)


def normalize_evidence_id(value: object) -> Optional[str]:
    """Normalize ``e12`` / ``E12`` to ``E12``; return None for non-IDs."""
    if not isinstance(value, str):
        return None
    match = EVIDENCE_ID_RE.match(value.strip())
    if match is None:
        return None
    return f"E{int(match.group(1))}"


class EvidenceItem(BaseModel):
    """A cited fact with a stable, immutable ID.

    Only ``tags`` and ``why_it_matters`` may change after creation.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Stable evidence ID (E<n>)")
    source: str = Field(..., description="Where the fact came from (tool call or report path)")
    excerpt: str = Field(..., description="Bounded excerpt of the tool output or finding")
    tags: list[str] = Field(default_factory=list, description="Free-form classification tags")
    why_it_matters: Optional[str] = Field(default=None, alias="whyItMatters")
    provenance_hash: Optional[str] = Field(
        default=None,
        alias="provenanceHash",
        description="Digest of (tool, arguments) for auto-recorded items",
    )
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    iteration: Optional[int] = Field(default=None, description="Iteration that produced the item")
