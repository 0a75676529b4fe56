"""Tool-call payload schemas exposed to the model.

Each tool has one pydantic model carrying a ``tool`` literal discriminator;
``ToolCallPayload`` is the tagged union of all of them. Payloads are
validated with ``parse_tool_call`` before dispatch, so a malformed call
becomes a retryable ``ValidationFailedError`` instead of a crash.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from crash_analysis_mcp.core.analysis.models.hypotheses import normalize_confidence
from crash_analysis_mcp.core.errors.analysis import ValidationFailedError
from crash_analysis_mcp.core.report.section_query import ReportWhere

logger = logging.getLogger(__name__)


class _ToolCallBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _strip_list(values: Any) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        raise ValueError("expected a list of strings")
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


# =========================================================================
# Evidence tools
# =========================================================================


class ReportGetCall(_ToolCallBase):
    """Read a bounded section of the crash report."""

    tool: Literal["report_get"] = "report_get"
    path: str = Field(..., min_length=1, description="Section path, e.g. analysis.threads.all")
    limit: Optional[int] = Field(default=None, ge=1, description="Page size for arrays/objects")
    cursor: Optional[str] = Field(default=None, description="page.nextCursor from a previous call")
    max_chars: Optional[int] = Field(default=None, alias="maxChars", description="Response size ceiling")
    page_kind: Optional[Literal["array", "object"]] = Field(
        default=None,
        alias="pageKind",
        description="Set to 'object' to page object properties",
    )
    select: Optional[list[str]] = Field(default=None, description="Fields to keep per object")
    where: Optional[ReportWhere] = Field(default=None, description="Exact-match filter for arrays")


class ExecCall(_ToolCallBase):
    """Run one debugger command."""

    tool: Literal["exec"] = "exec"
    command: str = Field(..., min_length=1, description="Single-line debugger command")


class InspectCall(_ToolCallBase):
    """Inspect a managed object by address."""

    tool: Literal["inspect"] = "inspect"
    address: str = Field(..., description="Object address, hex (0x...) or decimal")
    max_depth: int = Field(default=3, ge=1, le=5, alias="maxDepth")

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str:
        if isinstance(v, int) and not isinstance(v, bool):
            return hex(v)
        if not isinstance(v, str):
            raise ValueError("address must be a string")
        text = v.strip()
        try:
            value = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError as exc:
            raise ValueError(f"address '{text}' is not a hex or decimal number") from exc
        if value < 0:
            raise ValueError("address must be non-negative")
        return hex(value)


class GetThreadStackCall(_ToolCallBase):
    """Fetch the full call stack of one thread from the report."""

    tool: Literal["get_thread_stack"] = "get_thread_stack"
    thread_id: str = Field(..., alias="threadId", description="threadId, managedThreadId or OS thread id")

    @field_validator("thread_id", mode="before")
    @classmethod
    def _coerce_thread_id(cls, v: Any) -> str:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if not isinstance(v, str) or not v.strip():
            raise ValueError("threadId must be a non-empty string")
        return v.strip()


# =========================================================================
# Meta / orchestration tools
# =========================================================================


class AnalysisCompleteCall(_ToolCallBase):
    """Final conclusion of the investigation."""

    tool: Literal["analysis_complete"] = "analysis_complete"
    root_cause: str = Field(..., min_length=1, alias="rootCause")
    confidence: Literal["high", "medium", "low"] = Field(..., description="high | medium | low")
    reasoning: str = Field(default="", description="How the evidence supports the root cause")
    evidence: list[str] = Field(default_factory=list, description="Evidence IDs (E<n>) supporting the conclusion")
    recommendations: list[str] = Field(default_factory=list)
    additional_findings: list[str] = Field(default_factory=list, alias="additionalFindings")

    @field_validator("confidence", mode="before")
    @classmethod
    def _lower_confidence(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("evidence", "recommendations", "additional_findings", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)


class CheckpointHypothesis(_ToolCallBase):
    id: Optional[str] = None
    statement: str = Field(..., min_length=1, validation_alias=AliasChoices("statement", "hypothesis"))
    confidence: str = "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        return normalize_confidence(v)


class CheckpointCompleteCall(_ToolCallBase):
    """Compacted run state submitted at checkpoint turns."""

    tool: Literal["checkpoint_complete"] = "checkpoint_complete"
    facts: list[str] = Field(default_factory=list, description="Confirmed facts, each citing evidence IDs")
    hypotheses: list[CheckpointHypothesis] = Field(default_factory=list)
    evidence_ids: list[str] = Field(default_factory=list, alias="evidenceIds")
    do_not_repeat: list[str] = Field(default_factory=list, alias="doNotRepeat")
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")

    @field_validator("facts", "evidence_ids", "do_not_repeat", "next_steps", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)

    @model_validator(mode="after")
    def _require_content(self) -> "CheckpointCompleteCall":
        if not (self.facts or self.hypotheses or self.next_steps):
            raise ValueError("checkpoint must include facts, hypotheses, or nextSteps")
        return self


class HypothesisInput(_ToolCallBase):
    hypothesis: str = Field(..., min_length=1, description="Candidate root-cause statement")
    confidence: str = "unknown"
    supports_evidence_ids: list[str] = Field(default_factory=list, alias="supportsEvidenceIds")
    contradicts_evidence_ids: list[str] = Field(default_factory=list, alias="contradictsEvidenceIds")
    unknowns: list[str] = Field(default_factory=list)
    tests_to_run: list[str] = Field(default_factory=list, alias="testsToRun")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        return normalize_confidence(v)

    @field_validator(
        "supports_evidence_ids",
        "contradicts_evidence_ids",
        "unknowns",
        "tests_to_run",
        mode="before",
    )
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)


class HypothesisRegisterCall(_ToolCallBase):
    """Register competing hypotheses."""

    tool: Literal["analysis_hypothesis_register"] = "analysis_hypothesis_register"
    hypotheses: list[HypothesisInput] = Field(..., min_length=1)


class HypothesisUpdate(_ToolCallBase):
    id: str = Field(..., min_length=1, description="Hypothesis ID (H<n>)")
    confidence: Optional[str] = None
    status: Optional[Literal["active", "rejected"]] = None
    supports_evidence_ids: list[str] = Field(default_factory=list, alias="supportsEvidenceIds")
    contradicts_evidence_ids: list[str] = Field(default_factory=list, alias="contradictsEvidenceIds")
    notes: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Optional[str]:
        return None if v is None else normalize_confidence(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("supports_evidence_ids", "contradicts_evidence_ids", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)


class HypothesisScoreCall(_ToolCallBase):
    """Update confidence and evidence links of existing hypotheses."""

    tool: Literal["analysis_hypothesis_score"] = "analysis_hypothesis_score"
    updates: list[HypothesisUpdate] = Field(..., min_length=1)


class EvidenceInput(_ToolCallBase):
    id: Optional[str] = Field(default=None, description="Existing evidence ID to annotate")
    source: Optional[str] = None
    finding: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    why_it_matters: Optional[str] = Field(default=None, alias="whyItMatters")

    @field_validator("tags", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)

    @model_validator(mode="after")
    def _id_or_content(self) -> "EvidenceInput":
        if not self.id and not (self.source and self.finding):
            raise ValueError("each item needs an 'id' to annotate, or 'source' and 'finding'")
        return self


class EvidenceAddCall(_ToolCallBase):
    """Annotate existing evidence, or add free-form evidence when provenance mode is off."""

    tool: Literal["analysis_evidence_add"] = "analysis_evidence_add"
    items: list[EvidenceInput] = Field(..., min_length=1)


class RejectedHypothesisInput(_ToolCallBase):
    hypothesis_id: str = Field(..., alias="hypothesisId")
    reason: str = Field(..., min_length=1)
    contradicts_evidence_ids: list[str] = Field(default_factory=list, alias="contradictsEvidenceIds")

    @field_validator("contradicts_evidence_ids", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)


class JudgeCompleteCall(_ToolCallBase):
    """Judge decision: one selected hypothesis, the rest rejected with cited contradictions."""

    tool: Literal["analysis_judge_complete"] = "analysis_judge_complete"
    selected_hypothesis_id: str = Field(..., alias="selectedHypothesisId")
    confidence: str = "unknown"
    rationale: str = Field(..., min_length=1)
    rejected: list[RejectedHypothesisInput] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        return normalize_confidence(v)


class SummaryRewriteCompleteCall(_ToolCallBase):
    """Rewritten human summary and recommendations."""

    tool: Literal["analysis_summary_rewrite_complete"] = "analysis_summary_rewrite_complete"
    description: str = Field(..., min_length=1)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _strip_list(v)


class ThreadNarrativeCompleteCall(_ToolCallBase):
    """Narrative of process activity across threads."""

    tool: Literal["analysis_thread_narrative_complete"] = "analysis_thread_narrative_complete"
    description: str = Field(..., min_length=1)


# =========================================================================
# Tagged union and registry
# =========================================================================

ToolCallPayload = Annotated[
    Union[
        ReportGetCall,
        ExecCall,
        InspectCall,
        GetThreadStackCall,
        AnalysisCompleteCall,
        CheckpointCompleteCall,
        HypothesisRegisterCall,
        HypothesisScoreCall,
        EvidenceAddCall,
        JudgeCompleteCall,
        SummaryRewriteCompleteCall,
        ThreadNarrativeCompleteCall,
    ],
    Field(discriminator="tool"),
]

TOOL_CALL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ToolCallPayload)

TOOL_CALL_SCHEMAS: dict[str, type[BaseModel]] = {
    "report_get": ReportGetCall,
    "exec": ExecCall,
    "inspect": InspectCall,
    "get_thread_stack": GetThreadStackCall,
    "analysis_complete": AnalysisCompleteCall,
    "checkpoint_complete": CheckpointCompleteCall,
    "analysis_hypothesis_register": HypothesisRegisterCall,
    "analysis_hypothesis_score": HypothesisScoreCall,
    "analysis_evidence_add": EvidenceAddCall,
    "analysis_judge_complete": JudgeCompleteCall,
    "analysis_summary_rewrite_complete": SummaryRewriteCompleteCall,
    "analysis_thread_narrative_complete": ThreadNarrativeCompleteCall,
}

EVIDENCE_TOOLS: frozenset[str] = frozenset({"report_get", "exec", "inspect", "get_thread_stack"})
META_TOOLS: frozenset[str] = frozenset(TOOL_CALL_SCHEMAS) - EVIDENCE_TOOLS

TOOL_DESCRIPTIONS: dict[str, str] = {
    "report_get": (
        "Read a section of the crash report by path (rooted at 'analysis' or 'metadata'). "
        "Arrays are paged: pass page.nextCursor back as cursor. Supports [n] index, [a:b] slice, "
        "select (fields to keep) and where (exact-match filter on arrays)."
    ),
    "exec": "Run a single-line debugger command (LLDB/WinDbg/SOS) and return its output.",
    "inspect": "Inspect a managed object by address (hex 0x... or decimal), up to maxDepth levels.",
    "get_thread_stack": "Get the full call stack of a thread by threadId, managedThreadId or OS thread id.",
    "analysis_complete": (
        "Submit the final root cause. Cite evidence IDs (E<n>) from the evidence ledger; "
        "high confidence requires at least one cited evidence ID."
    ),
    "checkpoint_complete": (
        "Submit a compact checkpoint: confirmed facts, current hypotheses, evidence IDs, "
        "tool calls not to repeat, and prioritized next steps."
    ),
    "analysis_hypothesis_register": "Register competing root-cause hypotheses, linking supporting evidence IDs.",
    "analysis_hypothesis_score": "Update confidence, status, and evidence links of existing hypotheses (H<n>).",
    "analysis_evidence_add": "Annotate existing evidence items (tags, whyItMatters) by evidence ID.",
    "analysis_judge_complete": (
        "Select the best-supported hypothesis and reject every alternative, citing contradicting evidence IDs."
    ),
    "analysis_summary_rewrite_complete": "Submit the rewritten crash summary and recommendations.",
    "analysis_thread_narrative_complete": "Submit a narrative describing what the process threads were doing.",
}


def _format_validation_error(exc: ValidationError) -> tuple[str, list[dict[str, Any]]]:
    details = []
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "tool") or "(payload)"
        parts.append(f"{loc}: {error.get('msg')}")
        details.append({"field": loc, "message": error.get("msg"), "type": error.get("type")})
    return "; ".join(parts), details


def parse_tool_call(name: str, arguments: Any) -> Any:
    """Validate a raw tool call into its typed payload.

    Args:
        name: Tool name requested by the model.
        arguments: Decoded JSON arguments (a dict).

    Returns:
        One of the ``ToolCallPayload`` variants.

    Raises:
        ValidationFailedError: Unknown tool, non-object arguments, or schema violations.
    """
    tool_name = (name or "").strip()
    if tool_name not in TOOL_CALL_SCHEMAS:
        raise ValidationFailedError(
            f"Unknown tool '{tool_name}'. Available tools: {', '.join(sorted(TOOL_CALL_SCHEMAS))}",
            tool_name=tool_name,
        )
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ValidationFailedError(
            f"Arguments for '{tool_name}' must be a JSON object.",
            tool_name=tool_name,
        )

    try:
        return TOOL_CALL_ADAPTER.validate_python({**arguments, "tool": tool_name})
    except ValidationError as exc:
        summary, details = _format_validation_error(exc)
        logger.debug("Tool call %s failed validation: %s", tool_name, summary)
        raise ValidationFailedError(
            f"Invalid arguments for '{tool_name}': {summary}",
            tool_name=tool_name,
            details=details,
        ) from exc


class ToolDefinition(BaseModel):
    """Tool advertised to the model: name, description, JSON Schema input."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    _HIDDEN_PROPERTIES: ClassVar[frozenset[str]] = frozenset({"tool"})

    @classmethod
    def for_tool(cls, name: str) -> "ToolDefinition":
        schema = TOOL_CALL_SCHEMAS[name].model_json_schema(by_alias=True)
        properties = {
            key: value for key, value in schema.get("properties", {}).items() if key not in cls._HIDDEN_PROPERTIES
        }
        input_schema: dict[str, Any] = {"type": "object", "properties": properties}
        required = [key for key in schema.get("required", []) if key not in cls._HIDDEN_PROPERTIES]
        if required:
            input_schema["required"] = required
        if "$defs" in schema:
            input_schema["$defs"] = schema["$defs"]
        return cls(name=name, description=TOOL_DESCRIPTIONS[name], input_schema=input_schema)


def build_tool_definitions(names: list[str]) -> list[ToolDefinition]:
    """Build tool definitions for *names*, in the given order."""
    return [ToolDefinition.for_tool(name) for name in names]
