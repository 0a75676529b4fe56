"""Tool dispatcher: routes model tool calls to evidence or meta handlers.

Evidence tools read the report or the debugger and are charged against the
phase budget; their outputs are recorded in the evidence ledger when
provenance mode is on. Meta tools mutate run state (hypotheses, evidence
annotations, checkpoints) or carry a phase's final payload. Every failure a
model can recover from is returned as an error tool result, never raised.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from crash_analysis_mcp.core.analysis._text import truncate_head_tail
from crash_analysis_mcp.core.analysis.backend import DebuggerBackend, ensure_safe_command
from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger, describe_tool_call
from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
from crash_analysis_mcp.core.analysis.models.evidence import EVIDENCE_ID_TOKEN_RE
from crash_analysis_mcp.core.analysis.models.results import ExecutedCommand
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase
from crash_analysis_mcp.core.analysis.models.tool_calls import (
    EVIDENCE_TOOLS,
    AnalysisCompleteCall,
    CheckpointCompleteCall,
    EvidenceAddCall,
    ExecCall,
    GetThreadStackCall,
    HypothesisRegisterCall,
    HypothesisScoreCall,
    InspectCall,
    JudgeCompleteCall,
    ReportGetCall,
    SummaryRewriteCompleteCall,
    ThreadNarrativeCompleteCall,
    parse_tool_call,
)
from crash_analysis_mcp.core.analysis.transport import ToolCall, ToolResult
from crash_analysis_mcp.core.errors.analysis import (
    BackendUnavailableError,
    BudgetExceededError,
    ValidationFailedError,
)
from crash_analysis_mcp.core.report.document import DocumentLike, as_root
from crash_analysis_mcp.core.report.section_query import (
    DEFAULT_QUERY_LIMITS,
    QueryLimits,
    get_section,
    serialize_section_response,
)

logger = logging.getLogger(__name__)

DEFAULT_TOOL_OUTPUT_MAX_CHARS = 50_000

_INVESTIGATION_META = (
    "analysis_complete",
    "checkpoint_complete",
    "analysis_hypothesis_register",
    "analysis_hypothesis_score",
    "analysis_evidence_add",
)

PHASE_TOOLS: dict[AnalysisPhase, tuple[str, ...]] = {
    AnalysisPhase.INVESTIGATION: ("report_get", "exec", "inspect", "get_thread_stack", *_INVESTIGATION_META),
    AnalysisPhase.JUDGE: ("report_get", "exec", "inspect", "get_thread_stack", "analysis_judge_complete"),
    AnalysisPhase.SUMMARY_REWRITE: ("report_get", "get_thread_stack", "analysis_summary_rewrite_complete"),
    AnalysisPhase.THREAD_NARRATIVE: ("report_get", "get_thread_stack", "analysis_thread_narrative_complete"),
}

CHECKPOINT_TOOLS: tuple[str, ...] = ("checkpoint_complete",)

#: Meta tools whose accepted payload ends the current phase.
COMPLETION_TOOLS: frozenset[str] = frozenset(
    {
        "analysis_complete",
        "analysis_judge_complete",
        "analysis_summary_rewrite_complete",
        "analysis_thread_narrative_complete",
    }
)


def truncate_tool_output(text: str, max_chars: int = DEFAULT_TOOL_OUTPUT_MAX_CHARS) -> str:
    """Bound tool output, keeping head and tail around a truncation marker."""
    return truncate_head_tail(text or "", max_chars)


@dataclass
class DispatchOutcome:
    """Result of dispatching one tool call.

    Attributes:
        tool_call_id: ID of the originating call.
        tool_name: Tool requested by the model.
        content: Text returned to the model.
        is_error: True for retryable failures.
        duplicate: Evidence call repeating an earlier ``(tool, arguments)``.
        progress: The call produced new evidence or changed run state.
        evidence_id: Ledger entry recorded for (or matching) this call.
        payload: Accepted completion or checkpoint payload.
        budget_exceeded: The call was refused by the budget guard.
    """

    tool_call_id: str
    tool_name: str
    content: str
    is_error: bool = False
    duplicate: bool = False
    progress: bool = False
    evidence_id: Optional[str] = None
    payload: Any = None
    budget_exceeded: bool = False

    @property
    def completed(self) -> bool:
        return self.payload is not None and self.tool_name in COMPLETION_TOOLS

    def to_result(self) -> ToolResult:
        return ToolResult(tool_call_id=self.tool_call_id, content=self.content, is_error=self.is_error)


@dataclass
class ToolDispatcher:
    """Dispatches tool calls for one run.

    Attributes:
        report: Report snapshot served by ``report_get`` and ``get_thread_stack``.
        ledger: Evidence ledger of the run.
        registry: Hypothesis registry of the run.
        checkpoints: Checkpoint manager of the run.
        backend: Debugger backend for ``exec`` and ``inspect``.
        query_limits: Section query bounds.
        tool_output_max_chars: Bound for tool output returned to the model.
        commands_executed: Log of evidence tool calls.
    """

    report: DocumentLike
    ledger: EvidenceLedger
    registry: HypothesisRegistry
    checkpoints: CheckpointManager
    backend: DebuggerBackend
    query_limits: QueryLimits = DEFAULT_QUERY_LIMITS
    tool_output_max_chars: int = DEFAULT_TOOL_OUTPUT_MAX_CHARS
    commands_executed: list[ExecutedCommand] = field(default_factory=list)
    _signatures: dict[str, str] = field(default_factory=dict, init=False, repr=False)

    @property
    def signatures(self) -> list[str]:
        """Human-readable signatures of evidence calls made so far, oldest first."""
        return list(self._signatures.values())

    async def dispatch(
        self,
        call: ToolCall,
        *,
        phase: AnalysisPhase,
        allowed_tools: Iterable[str],
        budget: BudgetGuard,
        iteration: int,
    ) -> DispatchOutcome:
        """Validate and run one tool call.

        Args:
            call: Tool call requested by the model.
            phase: Current pipeline phase.
            allowed_tools: Tools advertised for this turn.
            budget: Budget guard charged for evidence tools.
            iteration: Current iteration number.
        """
        allowed = tuple(allowed_tools)
        if call.name not in allowed:
            return self._error(
                call,
                f"Tool '{call.name}' is not available in the {phase.value} phase. "
                f"Available tools: {', '.join(allowed)}",
            )

        try:
            payload = parse_tool_call(call.name, call.arguments)
        except ValidationFailedError as exc:
            logger.warning("Rejected %s call: %s", call.name, exc)
            return self._error(call, str(exc))

        if call.name in EVIDENCE_TOOLS:
            return await self._dispatch_evidence(call, payload, budget, iteration)

        try:
            return self._dispatch_meta(call, payload, iteration)
        except ValidationFailedError as exc:
            logger.warning("Rejected %s call: %s", call.name, exc)
            return self._error(call, str(exc))

    # ------------------------------------------------------------------
    # Evidence tools
    # ------------------------------------------------------------------

    async def _dispatch_evidence(
        self,
        call: ToolCall,
        payload: Any,
        budget: BudgetGuard,
        iteration: int,
    ) -> DispatchOutcome:
        if isinstance(payload, ExecCall):
            try:
                ensure_safe_command(payload.command)
            except ValidationFailedError as exc:
                logger.warning("Blocked exec command %r", payload.command)
                return self._error(call, str(exc))

        try:
            budget.charge_tool_call()
        except BudgetExceededError as exc:
            outcome = self._error(call, f"{exc}. Use the evidence already gathered.")
            outcome.budget_exceeded = True
            return outcome

        arguments = payload.model_dump(by_alias=True, exclude_none=True, exclude={"tool"}, mode="json")
        signature = describe_tool_call(call.name, arguments)
        started = time.perf_counter()
        try:
            output, failed = await self._run_evidence_tool(payload)
        except (BackendUnavailableError, ValidationFailedError) as exc:
            return self._error(call, str(exc))
        except Exception as exc:
            logger.warning("Tool %s failed: %s", call.name, exc, exc_info=True)
            return self._error(call, f"Tool execution failed: {exc}")
        duration_ms = (time.perf_counter() - started) * 1000

        output = truncate_tool_output(output, self.tool_output_max_chars)
        self.commands_executed.append(
            ExecutedCommand(
                tool=call.name,
                input=arguments,
                output=output,
                iteration=iteration,
                duration_ms=round(duration_ms, 2),
            )
        )

        if failed:
            return self._error(call, output)

        previous = signature in self._signatures
        self._signatures.setdefault(signature, signature)

        if not self.ledger.provenance_mode:
            logger.debug("Dispatched %s (duplicate=%s)", signature, previous)
            return DispatchOutcome(
                tool_call_id=call.id,
                tool_name=call.name,
                content=output,
                duplicate=previous,
                progress=not previous,
            )

        item, duplicate = self.ledger.add_auto_evidence(
            call.name,
            arguments,
            output,
            source=signature,
            iteration=iteration,
        )
        duplicate = duplicate or previous
        if item is None:
            header = "[not recorded: evidence ledger is full]"
        elif duplicate:
            header = f"[{item.id}] (repeat of an earlier call; no new evidence)"
        else:
            header = f"[{item.id}]"
        logger.debug("Dispatched %s -> %s", signature, header)
        return DispatchOutcome(
            tool_call_id=call.id,
            tool_name=call.name,
            content=f"{header}\n{output}",
            duplicate=duplicate,
            progress=not duplicate,
            evidence_id=item.id if item is not None else None,
        )

    async def _run_evidence_tool(self, payload: Any) -> tuple[str, bool]:
        """Run an evidence tool; returns ``(output, failed)``."""
        if isinstance(payload, ReportGetCall):
            response = get_section(
                self.report,
                payload.path,
                limit=payload.limit,
                cursor=payload.cursor,
                max_chars=payload.max_chars,
                page_kind=payload.page_kind,
                select=payload.select,
                where=payload.where,
                limits=self.query_limits,
            )
            return serialize_section_response(response), "error" in response

        if isinstance(payload, ExecCall):
            async with self.backend.session() as backend:
                output = await backend.execute_command(ensure_safe_command(payload.command))
            return output or "", False

        if isinstance(payload, InspectCall):
            async with self.backend.session() as backend:
                inspected = await backend.inspect_object(int(payload.address, 16), payload.max_depth)
            if inspected is None:
                return json.dumps({"error": "Failed to inspect object.", "address": payload.address}), True
            return json.dumps(inspected, indent=2, ensure_ascii=False, default=str), False

        if isinstance(payload, GetThreadStackCall):
            thread = find_thread(self.report, payload.thread_id)
            if thread is None:
                return json.dumps({"error": "Thread not found in report.", "threadId": payload.thread_id}), True
            return json.dumps(thread, indent=2, ensure_ascii=False, default=str), False

        raise ValidationFailedError(f"Unsupported evidence tool payload: {type(payload).__name__}")

    # ------------------------------------------------------------------
    # Meta tools
    # ------------------------------------------------------------------

    def _dispatch_meta(self, call: ToolCall, payload: Any, iteration: int) -> DispatchOutcome:
        if isinstance(payload, AnalysisCompleteCall):
            self._validate_completion(payload)
            return self._accepted(call, payload, "Analysis conclusion accepted.")

        if isinstance(payload, CheckpointCompleteCall):
            checkpoint = self.checkpoints.accept(payload, iteration, self.ledger)
            return self._accepted(call, checkpoint, f"Checkpoint accepted (iteration {iteration}).")

        if isinstance(payload, HypothesisRegisterCall):
            result = self.registry.register(payload.hypotheses)
            return self._state_change(call, result.changed, result.to_dict())

        if isinstance(payload, HypothesisScoreCall):
            result = self.registry.score(payload.updates)
            return self._state_change(call, result.changed, result.to_dict())

        if isinstance(payload, EvidenceAddCall):
            result = self.ledger.apply_items(payload.items, iteration=iteration)
            return self._state_change(call, result.changed, result.to_dict())

        if isinstance(payload, JudgeCompleteCall):
            judge = self.registry.judge_select(
                payload.selected_hypothesis_id,
                payload.confidence,
                payload.rationale,
                payload.rejected,
            )
            return self._accepted(call, judge, f"Judge decision recorded: {judge.selected_hypothesis_id}.")

        if isinstance(payload, (SummaryRewriteCompleteCall, ThreadNarrativeCompleteCall)):
            return self._accepted(call, payload, "Result accepted.")

        raise ValidationFailedError(f"Unsupported tool '{call.name}'.", tool_name=call.name)

    def _validate_completion(self, payload: AnalysisCompleteCall) -> None:
        cited = [f"E{int(m.group(1))}" for entry in payload.evidence for m in EVIDENCE_ID_TOKEN_RE.finditer(entry)]
        known, unknown = self.ledger.partition_known(cited)
        if unknown:
            raise ValidationFailedError(
                "analysis_complete cites unknown evidence IDs: " + ", ".join(dict.fromkeys(unknown)),
                tool_name="analysis_complete",
            )
        if payload.confidence == "high" and not known:
            raise ValidationFailedError(
                "High confidence requires citing at least one known evidence ID (E<n>) in 'evidence'.",
                tool_name="analysis_complete",
            )

    @staticmethod
    def _accepted(call: ToolCall, payload: Any, message: str) -> DispatchOutcome:
        return DispatchOutcome(
            tool_call_id=call.id,
            tool_name=call.name,
            content=message,
            progress=True,
            payload=payload,
        )

    @staticmethod
    def _state_change(call: ToolCall, changed: bool, summary: Mapping[str, Any]) -> DispatchOutcome:
        return DispatchOutcome(
            tool_call_id=call.id,
            tool_name=call.name,
            content=json.dumps(summary, ensure_ascii=False),
            progress=changed,
        )

    @staticmethod
    def _error(call: ToolCall, message: str) -> DispatchOutcome:
        return DispatchOutcome(tool_call_id=call.id, tool_name=call.name, content=message, is_error=True)


def _normalize_hex(value: str) -> str:
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return text.lstrip("0") or "0"


def find_thread(report: DocumentLike, thread_id: str) -> Optional[Mapping[str, Any]]:
    """Find a thread in ``analysis.threads`` by any of its identifiers.

    Matches ``threadId`` (case-insensitive), ``managedThreadId``, ``osThreadId``
    (hex-normalized) or ``osThreadIdDecimal``. The faulting thread is searched first.
    """
    analysis = as_root(report).get("analysis")
    threads = analysis.get("threads") if isinstance(analysis, Mapping) else None
    if not isinstance(threads, Mapping):
        return None

    candidates: list[Mapping[str, Any]] = []
    faulting = threads.get("faultingThread")
    if isinstance(faulting, Mapping):
        candidates.append(faulting)
    all_threads = threads.get("all")
    if isinstance(all_threads, list):
        candidates.extend(t for t in all_threads if isinstance(t, Mapping))

    needle = thread_id.strip()
    needle_int: Optional[int]
    try:
        needle_int = int(needle)
    except ValueError:
        needle_int = None

    for thread in candidates:
        if str(thread.get("threadId", "")).strip().lower() == needle.lower() and needle:
            return thread
        managed = thread.get("managedThreadId")
        if needle_int is not None and isinstance(managed, int) and managed == needle_int:
            return thread
        os_id = thread.get("osThreadId")
        if isinstance(os_id, str) and os_id.strip() and _normalize_hex(os_id) == _normalize_hex(needle):
            return thread
        os_decimal = thread.get("osThreadIdDecimal")
        if os_decimal is not None and str(os_decimal).strip().lower() == needle.lower():
            return thread
    return None
