"""Thread-narrative phase mixin for CrashAnalysisWorkflow.

Describes what the process threads were doing at crash time. Non-fatal:
on failure the narrative is simply omitted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.models.results import ThreadNarrative
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase, AnalysisRunState
from crash_analysis_mcp.core.analysis.models.tool_calls import ThreadNarrativeCompleteCall
from crash_analysis_mcp.core.analysis.prompts import (
    THREAD_NARRATIVE_SYSTEM_PROMPT,
    build_thread_narrative_opening,
)
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.analysis.workflow.finalize import resolve_conclusion
from crash_analysis_mcp.core.errors.analysis import EmptySamplingResponseError, TransportRejectedError

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome

logger = logging.getLogger(__name__)

MAX_FAULTING_FRAMES = 60


def thread_overview(analysis: Mapping[str, Any]) -> dict[str, Any]:
    """Compact thread view: summary, faulting thread (bounded frames), and thread headers."""
    threads = analysis.get("threads")
    if not isinstance(threads, Mapping):
        return {}

    overview: dict[str, Any] = {}
    if "summary" in threads:
        overview["summary"] = threads["summary"]

    faulting = threads.get("faultingThread")
    if isinstance(faulting, Mapping):
        entry = dict(faulting)
        frames = entry.get("callStack")
        if isinstance(frames, list) and len(frames) > MAX_FAULTING_FRAMES:
            entry["callStack"] = frames[:MAX_FAULTING_FRAMES]
            entry["callStackTruncated"] = len(frames)
        overview["faultingThread"] = entry

    all_threads = threads.get("all")
    if isinstance(all_threads, list):
        headers = []
        for thread in all_threads:
            if not isinstance(thread, Mapping):
                continue
            header = {k: v for k, v in thread.items() if k != "callStack"}
            frames = thread.get("callStack")
            if isinstance(frames, list):
                header["frameCount"] = len(frames)
            headers.append(header)
        overview["all"] = headers
    return overview


class ThreadNarrativePhaseMixin:
    """Thread-narrative phase methods. Mixed into CrashAnalysisWorkflow."""

    config: AnalysisConfig

    if TYPE_CHECKING:

        async def _run_model_loop(self, state: AnalysisRunState, **kwargs: Any) -> LoopOutcome: ...

    async def _execute_thread_narrative_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Execute the thread-narrative pass."""
        if not self.config.enable_thread_narrative:
            return WorkflowResult(success=True, content="Thread narrative disabled")

        overview = thread_overview(state.report.analysis)
        if not overview:
            logger.info("Analysis %s has no thread data; skipping narrative", state.id)
            return WorkflowResult(success=True, content="No thread data")

        conclusion = resolve_conclusion(state, self.config.max_iterations)
        opening = build_thread_narrative_opening(overview, conclusion.root_cause)
        budget = BudgetGuard(self.config.get_phase_limits("thread_narrative"), phase="thread_narrative")

        try:
            outcome = await self._run_model_loop(
                state,
                phase=AnalysisPhase.THREAD_NARRATIVE,
                system_prompt=THREAD_NARRATIVE_SYSTEM_PROMPT,
                opening=opening,
                budget=budget,
            )
        except (EmptySamplingResponseError, TransportRejectedError) as exc:
            logger.warning("Thread narrative for analysis %s failed: %s", state.id, exc)
            return WorkflowResult(success=False, error=str(exc))

        if isinstance(outcome.payload, ThreadNarrativeCompleteCall):
            state.thread_narrative = ThreadNarrative(description=outcome.payload.description)
            return WorkflowResult(success=True, content="Thread narrative written")

        logger.warning("Thread narrative for analysis %s ended without a result", state.id)
        return WorkflowResult(success=False, error="Thread narrative did not complete")
