"""Summary-rewrite phase mixin for CrashAnalysisWorkflow.

Produces the human-facing summary and recommendations. Non-fatal: when
the pass fails or runs out of budget the report's original summary stays
as it was.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.models.results import SummaryRewrite
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase, AnalysisRunState
from crash_analysis_mcp.core.analysis.models.tool_calls import SummaryRewriteCompleteCall
from crash_analysis_mcp.core.analysis.prompts import SUMMARY_SYSTEM_PROMPT, build_summary_opening
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.analysis.workflow.finalize import resolve_conclusion
from crash_analysis_mcp.core.errors.analysis import EmptySamplingResponseError, TransportRejectedError

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome

logger = logging.getLogger(__name__)


class SummaryRewritePhaseMixin:
    """Summary-rewrite phase methods. Mixed into CrashAnalysisWorkflow."""

    config: AnalysisConfig

    if TYPE_CHECKING:

        async def _run_model_loop(self, state: AnalysisRunState, **kwargs: Any) -> LoopOutcome: ...

    async def _execute_summary_rewrite_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Execute the summary-rewrite pass."""
        if not self.config.enable_summary_rewrite:
            return WorkflowResult(success=True, content="Summary rewrite disabled")

        conclusion = resolve_conclusion(state, self.config.max_iterations)
        original = state.report.analysis.get("summary")
        opening = build_summary_opening(
            conclusion.root_cause,
            conclusion.confidence,
            conclusion.reasoning,
            original,
            state.ledger.render(),
        )
        budget = BudgetGuard(self.config.get_phase_limits("summary_rewrite"), phase="summary_rewrite")

        try:
            outcome = await self._run_model_loop(
                state,
                phase=AnalysisPhase.SUMMARY_REWRITE,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                opening=opening,
                budget=budget,
            )
        except (EmptySamplingResponseError, TransportRejectedError) as exc:
            logger.warning("Summary rewrite for analysis %s failed: %s", state.id, exc)
            return WorkflowResult(success=False, error=str(exc))

        if isinstance(outcome.payload, SummaryRewriteCompleteCall):
            state.summary = SummaryRewrite(
                description=outcome.payload.description,
                recommendations=outcome.payload.recommendations,
            )
            return WorkflowResult(success=True, content="Summary rewritten")

        logger.warning("Summary rewrite for analysis %s ended without a result", state.id)
        return WorkflowResult(success=False, error="Summary rewrite did not complete")
