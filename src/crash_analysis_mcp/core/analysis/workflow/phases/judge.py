"""Judge phase mixin for CrashAnalysisWorkflow.

Selects one hypothesis as the final answer and rejects the alternatives
with cited contradicting evidence. With fewer than two active hypotheses
there is nothing to adjudicate and the best hypothesis is selected
without a model pass.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.models.hypotheses import JudgeResult
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase, AnalysisRunState
from crash_analysis_mcp.core.analysis.prompts import JUDGE_SYSTEM_PROMPT, build_judge_opening
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.errors.analysis import (
    EmptySamplingResponseError,
    RunCancelledError,
    TransportRejectedError,
)

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome

logger = logging.getLogger(__name__)


class JudgePhaseMixin:
    """Judge phase methods. Mixed into CrashAnalysisWorkflow."""

    config: AnalysisConfig

    if TYPE_CHECKING:

        async def _run_model_loop(self, state: AnalysisRunState, **kwargs: Any) -> LoopOutcome: ...

    def _apply_default_judge(self, state: AnalysisRunState, rationale: str) -> JudgeResult:
        registry = state.hypotheses
        judge = registry.judge if registry.closed else registry.default_judge(rationale)
        state.judge = judge
        return judge

    async def _execute_judge_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Execute the judge pass.

        Never fails the run: transport problems and budget exhaustion fall
        back to the default selection.
        """
        registry = state.hypotheses
        active = registry.active()
        if not self.config.enable_judge or len(active) < 2:
            reason = "judge disabled" if not self.config.enable_judge else f"{len(active)} active hypothesis(es)"
            judge = self._apply_default_judge(
                state,
                "Selected the highest-confidence hypothesis without a judge pass "
                f"({reason}).",
            )
            logger.info("Judge for analysis %s skipped: %s", state.id, reason)
            return WorkflowResult(success=True, content="Default judge selection", metadata={"source": judge.source})

        conclusion_text = None
        if state.conclusion is not None:
            conclusion_text = (
                f"{state.conclusion.root_cause} (confidence: {state.conclusion.confidence})\n"
                f"{state.conclusion.reasoning}"
            ).strip()
        opening = build_judge_opening(registry.render(), state.ledger.render(), conclusion_text)
        budget = BudgetGuard(self.config.get_phase_limits("judge"), phase="judge")

        try:
            outcome = await self._run_model_loop(
                state,
                phase=AnalysisPhase.JUDGE,
                system_prompt=JUDGE_SYSTEM_PROMPT,
                opening=opening,
                budget=budget,
            )
        except RunCancelledError:
            self._apply_default_judge(state, "Run cancelled before the judge pass completed.")
            raise
        except (EmptySamplingResponseError, TransportRejectedError) as exc:
            logger.warning("Judge pass for analysis %s failed: %s", state.id, exc)
            self._apply_default_judge(state, "Judge pass failed; selected the highest-confidence hypothesis.")
            return WorkflowResult(success=False, error=str(exc))

        if isinstance(outcome.payload, JudgeResult):
            state.judge = outcome.payload
            logger.info(
                "Judge for analysis %s selected %s",
                state.id,
                outcome.payload.selected_hypothesis_id,
            )
            return WorkflowResult(success=True, content="Judge decision recorded", metadata={"source": "model"})

        self._apply_default_judge(
            state,
            "Judge pass ended without a decision; selected the highest-confidence hypothesis.",
        )
        return WorkflowResult(success=True, content="Default judge selection", metadata={"source": "default"})
