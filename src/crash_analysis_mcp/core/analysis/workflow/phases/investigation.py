"""Investigation phase mixin for CrashAnalysisWorkflow.

Runs the main evidence-gathering loop: the model reads report sections,
runs debugger commands, tracks hypotheses and finally submits
``analysis_complete``. Budget exhaustion and cancellation end the phase
without failing the run; only an empty sampling response or an
unrecoverable transport error does.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.models.state import (
    AnalysisPhase,
    AnalysisRunState,
    FinalizationReason,
)
from crash_analysis_mcp.core.analysis.models.tool_calls import AnalysisCompleteCall
from crash_analysis_mcp.core.analysis.prompts import (
    INVESTIGATION_SYSTEM_PROMPT,
    build_investigation_opening,
)
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.errors.analysis import (
    EmptySamplingResponseError,
    RunCancelledError,
    TransportRejectedError,
)
from crash_analysis_mcp.core.report.index import build_index

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome

logger = logging.getLogger(__name__)

SAMPLING_ERROR_MESSAGE = "AI analysis failed: sampling request error."


class InvestigationPhaseMixin:
    """Investigation phase methods. Mixed into CrashAnalysisWorkflow.

    See ``CrashAnalysisWorkflowProtocol`` in ``_protocols.py`` for the
    full structural contract.
    """

    config: AnalysisConfig

    if TYPE_CHECKING:

        def _write_audit_event(
            self,
            state: Optional[AnalysisRunState],
            event_type: str,
            data: Optional[dict[str, Any]] = ...,
            level: str = ...,
        ) -> None: ...
        async def _run_model_loop(self, state: AnalysisRunState, **kwargs: Any) -> LoopOutcome: ...

    async def _execute_investigation_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Execute the investigation loop.

        Returns:
            WorkflowResult; ``success`` is False only for fatal transport failures.
        """
        budget = BudgetGuard(self.config.get_phase_limits("investigation"), phase="investigation")
        opening = build_investigation_opening(build_index(state.report), state.ledger.render())

        try:
            outcome = await self._run_model_loop(
                state,
                phase=AnalysisPhase.INVESTIGATION,
                system_prompt=INVESTIGATION_SYSTEM_PROMPT,
                opening=opening,
                budget=budget,
                allow_checkpoints=True,
            )
        except RunCancelledError:
            state.finalization_reason = FinalizationReason.CANCELLED
            state.metadata["investigation_budget"] = budget.state.to_dict()
            return WorkflowResult(success=True, content="Investigation cancelled")
        except EmptySamplingResponseError as exc:
            return WorkflowResult(success=False, error=str(exc), model_used=exc.model)
        except TransportRejectedError as exc:
            logger.error("Investigation for analysis %s failed: %s", state.id, exc)
            return WorkflowResult(
                success=False,
                error=SAMPLING_ERROR_MESSAGE,
                metadata={"transport_error": str(exc), "kind": exc.kind},
            )

        state.metadata["investigation_budget"] = budget.state.to_dict()
        if isinstance(outcome.payload, AnalysisCompleteCall):
            state.conclusion = outcome.payload
            state.finalization_reason = FinalizationReason.MODEL
            self._write_audit_event(
                state,
                "analysis_complete",
                data={
                    "confidence": outcome.payload.confidence,
                    "evidence": outcome.payload.evidence,
                    "reasoning": outcome.payload.reasoning,
                },
            )
            logger.info(
                "Analysis %s concluded at iteration %d (confidence=%s)",
                state.id,
                outcome.iterations,
                outcome.payload.confidence,
            )
        else:
            state.metadata["exhausted_limit"] = outcome.exhausted_reason
            if outcome.exhausted_reason == "max_consecutive_no_progress":
                state.finalization_reason = FinalizationReason.NO_PROGRESS
            else:
                state.finalization_reason = FinalizationReason.BUDGET_EXHAUSTED

        return WorkflowResult(
            success=True,
            content=f"Investigation finished: {state.finalization_reason.value}",
            model_used=state.model,
            metadata={"iterations": outcome.iterations},
        )
