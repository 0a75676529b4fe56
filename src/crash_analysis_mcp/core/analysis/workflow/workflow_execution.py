"""Async workflow execution engine for crash analysis.

Sequences the phases Baseline -> Investigation -> Judge -> SummaryRewrite
-> ThreadNarrative -> Done with cancellation support. Transitions are
strictly forward; a failure in a later pass never invalidates an earlier
result. Only Baseline and Investigation failures are fatal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from crash_analysis_mcp.core.analysis.models.state import (
    AnalysisPhase,
    AnalysisRunState,
    FinalizationReason,
)
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.analysis.workflow.finalize import build_analysis_result
from crash_analysis_mcp.core.errors.analysis import RunCancelledError

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.models.hypotheses import JudgeResult
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import RunResources

logger = logging.getLogger(__name__)

# Phases whose failure leaves the run usable.
NON_FATAL_PHASES = frozenset(
    {
        AnalysisPhase.JUDGE,
        AnalysisPhase.SUMMARY_REWRITE,
        AnalysisPhase.THREAD_NARRATIVE,
    }
)


class WorkflowExecutionMixin:
    """Mixin providing async workflow execution for crash analysis.

    Requires the composing class to provide:
    - self.config: AnalysisConfig
    - self.cancel_event: optional asyncio.Event set by the caller to cancel
    - self._resources(): per-run dispatcher, transport and deadline
    - self._write_audit_event(): from AuditMixin
    - Phase execution methods: baseline, investigation, judge, summary_rewrite, thread_narrative
    """

    config: AnalysisConfig
    cancel_event: Optional[asyncio.Event]

    # Stubs for Pyright; canonical signatures live in phases/_protocols.py
    if TYPE_CHECKING:

        def _resources(self, state: AnalysisRunState) -> RunResources: ...
        def _write_audit_event(
            self,
            state: Optional[AnalysisRunState],
            event_type: str,
            data: Optional[dict[str, Any]] = ...,
            level: str = ...,
        ) -> None: ...
        def _apply_default_judge(self, state: AnalysisRunState, rationale: str) -> JudgeResult: ...
        async def _execute_baseline_async(self, state: AnalysisRunState) -> WorkflowResult: ...
        async def _execute_investigation_async(self, state: AnalysisRunState) -> WorkflowResult: ...
        async def _execute_judge_async(self, state: AnalysisRunState) -> WorkflowResult: ...
        async def _execute_summary_rewrite_async(self, state: AnalysisRunState) -> WorkflowResult: ...
        async def _execute_thread_narrative_async(self, state: AnalysisRunState) -> WorkflowResult: ...

    def _check_cancellation(self, state: AnalysisRunState) -> None:
        """Check whether the run was cancelled or ran past its deadline.

        Raises:
            RunCancelledError: If cancellation is detected
        """
        if not state.is_cancelled:
            if self.cancel_event is not None and self.cancel_event.is_set():
                state.mark_cancelled("cancelled")
            else:
                remaining = self._resources(state).remaining()
                if remaining is not None and remaining <= 0:
                    state.mark_cancelled("timeout")

        if state.is_cancelled:
            logger.info(
                "Cancellation detected for analysis %s at phase %s, iteration %d",
                state.id,
                state.phase.value,
                state.iteration,
            )
            raise RunCancelledError(state.cancelled_reason or "cancelled")

    async def _run_phase(
        self,
        state: AnalysisRunState,
        phase: AnalysisPhase,
        executor: Any,
    ) -> WorkflowResult | None:
        """Execute common phase lifecycle: cancel -> audit -> execute -> error -> audit -> transition.

        Args:
            state: Current run state.
            phase: The phase being executed.
            executor: An *unawaited* coroutine returned by ``_execute_<phase>_async(...)``.

        Returns:
            ``WorkflowResult`` on fatal phase failure (caller should ``return`` it),
            ``None`` otherwise (caller continues to the next phase).
        """
        try:
            self._check_cancellation(state)
        except RunCancelledError:
            # Close the unawaited executor coroutine to prevent
            # "coroutine was never awaited" RuntimeWarning.
            if asyncio.iscoroutine(executor):
                executor.close()
            raise
        phase_started = time.perf_counter()
        logger.info("Analysis %s entering phase %s", state.id, phase.value)
        self._write_audit_event(state, "phase_start", data={"phase": phase.value})

        result = await executor

        if not result.success:
            fatal = phase not in NON_FATAL_PHASES
            self._write_audit_event(
                state,
                "phase_error",
                data={"phase": phase.value, "error": result.error, "fatal": fatal},
                level="error" if fatal else "warning",
            )
            if fatal:
                state.mark_failed(result.error or f"Phase {phase.value} failed")
                return result
            logger.warning("Phase %s of analysis %s failed (non-fatal): %s", phase.value, state.id, result.error)

        self._write_audit_event(
            state,
            "phase_complete",
            data={
                "phase": phase.value,
                "success": result.success,
                "duration_ms": (time.perf_counter() - phase_started) * 1000,
            },
        )
        state.advance_phase()
        return None

    async def _execute_workflow_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Execute the full pipeline for *state* and build the final result."""
        start_time = time.perf_counter()
        phases = (
            (AnalysisPhase.BASELINE, self._execute_baseline_async),
            (AnalysisPhase.INVESTIGATION, self._execute_investigation_async),
            (AnalysisPhase.JUDGE, self._execute_judge_async),
            (AnalysisPhase.SUMMARY_REWRITE, self._execute_summary_rewrite_async),
            (AnalysisPhase.THREAD_NARRATIVE, self._execute_thread_narrative_async),
        )

        try:
            for phase, execute in phases:
                if state.phase != phase:
                    continue
                err = await self._run_phase(state, phase, execute(state))
                if err:
                    return WorkflowResult(
                        success=False,
                        content="",
                        provider_id=self._resources(state).transport.provider_id,
                        model_used=err.model_used or state.model,
                        duration_ms=(time.perf_counter() - start_time) * 1000,
                        metadata={"run_id": state.id, "failed_phase": phase.value, **err.metadata},
                        error=err.error,
                    )
        except RunCancelledError as exc:
            state.mark_cancelled(exc.reason)
            if state.conclusion is None:
                state.finalization_reason = FinalizationReason.CANCELLED
            if not state.hypotheses.closed:
                self._apply_default_judge(state, "Run cancelled before the judge pass completed.")
            logger.warning("Analysis %s cancelled (%s); finalizing with current state", state.id, exc.reason)

        state.phase = AnalysisPhase.DONE
        result = build_analysis_result(state, self.config.max_iterations)
        duration_ms = (time.perf_counter() - start_time) * 1000
        self._write_audit_event(
            state,
            "analysis_complete",
            data={
                "finalization_reason": result.finalization_reason,
                "confidence": result.confidence,
                "iterations": result.iterations,
                "evidence_items": len(result.evidence_ledger),
                "hypotheses": len(result.hypotheses),
                "duration_ms": duration_ms,
            },
        )
        logger.info(
            "Analysis %s finished in %.0f ms (%s, confidence=%s)",
            state.id,
            duration_ms,
            result.finalization_reason,
            result.confidence,
        )
        return WorkflowResult(
            success=True,
            content=result.root_cause,
            result=result,
            provider_id=self._resources(state).transport.provider_id,
            model_used=state.model,
            duration_ms=duration_ms,
            metadata={
                "run_id": state.id,
                "finalization_reason": result.finalization_reason,
                "cancelled": state.is_cancelled,
                "checkpoint_only": state.checkpoints.checkpoint_only,
            },
        )
