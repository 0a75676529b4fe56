"""Protocol definition for analysis workflow mixins.

Defines ``CrashAnalysisWorkflowProtocol``, the structural interface that
all phase mixins expect from the composed ``CrashAnalysisWorkflow`` class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig
    from crash_analysis_mcp.core.analysis.backend import DebuggerBackend
    from crash_analysis_mcp.core.analysis.budget import BudgetGuard
    from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase
    from crash_analysis_mcp.core.analysis.transport import SamplingTransport
    from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome, RunResources

from crash_analysis_mcp.core.analysis.models.state import AnalysisRunState
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult


@runtime_checkable
class CrashAnalysisWorkflowProtocol(Protocol):
    """Structural interface expected by all analysis phase mixins."""

    # --- Instance attributes ---
    config: AnalysisConfig
    transport: SamplingTransport
    backend: DebuggerBackend

    # --- Cross-cutting methods ---

    def _write_audit_event(
        self,
        state: Optional[AnalysisRunState],
        event_type: str,
        data: Optional[dict[str, Any]] = ...,
        level: str = ...,
    ) -> None:
        """Record an audit event for observability."""
        ...

    def _check_cancellation(self, state: AnalysisRunState) -> None:
        """Raise ``RunCancelledError`` if the run was cancelled or timed out."""
        ...

    def _resources(self, state: AnalysisRunState) -> RunResources:
        """Per-run dispatcher and transport wrapper."""
        ...

    async def _run_model_loop(
        self,
        state: AnalysisRunState,
        *,
        phase: AnalysisPhase,
        system_prompt: str,
        opening: str,
        budget: BudgetGuard,
        allow_checkpoints: bool = ...,
    ) -> LoopOutcome:
        """Run the bounded tool-calling loop of one phase."""
        ...

    # --- Phase methods ---

    async def _execute_baseline_async(self, state: AnalysisRunState) -> WorkflowResult: ...

    async def _execute_investigation_async(self, state: AnalysisRunState) -> WorkflowResult: ...

    async def _execute_judge_async(self, state: AnalysisRunState) -> WorkflowResult: ...

    async def _execute_summary_rewrite_async(self, state: AnalysisRunState) -> WorkflowResult: ...

    async def _execute_thread_narrative_async(self, state: AnalysisRunState) -> WorkflowResult: ...
