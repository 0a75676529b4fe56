"""Crash analysis workflow: evidence-driven, tool-calling root-cause analysis.

``CrashAnalysisWorkflow`` composes the phase mixins into one class. Each
call to ``analyze`` creates fresh run state (ledger, registry, checkpoints,
budgets) owned by that run alone; the only state shared across runs is the
provider capability cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.core.analysis.backend import DebuggerBackend, ReportOnlyBackend
from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager
from crash_analysis_mcp.core.analysis.compatibility import CompatibleTransport, ProviderCapabilityCache
from crash_analysis_mcp.core.analysis.dispatcher import ToolDispatcher
from crash_analysis_mcp.core.analysis.evidence_ledger import EvidenceLedger
from crash_analysis_mcp.core.analysis.hypothesis_registry import HypothesisRegistry
from crash_analysis_mcp.core.analysis.models.state import AnalysisRunState
from crash_analysis_mcp.core.analysis.transport import SamplingTransport
from crash_analysis_mcp.core.analysis.workflow.audit import AuditMixin
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.analysis.workflow.phases import (
    BaselinePhaseMixin,
    InvestigationPhaseMixin,
    JudgePhaseMixin,
    RunResources,
    SummaryRewritePhaseMixin,
    ThreadNarrativePhaseMixin,
    ToolLoopMixin,
)
from crash_analysis_mcp.core.analysis.workflow.workflow_execution import WorkflowExecutionMixin
from crash_analysis_mcp.core.report.document import DocumentLike, ReportDocument

logger = logging.getLogger(__name__)


class CrashAnalysisWorkflow(
    BaselinePhaseMixin,
    InvestigationPhaseMixin,
    JudgePhaseMixin,
    SummaryRewritePhaseMixin,
    ThreadNarrativePhaseMixin,
    ToolLoopMixin,
    WorkflowExecutionMixin,
    AuditMixin,
):
    """Multi-phase crash analysis workflow.

    Phases, strictly in order:
    1. Baseline: seed evidence from fixed report sections (no model turn)
    2. Investigation: bounded tool-calling loop until ``analysis_complete``
    3. Judge: select one hypothesis, reject the alternatives with evidence
    4. SummaryRewrite: human-facing summary and recommendations (non-fatal)
    5. ThreadNarrative: narrative of thread activity (non-fatal)

    Every phase is bounded by a budget guard; budget exhaustion and
    cancellation finalize with the best current evidence and hypotheses.
    """

    def __init__(
        self,
        config: AnalysisConfig,
        transport: SamplingTransport,
        backend: Optional[DebuggerBackend] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        capability_cache: Optional[ProviderCapabilityCache] = None,
    ) -> None:
        """Initialize the workflow.

        Args:
            config: Analysis configuration
            transport: Model sampling transport
            backend: Debugger backend for ``exec``/``inspect``; defaults to a
                report-only backend that refuses both
            cancel_event: Set by the caller to cancel in-flight runs
            capability_cache: Provider capability cache shared across runs;
                by default each run learns provider capabilities afresh
        """
        self.config = config
        self.transport = transport
        self.backend = backend if backend is not None else ReportOnlyBackend()
        self.cancel_event = cancel_event
        self.capability_cache = capability_cache
        self._runs: dict[str, RunResources] = {}

    def new_state(self, report: ReportDocument) -> AnalysisRunState:
        """Create fresh run state for *report*."""
        config = self.config
        ledger = EvidenceLedger(
            max_items=config.evidence_max_items,
            excerpt_max_chars=config.evidence_excerpt_max_chars,
            provenance_mode=config.evidence_provenance,
        )
        return AnalysisRunState(
            report=report,
            ledger=ledger,
            hypotheses=HypothesisRegistry(
                ledger,
                max_total=config.max_hypotheses,
                max_per_call=config.max_hypotheses_per_call,
            ),
            checkpoints=CheckpointManager(
                every_iterations=config.checkpoint_every_iterations,
                max_transcript_chars=config.checkpoint_max_transcript_chars,
            ),
        )

    def _resources(self, state: AnalysisRunState) -> RunResources:
        return self._runs[state.id]

    async def analyze(self, report: DocumentLike) -> WorkflowResult:
        """Run the full pipeline over *report*.

        Args:
            report: Parsed report document or mapping rooted at ``metadata``/``analysis``

        Returns:
            WorkflowResult whose ``result`` is the ``AnalysisResult``. ``success``
            is False only when the investigation could not run (empty sampling
            response or an unrecoverable transport error).
        """
        document = report if isinstance(report, ReportDocument) else ReportDocument.from_mapping(report)
        state = self.new_state(document)
        config = self.config

        self._runs[state.id] = RunResources(
            dispatcher=ToolDispatcher(
                report=document,
                ledger=state.ledger,
                registry=state.hypotheses,
                checkpoints=state.checkpoints,
                backend=self.backend,
                query_limits=config.get_query_limits(),
                tool_output_max_chars=config.tool_output_max_chars,
                commands_executed=state.commands_executed,
            ),
            transport=CompatibleTransport(self.transport, state.checkpoints, self.capability_cache),
            deadline=time.monotonic() + config.timeout if config.timeout else None,
        )
        logger.info(
            "Starting analysis %s (provider=%s, model=%s, backend=%s)",
            state.id,
            self.transport.provider_id,
            self.transport.model,
            self.backend.name,
        )
        try:
            return await self._execute_workflow_async(state)
        finally:
            self._runs.pop(state.id, None)
