"""Phase mixins for the crash analysis workflow."""

from crash_analysis_mcp.core.analysis.workflow.phases._tool_loop import LoopOutcome, RunResources, ToolLoopMixin
from crash_analysis_mcp.core.analysis.workflow.phases.baseline import BaselinePhaseMixin
from crash_analysis_mcp.core.analysis.workflow.phases.investigation import InvestigationPhaseMixin
from crash_analysis_mcp.core.analysis.workflow.phases.judge import JudgePhaseMixin
from crash_analysis_mcp.core.analysis.workflow.phases.summary_rewrite import SummaryRewritePhaseMixin
from crash_analysis_mcp.core.analysis.workflow.phases.thread_narrative import ThreadNarrativePhaseMixin

__all__ = [
    "BaselinePhaseMixin",
    "InvestigationPhaseMixin",
    "JudgePhaseMixin",
    "LoopOutcome",
    "RunResources",
    "SummaryRewritePhaseMixin",
    "ThreadNarrativePhaseMixin",
    "ToolLoopMixin",
]
