"""Phase pipeline controller for crash analysis runs."""

from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.analysis.workflow.core import CrashAnalysisWorkflow
from crash_analysis_mcp.core.analysis.workflow.finalize import (
    build_analysis_result,
    merge_analysis_into_report,
    resolve_conclusion,
)

__all__ = [
    "CrashAnalysisWorkflow",
    "WorkflowResult",
    "build_analysis_result",
    "merge_analysis_into_report",
    "resolve_conclusion",
]
