"""Baseline phase mixin for CrashAnalysisWorkflow.

Seeds the evidence ledger from a fixed slice of the report before any
model turn. Each section is recorded with ``report_get`` provenance, so a
later identical ``report_get`` call by the model is detected as a repeat.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from crash_analysis_mcp.core.analysis.evidence_ledger import describe_tool_call
from crash_analysis_mcp.core.analysis.models.state import AnalysisRunState
from crash_analysis_mcp.core.analysis.workflow.base import WorkflowResult
from crash_analysis_mcp.core.report.section_query import get_section, serialize_section_response

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig

logger = logging.getLogger(__name__)

BASELINE_SECTIONS: tuple[str, ...] = (
    "analysis.summary",
    "analysis.exception",
    "analysis.environment",
    "analysis.threads.faultingThread",
)
WATCHES_SECTION = "analysis.watches"
SECURITY_SECTION = "analysis.security"


class BaselinePhaseMixin:
    """Baseline phase methods. Mixed into CrashAnalysisWorkflow."""

    config: AnalysisConfig

    if TYPE_CHECKING:

        def _write_audit_event(
            self,
            state: Optional[AnalysisRunState],
            event_type: str,
            data: Optional[dict[str, Any]] = ...,
            level: str = ...,
        ) -> None: ...

    def _baseline_sections(self) -> list[str]:
        sections = list(BASELINE_SECTIONS)
        if self.config.include_watches:
            sections.append(WATCHES_SECTION)
        if self.config.include_security:
            sections.append(SECURITY_SECTION)
        return sections

    async def _execute_baseline_async(self, state: AnalysisRunState) -> WorkflowResult:
        """Record the baseline report sections as evidence.

        Missing sections are skipped. No model turn is taken, so this phase
        cannot fail on transport problems.
        """
        limits = self.config.get_query_limits()
        recorded: list[str] = []
        skipped: list[str] = []

        for path in self._baseline_sections():
            response = get_section(state.report, path, max_chars=limits.max_max_chars, limits=limits)
            if "error" in response:
                logger.debug("Baseline section %s unavailable: %s", path, response["error"].get("message"))
                skipped.append(path)
                continue
            arguments = {"path": path}
            item, _ = state.ledger.add_auto_evidence(
                "report_get",
                arguments,
                serialize_section_response(response),
                source=describe_tool_call("report_get", arguments),
                iteration=0,
            )
            if item is not None:
                recorded.append(item.id)

        logger.info(
            "Baseline for analysis %s recorded %d evidence item(s), skipped %d section(s)",
            state.id,
            len(recorded),
            len(skipped),
        )
        state.metadata["baseline_evidence_ids"] = recorded
        return WorkflowResult(
            success=True,
            content=f"Recorded {len(recorded)} baseline evidence item(s)",
            metadata={"evidence_ids": recorded, "skipped_sections": skipped},
        )
