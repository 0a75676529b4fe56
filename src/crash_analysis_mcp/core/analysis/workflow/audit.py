"""Audit trail for analysis runs.

Writes JSONL audit events for observability and debugging of analysis
runs, with configurable verbosity levels.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from crash_analysis_mcp.core.analysis.models.state import AnalysisRunState

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = Path.home() / ".crash-analysis-mcp" / "audit"

# Large text fields nulled in minimal mode.
_MINIMAL_NULLED_FIELDS = frozenset(
    {
        "system_prompt",
        "user_prompt",
        "raw_response",
        "output",
        "reasoning",
        "error",
        "traceback",
    }
)


class AuditMixin:
    """Mixin providing audit trail capabilities for analysis runs.

    Requires the composing class to provide:
    - self.config: AnalysisConfig (with audit_artifacts, audit_verbosity, audit_dir)
    """

    config: AnalysisConfig

    def _audit_enabled(self) -> bool:
        """Return True if audit artifacts are enabled."""
        return bool(self.config.audit_artifacts)

    def _audit_path(self, run_id: str) -> Path:
        """Resolve audit artifact path for a run."""
        base = self.config.audit_dir if self.config.audit_dir is not None else DEFAULT_AUDIT_DIR
        return Path(base).expanduser() / f"{run_id}.audit.jsonl"

    def _prepare_audit_payload(self, data: dict[str, Any]) -> dict[str, Any]:
        """Prepare audit payload based on configured verbosity level.

        In 'full' mode the data is returned unchanged. In 'minimal' mode
        large text fields (prompts, tool output, reasoning, errors) are set
        to null while counters and identifiers are preserved, so both modes
        share one schema shape.

        Args:
            data: Original audit event data dictionary

        Returns:
            Processed data dictionary
        """
        if self.config.audit_verbosity == "full":
            return data

        result = dict(data)
        for name in _MINIMAL_NULLED_FIELDS:
            if name in result:
                result[name] = None
        return result

    def _write_audit_event(
        self,
        state: Optional[AnalysisRunState],
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = "info",
    ) -> None:
        """Write a JSONL audit event for the run."""
        if not self._audit_enabled():
            return

        run_id = state.id if state else None
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event_id": uuid4().hex,
            "event_type": event_type,
            "level": level,
            "run_id": run_id,
            "phase": state.phase.value if state else None,
            "iteration": state.iteration if state else None,
            "data": self._prepare_audit_payload(data or {}),
        }

        try:
            if run_id is None:
                return
            path = self._audit_path(run_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=True, default=str))
                handle.write("\n")
        except Exception as exc:
            logger.error("Failed to write audit event: %s", exc)
            # Fallback to stderr for crash visibility
            print(
                f"AUDIT_FALLBACK: {event_type} for {run_id} - {exc}",
                file=sys.stderr,
                flush=True,
            )
