"""Analysis workflow error classes.

Raised inside a single analysis run. Only ``EmptySamplingResponseError`` is
fatal to a run; the others are converted into tool errors, compatibility
retries, or forced finalization by the workflow.
"""

from __future__ import annotations

from typing import Any, Optional


class AnalysisError(Exception):
    """Base exception for analysis workflow errors."""

    pass


class BudgetExceededError(AnalysisError):
    """Raised when a budget limit would be exceeded.

    Attributes:
        limit_name: Name of the exhausted limit (e.g. ``max_iterations``).
        limit: Configured ceiling.
        used: Counter value at the time of the check.
    """

    def __init__(self, limit_name: str, limit: int, used: int) -> None:
        self.limit_name = limit_name
        self.limit = limit
        self.used = used
        super().__init__(f"Budget exceeded: {limit_name} ({used}/{limit})")


class TransportRejectedError(AnalysisError):
    """Raised when a sampling transport rejects a request shape.

    Attributes:
        kind: Rejection kind (``tool_choice`` or ``tool_history``), or None
            when the rejection could not be attributed.
        provider_id: Identity of the rejecting provider.
    """

    TOOL_CHOICE = "tool_choice"
    TOOL_HISTORY = "tool_history"

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider_id = provider_id


class ValidationFailedError(AnalysisError):
    """Raised when a tool-call payload fails schema or semantic validation.

    The message is returned to the model as a retryable tool error.

    Attributes:
        tool_name: Tool whose payload was rejected.
        details: Machine-readable validation details.
    """

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        details: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.details = details or []


class EmptySamplingResponseError(AnalysisError):
    """Raised when the transport returned neither content nor tool calls."""

    def __init__(self, model: Optional[str] = None) -> None:
        self.model = model
        super().__init__("AI analysis failed: empty sampling response.")


class EvidenceNotFoundError(AnalysisError):
    """Raised when an evidence ID does not exist in the ledger."""

    def __init__(self, evidence_id: str) -> None:
        self.evidence_id = evidence_id
        super().__init__(f"Evidence '{evidence_id}' not found.")


class RunCancelledError(AnalysisError):
    """Raised at a cancellation checkpoint when the run was cancelled or timed out."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(f"Analysis run cancelled: {reason}")


class BackendUnavailableError(AnalysisError):
    """Raised when an evidence tool needs a debugger capability that is not attached."""

    def __init__(self, message: str, capability: Optional[str] = None) -> None:
        super().__init__(message)
        self.capability = capability
