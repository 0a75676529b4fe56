"""Result container shared by the analysis workflow and its phases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class WorkflowResult:
    """Result of a workflow or phase execution.

    Attributes:
        success: Whether the workflow completed successfully
        content: Short human-readable outcome
        result: Structured analysis result (set by the full workflow)
        provider_id: Provider that generated the responses
        model_used: Model that generated the responses
        duration_ms: Execution duration in milliseconds
        metadata: Additional workflow-specific data
        error: Error message if success is False
    """

    success: bool
    content: str = ""
    result: Any = None
    provider_id: Optional[str] = None
    model_used: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.metadata is None:
            self.metadata = {}
