"""Unified error hierarchy for crash-analysis-mcp.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.
"""

from crash_analysis_mcp.core.errors.analysis import (
    AnalysisError,
    BackendUnavailableError,
    BudgetExceededError,
    EmptySamplingResponseError,
    EvidenceNotFoundError,
    RunCancelledError,
    TransportRejectedError,
    ValidationFailedError,
)
from crash_analysis_mcp.core.errors.base import ERROR_MAPPINGS, error_to_response
from crash_analysis_mcp.core.errors.report import ReportLoadError, SectionQueryError

__all__ = [
    "ERROR_MAPPINGS",
    "AnalysisError",
    "BackendUnavailableError",
    "BudgetExceededError",
    "EmptySamplingResponseError",
    "EvidenceNotFoundError",
    "ReportLoadError",
    "RunCancelledError",
    "SectionQueryError",
    "TransportRejectedError",
    "ValidationFailedError",
    "error_to_response",
]
