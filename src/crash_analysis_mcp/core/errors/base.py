"""Error-to-ErrorCode mapping registry.

Provides a centralized mapping from exception types to (ErrorCode, ErrorType) tuples,
enabling consistent error response generation across the codebase.

Usage:
    from crash_analysis_mcp.core.errors.base import error_to_response

    try:
        do_something()
    except Exception as e:
        result = error_to_response(e)
        if result is not None:
            return result
        raise  # Unknown error, re-raise
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Dict, Optional, Tuple, Type

from crash_analysis_mcp.core.errors.analysis import (
    BackendUnavailableError,
    BudgetExceededError,
    EmptySamplingResponseError,
    EvidenceNotFoundError,
    RunCancelledError,
    TransportRejectedError,
    ValidationFailedError,
)
from crash_analysis_mcp.core.errors.report import ReportLoadError
from crash_analysis_mcp.core.responses.builders import error_response
from crash_analysis_mcp.core.responses.types import (
    ErrorCode,
    ErrorType,
)

ERROR_MAPPINGS: Dict[Type[Exception], Tuple[ErrorCode, ErrorType]] = {
    # --- Analysis errors ---
    BudgetExceededError: (ErrorCode.BUDGET_EXCEEDED, ErrorType.RATE_LIMIT),
    TransportRejectedError: (ErrorCode.AI_REQUEST_REJECTED, ErrorType.AI_PROVIDER),
    ValidationFailedError: (ErrorCode.VALIDATION_ERROR, ErrorType.VALIDATION),
    EmptySamplingResponseError: (ErrorCode.AI_EMPTY_RESPONSE, ErrorType.AI_PROVIDER),
    EvidenceNotFoundError: (ErrorCode.EVIDENCE_NOT_FOUND, ErrorType.NOT_FOUND),
    RunCancelledError: (ErrorCode.CANCELLED, ErrorType.UNAVAILABLE),
    BackendUnavailableError: (ErrorCode.UNAVAILABLE, ErrorType.UNAVAILABLE),
    # --- Report errors ---
    ReportLoadError: (ErrorCode.REPORT_NOT_FOUND, ErrorType.NOT_FOUND),
}


def error_to_response(exc: Exception) -> Optional[dict]:
    """Convert a known exception to a standard error_response dict, or None if unknown.

    Looks up the exception's *exact* type in ERROR_MAPPINGS and, if found,
    generates a standardized error response using the mapped ErrorCode and ErrorType.

    Args:
        exc: The exception to convert.

    Returns:
        A dict suitable for MCP tool response, or None if the exception type
        is not registered in ERROR_MAPPINGS.
    """
    mapping = ERROR_MAPPINGS.get(type(exc))
    if mapping is None:
        return None

    error_code, error_type = mapping
    return asdict(
        error_response(
            str(exc),
            error_code=error_code,
            error_type=error_type,
        )
    )
