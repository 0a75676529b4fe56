"""Envelope builders used by the report and analyze tools.

Every tool returns ``asdict(...)`` of one of these. Query failures from the
section engine and analysis failures both go through ``error_response`` so
clients can branch on ``data.error_code`` alone.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from crash_analysis_mcp.core.responses.types import (
    ErrorCode,
    ErrorType,
    ToolResponse,
    _build_meta,
)


def _code_value(code: Union[Enum, str]) -> str:
    return code.value if isinstance(code, Enum) else code


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    pagination: Optional[Mapping[str, Any]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> ToolResponse:
    """Wrap a tool payload in a success envelope.

    Args:
        data: Tool payload (a report index, a section page, a merged report).
        warnings: Non-fatal notes, e.g. a cache write that failed.
        pagination: ``cursor``/``has_more`` for paged section queries.
        telemetry: Timing such as ``duration_ms``.
        request_id: Correlation id from ``build_request_id``.
        meta: Extra metadata merged into ``meta`` (``cached``, ``dump_id``, ``run_id``).
    """
    return ToolResponse(
        success=True,
        data=dict(data) if data else {},
        error=None,
        meta=_build_meta(
            request_id=request_id,
            warnings=warnings,
            pagination=pagination,
            telemetry=telemetry,
            extra=meta,
        ),
    )


def error_response(
    message: str,
    *,
    data: Optional[Mapping[str, Any]] = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    error_type: Optional[Union[ErrorType, str]] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> ToolResponse:
    """Wrap a failure in an error envelope.

    ``error_code``/``error_type`` default to ``INTERNAL_ERROR``/``internal``.
    Keys already present in *data* (a section query ``error`` object, for
    instance) are kept as given.

    Example:
        >>> error_response(
        ...     "Validation failed: report_path is required",
        ...     error_code=ErrorCode.MISSING_REQUIRED,
        ...     error_type=ErrorType.VALIDATION,
        ...     remediation="Provide a non-empty report_path parameter",
        ... )
    """
    payload: Dict[str, Any] = dict(data) if data else {}
    payload.setdefault("error_code", _code_value(error_code or ErrorCode.INTERNAL_ERROR))
    payload.setdefault("error_type", _code_value(error_type or ErrorType.INTERNAL))
    if remediation is not None:
        payload.setdefault("remediation", remediation)
    if details:
        payload.setdefault("details", dict(details))

    return ToolResponse(
        success=False,
        data=payload,
        error=message,
        meta=_build_meta(request_id=request_id, telemetry=telemetry, extra=meta),
    )
