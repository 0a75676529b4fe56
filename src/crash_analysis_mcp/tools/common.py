"""Shared helpers for MCP tool handlers: request IDs and standard error envelopes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from crash_analysis_mcp.config.server import ServerConfig
from crash_analysis_mcp.core.errors import error_to_response
from crash_analysis_mcp.core.responses import ErrorCode, ErrorType, error_response

logger = logging.getLogger(__name__)

ActionHandler = Callable[..., dict]


def build_request_id(tool_name: str) -> str:
    """Generate a correlation ID prefixed with *tool_name*."""
    return f"{tool_name}_{uuid.uuid4().hex[:12]}"


def missing_parameter(name: str, tool_name: str, action: str, request_id: str) -> dict:
    return asdict(
        error_response(
            f"Validation failed: {name} is required for {tool_name}(action={action})",
            error_code=ErrorCode.MISSING_REQUIRED,
            error_type=ErrorType.VALIDATION,
            remediation=f"Provide a non-empty {name} parameter",
            request_id=request_id,
        )
    )


def resolve_report_path(
    report_path: Optional[str],
    config: ServerConfig,
    *,
    tool_name: str,
    action: str,
    request_id: str,
) -> tuple[Optional[Path], Optional[dict]]:
    """Validate *report_path* against the configured report roots.

    Returns:
        ``(path, None)`` when usable, otherwise ``(None, error_envelope)``.
    """
    if not report_path or not report_path.strip():
        return None, missing_parameter("report_path", tool_name, action, request_id)

    path = Path(report_path.strip()).expanduser()
    if not config.is_report_path_allowed(path):
        logger.warning("%s action '%s' rejected report outside allowed roots: %s", tool_name, action, path)
        return None, asdict(
            error_response(
                f"Report path '{path}' is outside the allowed report roots",
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                remediation="Use a report under one of the configured report_roots.",
                request_id=request_id,
                details={"report_roots": [str(root) for root in config.report_roots]},
            )
        )
    return path, None


def dispatch_with_standard_errors(
    handlers: Mapping[str, ActionHandler],
    tool_name: str,
    action: Optional[str],
    /,
    **kwargs: Any,
) -> dict:
    """Dispatch *action* to its handler, converting exceptions to envelopes.

    Unknown actions yield a validation error. Exceptions registered in
    ``ERROR_MAPPINGS`` become their mapped envelope; anything else becomes
    an ``INTERNAL_ERROR`` envelope and is logged with its traceback.
    """
    action_key = (action or "").strip().lower()
    handler = handlers.get(action_key)
    if handler is None:
        allowed = ", ".join(sorted(handlers))
        return asdict(
            error_response(
                f"Unsupported {tool_name} action '{action}'. Allowed actions: {allowed}",
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                remediation=f"Use one of: {allowed}",
                request_id=build_request_id(tool_name),
            )
        )

    try:
        return handler(**kwargs)
    except Exception as exc:
        mapped = error_to_response(exc)
        if mapped is not None:
            logger.warning("%s action '%s' failed: %s", tool_name.capitalize(), action_key, exc)
            return mapped
        logger.exception(
            "%s action '%s' failed with unexpected error: %s",
            tool_name.capitalize(),
            action_key,
            exc,
        )
        error_msg = str(exc) if str(exc) else exc.__class__.__name__
        details: Dict[str, Any] = {"action": action_key, "error_type": exc.__class__.__name__}
        return asdict(
            error_response(
                f"{tool_name.capitalize()} action '{action_key}' failed: {error_msg}",
                error_code=ErrorCode.INTERNAL_ERROR,
                error_type=ErrorType.INTERNAL,
                remediation="Check configuration and logs for details.",
                details=details,
            )
        )
