"""Report tool: table of contents and bounded section queries over a report file."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from crash_analysis_mcp.config.server import ServerConfig
from crash_analysis_mcp.core.report import build_index, get_section, load_report
from crash_analysis_mcp.core.report.section_query import error_code_of
from crash_analysis_mcp.core.responses import ErrorCode, ErrorType, error_response, success_response
from crash_analysis_mcp.tools.common import (
    build_request_id,
    dispatch_with_standard_errors,
    missing_parameter,
    resolve_report_path,
)

logger = logging.getLogger(__name__)

_ACTION_SUMMARY = {
    "index": "Table of contents, metadata and summary digest of a report",
    "get": "Fetch one report section by path, paged and bounded by maxChars",
}


def _handle_index(*, config: ServerConfig, report_path: Optional[str] = None, **_: Any) -> dict:
    request_id = build_request_id("report")
    path, err = resolve_report_path(report_path, config, tool_name="report", action="index", request_id=request_id)
    if err:
        return err

    start = time.perf_counter()
    document = load_report(path)
    index = build_index(document)
    return asdict(
        success_response(
            data=index,
            telemetry={"duration_ms": round((time.perf_counter() - start) * 1000, 2)},
            request_id=request_id,
        )
    )


def _handle_get(
    *,
    config: ServerConfig,
    report_path: Optional[str] = None,
    path: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    max_chars: Optional[int] = None,
    page_kind: Optional[str] = None,
    select: Optional[List[str]] = None,
    where: Optional[Dict[str, Any]] = None,
    **_: Any,
) -> dict:
    request_id = build_request_id("report")
    if not path or not path.strip():
        return missing_parameter("path", "report", "get", request_id)
    report_file, err = resolve_report_path(report_path, config, tool_name="report", action="get", request_id=request_id)
    if err:
        return err

    start = time.perf_counter()
    document = load_report(report_file)
    payload = get_section(
        document,
        path,
        limit=limit,
        cursor=cursor,
        max_chars=max_chars,
        page_kind=page_kind,
        select=select,
        where=where,
        limits=config.analysis.get_query_limits(),
    )
    telemetry = {"duration_ms": round((time.perf_counter() - start) * 1000, 2)}

    code = error_code_of(payload)
    if code is not None:
        message = payload["error"].get("message") or code
        logger.debug("Section query %s failed: %s (%s)", path, code, message)
        return asdict(
            error_response(
                message,
                data=payload,
                error_code=ErrorCode.NOT_FOUND if code == "invalid_path" else ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.NOT_FOUND if code == "invalid_path" else ErrorType.VALIDATION,
                remediation="Try one of the suggestedPaths, or call report(action=index) for the table of contents.",
                request_id=request_id,
                telemetry=telemetry,
            )
        )

    pagination = None
    page = payload.get("page")
    if isinstance(page, dict):
        pagination = {"limit": page.get("limit"), "has_more": bool(page.get("nextCursor"))}
        if page.get("nextCursor"):
            pagination["cursor"] = page["nextCursor"]
    return asdict(
        success_response(
            data=payload,
            pagination=pagination,
            telemetry=telemetry,
            request_id=request_id,
        )
    )


_REPORT_HANDLERS = {
    "index": _handle_index,
    "get": _handle_get,
}


def register_report_tool(mcp: FastMCP, config: ServerConfig) -> None:
    """Register the report tool."""

    @mcp.tool(
        name="report",
        description=(
            "Inspect a crash report JSON file. Actions: "
            + "; ".join(f"{name}: {summary}" for name, summary in _ACTION_SUMMARY.items())
        ),
    )
    def report(  # noqa: PLR0913 - unified signature spans both actions
        action: str,
        report_path: str,
        path: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        max_chars: Optional[int] = None,
        page_kind: Optional[str] = None,
        select: Optional[List[str]] = None,
        where: Optional[Dict[str, Any]] = None,
    ) -> dict:
        return dispatch_with_standard_errors(
            _REPORT_HANDLERS,
            "report",
            action,
            config=config,
            report_path=report_path,
            path=path,
            limit=limit,
            cursor=cursor,
            max_chars=max_chars,
            page_kind=page_kind,
            select=select,
            where=where,
        )

    logger.debug("Registered report tool")


__all__ = [
    "register_report_tool",
]
