"""Analyze tool: AI root-cause analysis of a crash report via MCP sampling.

Flow: load the report, consult the on-disk cache (unless refreshCache),
run ``CrashAnalysisWorkflow`` with the client's sampling capability,
merge the result into the report and write it back to the cache.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Optional

from filelock import Timeout
from mcp.server.fastmcp import Context, FastMCP

from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.config.server import ServerConfig
from crash_analysis_mcp.core.analysis.disk_cache import AnalysisDiskCache, LlmCacheKey
from crash_analysis_mcp.core.analysis.transport import SamplingTransport
from crash_analysis_mcp.core.analysis.workflow import CrashAnalysisWorkflow, merge_analysis_into_report
from crash_analysis_mcp.core.errors import EmptySamplingResponseError, error_to_response
from crash_analysis_mcp.core.report import ReportDocument, load_report
from crash_analysis_mcp.core.responses import ErrorCode, ErrorType, error_response, success_response
from crash_analysis_mcp.tools.common import build_request_id, resolve_report_path
from crash_analysis_mcp.tools.sampling import McpSamplingTransport

logger = logging.getLogger(__name__)


def resolve_dump_id(document: ReportDocument, report_path: Path) -> str:
    """Dump identity: ``metadata.dumpId`` when present, else the report's parent directory or stem."""
    dump_id = document.metadata.get("dumpId")
    if isinstance(dump_id, str) and dump_id.strip():
        return dump_id.strip()
    if report_path.stem.lower() == "report" and report_path.parent.name:
        return report_path.parent.name
    return report_path.stem


def _cache_payload(report: dict[str, Any], ai_analysis_only: bool) -> dict[str, Any]:
    if ai_analysis_only:
        analysis = report.get("analysis")
        return {"aiAnalysis": analysis.get("aiAnalysis") if isinstance(analysis, dict) else None}
    return {"report": report}


async def run_analysis(
    *,
    config: ServerConfig,
    transport: SamplingTransport,
    report_path: Optional[str],
    refresh_cache: bool = False,
    include_watches: Optional[bool] = None,
    include_security: Optional[bool] = None,
    ai_analysis_only: bool = False,
) -> dict:
    """Run (or serve from cache) an analysis and return the response envelope.

    Args:
        config: Server configuration
        transport: Sampling transport used for every model turn
        report_path: Report JSON file
        refresh_cache: Skip the cache read; the fresh result is still written
        include_watches: Seed baseline evidence from watches (config default when None)
        include_security: Seed baseline evidence from security (config default when None)
        ai_analysis_only: Return only ``analysis.aiAnalysis`` instead of the merged report
    """
    request_id = build_request_id("analyze")
    path, err = resolve_report_path(report_path, config, tool_name="analyze", action="run", request_id=request_id)
    if err:
        return err

    analysis_config: AnalysisConfig = replace(
        config.analysis,
        include_watches=config.analysis.include_watches if include_watches is None else include_watches,
        include_security=config.analysis.include_security if include_security is None else include_security,
        audit_dir=config.get_audit_dir(),
    )
    start = time.perf_counter()

    try:
        document = load_report(path)
        dump_id = resolve_dump_id(document, path)
        cache = AnalysisDiskCache(config.get_cache_dir()) if analysis_config.cache_enabled else None

        if cache is not None and not refresh_cache:
            hinted_key = LlmCacheKey.create(transport.provider_id, getattr(transport, "model_hint", None))
            entry = cache.read(
                config.user_id,
                dump_id,
                hinted_key,
                require_watches=analysis_config.include_watches,
                require_security=analysis_config.include_security,
            )
            if entry is not None:
                logger.info("Serving cached analysis for dump %s", dump_id)
                return asdict(
                    success_response(
                        data=_cache_payload(entry.report, ai_analysis_only),
                        telemetry={"duration_ms": round((time.perf_counter() - start) * 1000, 2)},
                        request_id=request_id,
                        meta={"cached": True, "dump_id": dump_id},
                    )
                )

        workflow = CrashAnalysisWorkflow(analysis_config, transport)
        result = await workflow.analyze(document)
    except Exception as exc:
        mapped = error_to_response(exc)
        if mapped is not None:
            logger.warning("Analysis of %s failed: %s", path, exc)
            return mapped
        logger.exception("Analysis of %s failed with unexpected error: %s", path, exc)
        return asdict(
            error_response(
                f"Analysis failed: {str(exc) or exc.__class__.__name__}",
                error_code=ErrorCode.INTERNAL_ERROR,
                error_type=ErrorType.INTERNAL,
                remediation="Check configuration and logs for details.",
                request_id=request_id,
            )
        )

    telemetry = {"duration_ms": round((time.perf_counter() - start) * 1000, 2)}
    if not result.success or result.result is None:
        empty = result.error == str(EmptySamplingResponseError())
        return asdict(
            error_response(
                result.error or "AI analysis failed.",
                error_code=ErrorCode.AI_EMPTY_RESPONSE if empty else ErrorCode.AI_PROVIDER_ERROR,
                error_type=ErrorType.AI_PROVIDER,
                remediation="Check that the client supports sampling and retry.",
                request_id=request_id,
                telemetry=telemetry,
                details=dict(result.metadata),
            )
        )

    merged = merge_analysis_into_report(document, result.result)
    warnings: list[str] = []
    if cache is not None:
        llm_key = LlmCacheKey.create(transport.provider_id, result.model_used or transport.model)
        try:
            cache.write(
                config.user_id,
                dump_id,
                llm_key,
                merged,
                includes_watches=analysis_config.include_watches,
                includes_security=analysis_config.include_security,
            )
        except (OSError, Timeout) as exc:
            logger.warning("Failed to cache analysis for dump %s: %s", dump_id, exc)
            warnings.append(f"Analysis was not cached: {exc}")

    return asdict(
        success_response(
            data=_cache_payload(merged, ai_analysis_only),
            warnings=warnings or None,
            telemetry=telemetry,
            request_id=request_id,
            meta={
                "cached": False,
                "dump_id": dump_id,
                "run_id": result.metadata.get("run_id"),
                "finalization_reason": result.metadata.get("finalization_reason"),
            },
        )
    )


def register_analyze_tool(mcp: FastMCP, config: ServerConfig) -> None:
    """Register the analyze tool."""

    @mcp.tool(
        name="analyze",
        description=(
            "Run an evidence-driven AI root-cause analysis of a crash report using the "
            "client's sampling capability. Returns the report with analysis.aiAnalysis merged in."
        ),
    )
    async def analyze(
        report_path: str,
        ctx: Context,
        refresh_cache: bool = False,
        include_watches: Optional[bool] = None,
        include_security: Optional[bool] = None,
        ai_analysis_only: bool = False,
        model: Optional[str] = None,
    ) -> dict:
        transport = McpSamplingTransport(ctx.session, model_hint=model)
        return await run_analysis(
            config=config,
            transport=transport,
            report_path=report_path,
            refresh_cache=refresh_cache,
            include_watches=include_watches,
            include_security=include_security,
            ai_analysis_only=ai_analysis_only,
        )

    logger.debug("Registered analyze tool")


__all__ = [
    "register_analyze_tool",
    "resolve_dump_id",
    "run_analysis",
]
